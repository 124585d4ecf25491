import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storage_usage.sampler.backends import create_backend
from storage_usage.sampler.usage import UsageReportError, get_usage_report


async def get_backend(app: FastAPI):
    """
    The backend is built on first use and shared by every request until shutdown. A backend
    which cannot be built is retried on the next request.
    """
    async with app.state.backend_lock:
        if app.state.backend is None:
            app.state.backend = await app.state.backend_factory()
        return app.state.backend


def create_app(backend_factory=create_backend) -> FastAPI:
    """
    HTTP interface for the admin dashboard. `backend_factory` is an async callable returning
    the StorageBackend to report on; a new report is computed for every request.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.backend = None
        app.state.backend_lock = asyncio.Lock()
        yield
        if app.state.backend is not None:
            await app.state.backend.aclose()
            app.state.backend = None

    app = FastAPI(title="Intranet storage usage", lifespan=lifespan)
    app.state.backend_factory = backend_factory

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/admin/storage")
    async def storage_usage(request: Request):
        try:
            backend = await get_backend(request.app)
            report = await get_usage_report(backend)
        except (UsageReportError, ValueError) as e:
            logging.error(f"Error in storage usage route: {e}")
            return JSONResponse(status_code=500, content={"error": str(e)})

        return report.to_dict()

    return app


app = create_app()
