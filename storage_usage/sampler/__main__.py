import asyncio
import functools
import json
import logging
import os
import sys

import click
import uvicorn

from storage_usage.api import create_app
from storage_usage.sampler.backends import STORAGE_BACKEND, create_backend
from storage_usage.sampler.models import UsageReport
from storage_usage.sampler.runner import log_component_version, setup_logging
from storage_usage.sampler.units import format_bytes, usage_percentage
from storage_usage.sampler.usage import UsageReportError, get_usage_report

# The free tier quota shown on the admin dashboard.
STORAGE_LIMIT_BYTES = int(os.getenv("STORAGE_LIMIT_BYTES", str(1024**3)))

HOST = os.getenv("STORAGE_USAGE_HOST", "0.0.0.0")
PORT = int(os.getenv("STORAGE_USAGE_PORT", "8000"))


async def generate_report(backend_name: str) -> UsageReport:
    backend = await create_backend(backend_name)
    try:
        return await get_usage_report(backend)
    finally:
        await backend.aclose()


def print_report(report: UsageReport, limit_bytes: int):
    total = report.total_size_bytes

    click.echo("======= Storage usage =======")
    click.echo(
        f"Total: {format_bytes(total)} / {format_bytes(limit_bytes)} "
        f"({usage_percentage(total, limit_bytes):.2f}%)"
    )
    if report.bucket_usage:
        for usage in report.bucket_usage:
            click.echo(f"  {usage.name}: {format_bytes(usage.size_bytes)}")
    else:
        click.echo("  No buckets found.")
    click.echo("============================")


def main(backend_name: str, as_json: bool, limit_bytes: int = STORAGE_LIMIT_BYTES) -> int:
    try:
        report = asyncio.run(generate_report(backend_name))
    except (UsageReportError, ValueError) as e:
        logging.error(f"Failed to calculate storage usage: {e}")
        click.echo(f"Error: {e}", err=True)
        return 1

    if as_json:
        click.echo(json.dumps(report.to_dict()))
    else:
        print_report(report.sorted_by_size(), limit_bytes)

    return 0


@click.command()
@click.option("-v", "--verbose", count=True, help="Increase verbosity level.")
@click.option(
    "--backend",
    type=click.Choice(["supabase", "s3"]),
    default=STORAGE_BACKEND,
    help="Storage service to report on.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.option("--serve", is_flag=True, help="Serve the report over HTTP instead of printing it.")
@click.option("--host", default=HOST, help="Address to bind with --serve.")
@click.option("--port", type=int, default=PORT, help="Port to bind with --serve.")
def cli(verbose: int, backend: str, as_json: bool, serve: bool, host: str, port: int):
    setup_logging(verbosity=verbose)
    log_component_version("intranet-storage-usage")

    if serve:
        app = create_app(backend_factory=functools.partial(create_backend, backend))
        uvicorn.run(app, host=host, port=port)
        return

    sys.exit(main(backend, as_json))


if __name__ == "__main__":
    cli()
