import asyncio
import logging

from opentelemetry import baggage, trace
from opentelemetry.context import attach, detach

from .backends import StorageBackend, StorageBackendError
from .models import BucketUsage, StorageFile, StorageFolder, UsageReport

# Entries requested per listing call. Larger folders are listed over several pages.
LIST_PAGE_SIZE = 2000

tracer = trace.get_tracer("storage-usage-sampler")


class UsageReportError(Exception):
    """The report could not be produced at all, eg. because the buckets could not be listed."""


def folder_path(path: str, folder: StorageFolder) -> str:
    if folder.path is not None:
        return folder.path
    return f"{path}/{folder.name}" if path else folder.name


class StorageUsageAggregator:
    """
    Computes the bytes stored in a backend by recursively listing every folder.

    Sibling folders are sized concurrently, each level waits for all of its children before
    reporting its own total. A folder which cannot be listed counts as empty, so one broken
    folder under-counts the report instead of voiding it.
    """

    def __init__(self, backend: StorageBackend, page_size: int = LIST_PAGE_SIZE):
        self._backend = backend
        self._page_size = page_size

    async def folder_size(self, bucket: str, path: str = "") -> int:
        total_size = 0
        subfolders = []
        page_token = None

        try:
            while True:
                page = await self._backend.list_entries(
                    bucket, path, self._page_size, page_token
                )

                for entry in page.entries:
                    match entry:
                        case StorageFile(size_bytes=size_bytes):
                            total_size += size_bytes
                        case StorageFolder():
                            subfolder = folder_path(path, entry)
                            if subfolder == path:
                                logging.warning(f"Skipping {bucket=} {path=} listed inside itself")
                                continue
                            subfolders.append(subfolder)

                if not page.next_page_token:
                    break
                page_token = page.next_page_token
        except StorageBackendError as e:
            logging.warning(f"Could not list {bucket=} {path=}, counting it as empty: {e}")
            return 0

        subfolder_sizes = await asyncio.gather(
            *(self.folder_size(bucket, subfolder) for subfolder in subfolders)
        )
        return total_size + sum(subfolder_sizes)

    async def bucket_usage(self, bucket: str) -> BucketUsage:
        token = attach(baggage.set_baggage("bucket", bucket))
        try:
            with tracer.start_as_current_span("bucket_size") as span:
                span.set_attribute("storage.bucket", bucket)
                size_bytes = await self.folder_size(bucket, "")
                span.set_attribute("storage.size_bytes", size_bytes)

            logging.info(f"Bucket {bucket} holds {size_bytes} bytes")
            return BucketUsage(name=bucket, size_bytes=size_bytes)
        finally:
            detach(token)

    async def compute_usage_report(self) -> UsageReport:
        with tracer.start_as_current_span("usage_report"):
            try:
                buckets = await self._backend.list_buckets()
            except StorageBackendError as e:
                logging.error(f"Could not list buckets: {e}")
                raise UsageReportError("Could not fetch storage buckets.") from e

            bucket_usage = await asyncio.gather(
                *(self.bucket_usage(bucket.name) for bucket in buckets)
            )

        report = UsageReport.from_bucket_usage(bucket_usage)
        logging.info(
            f"Storage usage: {report.total_size_bytes} bytes in {len(report.bucket_usage)} buckets"
        )
        return report


async def get_usage_report(backend: StorageBackend) -> UsageReport:
    """Computes a fresh usage report over every bucket of `backend`."""
    return await StorageUsageAggregator(backend).compute_usage_report()
