import pytest

from storage_usage.sampler.backends import StorageBackend, StorageBackendError
from storage_usage.sampler.models import Bucket, EntryPage, StorageFile, StorageFolder


class FakeStorageBackend(StorageBackend):
    """
    In-memory backend. Each bucket is a nested dict where ints are file sizes and dicts are
    folders, eg. {"a.txt": 100, "sub": {"c.txt": 50}}.

    Listing a path in `failing_paths` (a set of (bucket, path) tuples) raises, as does
    listing buckets when `fail_bucket_listing` is set. Listings are paged by offset.
    """

    def __init__(self, buckets, failing_paths=(), fail_bucket_listing=False):
        self.buckets = buckets
        self.failing_paths = set(failing_paths)
        self.fail_bucket_listing = fail_bucket_listing
        self.listing_calls = []

    def _folder(self, bucket, path):
        folder = self.buckets.get(bucket, {})
        for part in filter(None, path.split("/")):
            folder = folder.get(part)
            if not isinstance(folder, dict):
                return {}
        return folder

    async def list_entries(self, bucket, path, limit, page_token=None):
        self.listing_calls.append((bucket, path, limit, page_token))

        if (bucket, path) in self.failing_paths:
            raise StorageBackendError(f"Listing {bucket}:{path!r} failed")

        entries = [
            StorageFolder(name=name) if isinstance(value, dict) else StorageFile(name, value)
            for name, value in self._folder(bucket, path).items()
        ]

        offset = int(page_token) if page_token else 0
        page = entries[offset : offset + limit]
        next_page_token = str(offset + limit) if offset + limit < len(entries) else None
        return EntryPage(entries=page, next_page_token=next_page_token)

    async def list_buckets(self):
        if self.fail_bucket_listing:
            raise StorageBackendError("Listing buckets failed")
        return [Bucket(name=name) for name in self.buckets]


@pytest.fixture
def docs_bucket():
    return {"a.txt": 100, "b.txt": 200, "sub": {"c.txt": 50}}


@pytest.fixture
def fake_backend(docs_bucket):
    return FakeStorageBackend({"docs": docs_bucket, "images": {f"{i}.png": 100 for i in range(10)}})


@pytest.fixture
def make_backend():
    return FakeStorageBackend


@pytest.fixture
def aws_credentials(monkeypatch):
    # moto intercepts every call but boto3 still wants credentials and a region.
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
