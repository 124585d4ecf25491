import asyncio
import logging
import os
from typing import Optional

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError
from storage3.utils import StorageException
from supabase import AsyncClientOptions, acreate_client

from .models import Bucket, EntryPage, StorageEntry, StorageFile, StorageFolder

STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "supabase")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")


class StorageBackendError(Exception):
    """A single call to the storage backend failed."""


class StorageBackend:
    """
    Read-only view of an object store as buckets containing a tree of files and folders.

    Implementations return the direct children of a path only, one page at a time, and
    convert whatever their SDK returns into StorageFile/StorageFolder values.
    """

    async def list_entries(
        self, bucket: str, path: str, limit: int, page_token: Optional[str] = None
    ) -> EntryPage:
        raise NotImplementedError()

    async def list_buckets(self) -> list[Bucket]:
        raise NotImplementedError()

    async def aclose(self):
        """Releases connections held by the backend."""


def entry_from_supabase(item: dict) -> StorageEntry:
    """
    Supabase does not tag listing items. Files carry an id and `metadata.size`, folders
    have a null id and no metadata.
    """
    metadata = item.get("metadata") or {}
    size = metadata.get("size")

    if isinstance(size, int) and not isinstance(size, bool):
        return StorageFile(name=item["name"], size_bytes=size)

    if item.get("id") is None:
        return StorageFolder(name=item["name"])

    # An object without size metadata (eg. an upload still in progress) holds no bytes yet.
    logging.debug(f"Object without size metadata, counting as empty: {item=}")
    return StorageFile(name=item["name"], size_bytes=0)


class SupabaseStorageBackend(StorageBackend):
    """Supabase Storage, through the storage client of an async supabase-py client."""

    def __init__(self, storage):
        self._storage = storage

    async def list_entries(
        self, bucket: str, path: str, limit: int, page_token: Optional[str] = None
    ) -> EntryPage:
        offset = int(page_token) if page_token else 0

        try:
            items = await self._storage.from_(bucket).list(
                path, {"limit": limit, "offset": offset}
            )
        except (StorageException, httpx.HTTPError) as e:
            raise StorageBackendError(f"Listing {bucket}:{path!r} failed: {e}") from e

        items = items or []
        next_page_token = str(offset + len(items)) if len(items) >= limit else None
        return EntryPage(
            entries=[entry_from_supabase(item) for item in items],
            next_page_token=next_page_token,
        )

    async def list_buckets(self) -> list[Bucket]:
        try:
            buckets = await self._storage.list_buckets()
        except (StorageException, httpx.HTTPError) as e:
            raise StorageBackendError(f"Listing buckets failed: {e}") from e

        return [Bucket(name=bucket.name) for bucket in buckets or []]

    async def aclose(self):
        await self._storage.session.aclose()


def s3_prefix(path: str) -> str:
    """The empty path is the bucket root. Paths already ending in "/" are used as prefixes."""
    if not path or path.endswith("/"):
        return path
    return f"{path}/"


class S3StorageBackend(StorageBackend):
    """
    S3 (or any S3-compatible store), through a boto3 client.

    Folders are the common prefixes of a "/"-delimited listing. boto3 is blocking so every
    call is run in a worker thread.
    """

    def __init__(self, s3_client=None):
        self._s3 = s3_client or boto3.client("s3")

    def _list_objects(self, bucket: str, prefix: str, limit: int, page_token: Optional[str]):
        kwargs = {"Bucket": bucket, "Prefix": prefix, "Delimiter": "/", "MaxKeys": limit}
        if page_token:
            kwargs["ContinuationToken"] = page_token
        return self._s3.list_objects_v2(**kwargs)

    async def list_entries(
        self, bucket: str, path: str, limit: int, page_token: Optional[str] = None
    ) -> EntryPage:
        prefix = s3_prefix(path)

        try:
            response = await asyncio.to_thread(
                self._list_objects, bucket, prefix, limit, page_token
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"Listing {bucket}:{path!r} failed: {e}") from e

        entries: list[StorageEntry] = []
        for obj in response.get("Contents", []):
            # A key equal to the prefix is the marker object some tools create for the folder
            # itself. It is listed with an empty name and counted like any other object.
            name = obj["Key"][len(prefix) :]
            entries.append(StorageFile(name=name, size_bytes=obj["Size"]))

        for common_prefix in response.get("CommonPrefixes", []):
            # The full prefix is kept as the path. Keys with empty segments ("/a", "b//c") give
            # folders named "" which joining the parent path and name would not tell apart.
            folder_prefix = common_prefix["Prefix"]
            name = folder_prefix[len(prefix) : -1]
            entries.append(StorageFolder(name=name, path=folder_prefix))

        next_page_token = None
        if response.get("IsTruncated"):
            next_page_token = response.get("NextContinuationToken")

        return EntryPage(entries=entries, next_page_token=next_page_token)

    async def list_buckets(self) -> list[Bucket]:
        try:
            response = await asyncio.to_thread(self._s3.list_buckets)
            buckets = [Bucket(name=b["Name"]) for b in response.get("Buckets", [])]

            while response.get("ContinuationToken"):
                response = await asyncio.to_thread(
                    self._s3.list_buckets, ContinuationToken=response["ContinuationToken"]
                )
                buckets.extend(Bucket(name=b["Name"]) for b in response.get("Buckets", []))
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"Listing buckets failed: {e}") from e

        return buckets

    async def aclose(self):
        await asyncio.to_thread(self._s3.close)


async def create_supabase_backend(url=None, key=None) -> SupabaseStorageBackend:
    """
    Builds a backend authenticated with the service role key, which bypasses row level
    security. Sessions are neither persisted nor refreshed since the key never expires.
    """
    url = url or SUPABASE_URL
    key = key or SUPABASE_SERVICE_ROLE_KEY

    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

    client = await acreate_client(
        url, key, options=AsyncClientOptions(auto_refresh_token=False, persist_session=False)
    )
    return SupabaseStorageBackend(client.storage)


async def create_backend(name: Optional[str] = None) -> StorageBackend:
    name = name or STORAGE_BACKEND

    match name:
        case "supabase":
            return await create_supabase_backend()

        case "s3":
            return S3StorageBackend()

        case _:
            raise ValueError(f"Unknown storage backend: {name}")
