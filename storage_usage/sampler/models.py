from dataclasses import dataclass, field
from typing import Optional, Union


@dataclass(eq=True, frozen=True)
class StorageFile:
    name: str
    size_bytes: int


@dataclass(eq=True, frozen=True)
class StorageFolder:
    """
    `path` is the folder's location as the backend names it, when that cannot be rebuilt by
    joining the parent path and `name`.
    """

    name: str
    path: Optional[str] = None


StorageEntry = Union[StorageFile, StorageFolder]


@dataclass(eq=True, frozen=True)
class Bucket:
    name: str


@dataclass
class EntryPage:
    """One page of a single-level listing. `next_page_token` is None on the last page."""

    entries: list[StorageEntry]
    next_page_token: Optional[str] = None


@dataclass(eq=True, frozen=True)
class BucketUsage:
    name: str
    size_bytes: int

    def to_dict(self) -> dict:
        return {"name": self.name, "sizeBytes": self.size_bytes}


@dataclass
class UsageReport:
    total_size_bytes: int
    bucket_usage: list[BucketUsage] = field(default_factory=list)

    @classmethod
    def from_bucket_usage(cls, bucket_usage: list[BucketUsage]) -> "UsageReport":
        return cls(
            total_size_bytes=sum(usage.size_bytes for usage in bucket_usage),
            bucket_usage=list(bucket_usage),
        )

    def sorted_by_size(self) -> "UsageReport":
        """Largest bucket first. Buckets of equal size are ordered by name."""
        ordered = sorted(self.bucket_usage, key=lambda usage: (-usage.size_bytes, usage.name))
        return UsageReport(total_size_bytes=self.total_size_bytes, bucket_usage=ordered)

    def to_dict(self) -> dict:
        return {
            "totalSizeBytes": self.total_size_bytes,
            "bucketUsage": [usage.to_dict() for usage in self.bucket_usage],
        }
