from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


class BlobStorage(Protocol):
    def upload(self, path: str, content: bytes, content_type: str) -> str:
        """Store ``content`` at ``path`` and return a durable retrieval URL."""
        ...

    def remove(self, paths: list[str]) -> None:
        ...


@dataclass
class InMemoryBlobStorage:
    base_url: str = "memory://documents"
    blobs: dict[str, bytes] = field(default_factory=dict)

    def upload(self, path: str, content: bytes, content_type: str) -> str:
        self.blobs[path] = content
        return f"{self.base_url}/{path}"

    def remove(self, paths: list[str]) -> None:
        for path in paths:
            self.blobs.pop(path, None)


class SupabaseBlobStorage:
    def __init__(self, client, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    def upload(self, path: str, content: bytes, content_type: str) -> str:
        bucket = self.client.storage.from_(self.bucket)
        bucket.upload(path, content, {"content-type": content_type})
        return bucket.get_public_url(path)

    def remove(self, paths: list[str]) -> None:
        self.client.storage.from_(self.bucket).remove(paths)
