from __future__ import annotations

import logging
import time

from .booking.usage import UsageMeter
from .db.repository import Repositories
from .effects import Effect, run_effects
from .errors import InvalidRequest, NotFound
from .schemas import Document, UsageDelta
from .storage import BlobStorage

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


class DocumentService:
    def __init__(self, repos: Repositories, meter: UsageMeter, storage: BlobStorage) -> None:
        self.repos = repos
        self.meter = meter
        self.storage = storage

    def _owned(self, document_id: str, owner_id: str) -> Document:
        document = self.repos.documents.get(document_id)
        if document is None or document.user_id != owner_id:
            raise NotFound("Document not found or you don't have permission.")
        return document

    def upload(self, user_id: str, name: str, content: bytes, content_type: str) -> Document:
        if not name:
            raise InvalidRequest("Document name is required.")
        size_mb = len(content) / BYTES_PER_MB
        delta = UsageDelta(size_mb=size_mb)

        provider = self.repos.profiles.get_provider_by_user(user_id)
        if provider:
            self.meter.check_limit(provider.id, "storage", delta)

        storage_path = f"documents/{user_id}/{int(time.time() * 1000)}_{name}"
        url = self.storage.upload(storage_path, content, content_type)
        document = Document(
            user_id=user_id,
            name=name,
            file_path=url,
            storage_path=storage_path,
            file_type=content_type,
            size_mb=size_mb,
        )
        self.repos.documents.create(document)
        logger.info("Stored document %s (%.2f MB) for user %s", document.id, size_mb, user_id)

        if provider:
            run_effects(
                [Effect("record_usage", lambda: self.meter.record_usage(provider.id, "storage", delta))],
                context=f"Document {document.id}",
            )
        return document

    def list_owned(self, user_id: str) -> list[Document]:
        return self.repos.documents.list_by_owner(user_id)

    def list_shared(self, user_id: str) -> list[Document]:
        return self.repos.documents.list_shared_with(user_id)

    def share(self, document_id: str, owner_id: str, user_ids: list[str]) -> Document:
        document = self._owned(document_id, owner_id)
        document.shared_with = list(dict.fromkeys([*document.shared_with, *user_ids]))
        return self.repos.documents.update(document)

    def delete(self, document_id: str, owner_id: str) -> None:
        document = self._owned(document_id, owner_id)
        self.storage.remove([document.storage_path])
        self.repos.documents.delete(document_id)
