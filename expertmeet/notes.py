"""Private notes a provider keeps about each of their clients."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from .db.repository import Repositories
from .errors import InvalidRequest, NotFound
from .schemas import ClientNote, ClientNoteCreate

logger = logging.getLogger(__name__)


class ClientNoteService:
    def __init__(self, repos: Repositories, clock: Callable[[], datetime] = datetime.utcnow) -> None:
        self.repos = repos
        self.clock = clock

    def _owned(self, note_id: str, provider_id: str) -> ClientNote:
        note = self.repos.notes.get(note_id)
        if note is None or note.provider_id != provider_id:
            raise NotFound("Note not found or you don't have permission.")
        return note

    def list_notes(self, provider_id: str, client_id: str) -> list[ClientNote]:
        return self.repos.notes.list_for_client(provider_id, client_id)

    def add_note(self, request: ClientNoteCreate) -> ClientNote:
        content = request.content.strip()
        if not content:
            raise InvalidRequest("Note content is required.")
        if not self.repos.profiles.get_provider(request.provider_id):
            raise NotFound("Provider not found.")
        if not self.repos.profiles.get_client(request.client_id):
            raise NotFound("Client not found.")
        now = self.clock()
        note = ClientNote(
            provider_id=request.provider_id,
            client_id=request.client_id,
            content=content,
            created_at=now,
            updated_at=now,
        )
        self.repos.notes.create(note)
        logger.info("Provider %s added note %s about client %s", note.provider_id, note.id, note.client_id)
        return note

    def update_note(self, note_id: str, provider_id: str, content: str) -> ClientNote:
        content = content.strip()
        if not content:
            raise InvalidRequest("Note content is required.")
        note = self._owned(note_id, provider_id)
        note.content = content
        note.updated_at = self.clock()
        return self.repos.notes.update(note)

    def delete_note(self, note_id: str, provider_id: str) -> None:
        self._owned(note_id, provider_id)
        self.repos.notes.delete(note_id)
