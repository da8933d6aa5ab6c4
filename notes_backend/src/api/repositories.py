from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Dict, List, Optional

from .models import NoteEntity
from .schemas import NoteCreate, NoteUpdate
from .settings import Settings, get_settings

_TICK = timedelta(microseconds=1)


class StorageError(Exception):
    """Raised when the underlying storage engine fails unexpectedly."""


class UpdateClock:
    """
    Hands out strictly increasing UTC timestamps.

    Two writes never share a timestamp, so the write that completes last
    always carries the largest ``updated_at``.
    """

    def __init__(self, last: Optional[datetime] = None) -> None:
        self._lock = RLock()
        self._last = last

    def now(self) -> datetime:
        with self._lock:
            current = datetime.now(timezone.utc)
            if self._last is not None and current <= self._last:
                current = self._last + _TICK
            self._last = current
            return current


def contains_text(haystack: Optional[str], needle: str) -> bool:
    """Case-insensitive literal substring match."""
    if haystack is None:
        return False
    return needle.casefold() in haystack.casefold()


def sort_key(note: NoteEntity):
    """Newest ``updated_at`` first; later insertions win ties."""
    return note["updated_at"], note["id"]


# PUBLIC_INTERFACE
class Repository(ABC):
    """Abstract repository contract for note storage backends."""

    @abstractmethod
    def list_all(self) -> List[NoteEntity]:
        """Return every note ordered by updated_at descending."""

    @abstractmethod
    def get(self, note_id: int) -> Optional[NoteEntity]:
        """Return a note by id, or None if not found."""

    @abstractmethod
    def create(self, data: NoteCreate) -> NoteEntity:
        """Persist a new note and return it with id and timestamps assigned."""

    @abstractmethod
    def update(self, note_id: int, data: NoteUpdate) -> Optional[NoteEntity]:
        """
        Apply the provided fields to an existing note and reset updated_at.
        Return the updated note, or None if not found.
        """

    @abstractmethod
    def delete(self, note_id: int) -> bool:
        """Delete a note by id. Return True if deleted, False if not found."""

    @abstractmethod
    def search(self, term: str) -> List[NoteEntity]:
        """
        Return notes whose title or content contains ``term``
        (case-insensitive), ordered like list_all.
        """

    def close(self) -> None:
        """Release backend resources."""


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository for ephemeral runs and tests.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[int, NoteEntity] = {}
        self._next_id = 1
        self._clock = UpdateClock()

    def _allocate_id(self) -> int:
        with self._lock:
            i = self._next_id
            self._next_id += 1
            return i

    def _ordered(self, items: List[NoteEntity]) -> List[NoteEntity]:
        # Return copies to avoid external mutation
        return [n.copy() for n in sorted(items, key=sort_key, reverse=True)]

    def list_all(self) -> List[NoteEntity]:
        with self._lock:
            return self._ordered(list(self._items.values()))

    def get(self, note_id: int) -> Optional[NoteEntity]:
        with self._lock:
            item = self._items.get(note_id)
            return None if item is None else item.copy()

    def create(self, data: NoteCreate) -> NoteEntity:
        with self._lock:
            now = self._clock.now()
            entity: NoteEntity = {
                "id": self._allocate_id(),
                "title": data.title,
                "content": data.content,
                "created_at": now,
                "updated_at": now,
            }
            self._items[entity["id"]] = entity
            return entity.copy()

    def update(self, note_id: int, data: NoteUpdate) -> Optional[NoteEntity]:
        with self._lock:
            existing = self._items.get(note_id)
            if existing is None:
                return None

            updated = existing.copy()
            if data.title is not None:
                updated["title"] = data.title
            if data.content is not None:
                updated["content"] = data.content
            updated["updated_at"] = self._clock.now()

            self._items[note_id] = updated
            return updated.copy()

    def delete(self, note_id: int) -> bool:
        with self._lock:
            return self._items.pop(note_id, None) is not None

    def search(self, term: str) -> List[NoteEntity]:
        with self._lock:
            matches = [
                n
                for n in self._items.values()
                if contains_text(n["title"], term) or contains_text(n["content"], term)
            ]
            return self._ordered(matches)


# PUBLIC_INTERFACE
def get_repository(settings: Optional[Settings] = None) -> Repository:
    """
    Factory to return the configured repository based on settings.
    - sqlite: SQLiteRepository backed by settings.sqlite_db_path
    - memory: InMemoryRepository
    """
    settings = settings or get_settings()
    if settings.persistence_backend == "memory":
        return InMemoryRepository()
    from .db import SQLiteRepository

    return SQLiteRepository(settings.sqlite_db_path)
