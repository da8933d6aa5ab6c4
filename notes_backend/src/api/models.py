from __future__ import annotations

from datetime import datetime
from typing import TypedDict


# PUBLIC_INTERFACE
class NoteEntity(TypedDict):
    """
    Storage-level representation of a persisted note.

    Fields:
    - id: Unique integer identifier, assigned by the store and never reused
    - title: Non-empty title (trimmed on input via schemas)
    - content: Non-empty body text
    - created_at: UTC creation timestamp, immutable
    - updated_at: UTC timestamp of the last successful write
    """

    id: int
    title: str
    content: str
    created_at: datetime
    updated_at: datetime
