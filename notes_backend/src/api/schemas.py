from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _require_text(value: str, field_name: str) -> str:
    if not value.strip():
        raise ValueError(f"{field_name} must not be empty")
    return value


# PUBLIC_INTERFACE
class NoteCreate(BaseModel):
    """
    Schema for creating a new note. Both fields are required and must contain
    non-whitespace text.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Shopping List",
                "content": "Milk, eggs, bread",
            }
        }
    )

    title: str = Field(..., description="Note title", min_length=1)
    content: str = Field(..., description="Note body", min_length=1)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip surrounding whitespace; reject blank titles.
        """
        return _require_text(v, "title").strip()

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        """
        Reject blank content. The body is stored as sent.
        """
        return _require_text(v, "content")


# PUBLIC_INTERFACE
class NoteUpdate(BaseModel):
    """
    Schema for updating an existing note.
    All fields are optional; only provided fields will be updated.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "content": "Milk, eggs, bread and coffee",
            }
        }
    )

    title: Optional[str] = Field(default=None, description="New note title")
    content: Optional[str] = Field(default=None, description="New note body")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        """
        If title is provided, strip whitespace and reject blank values.
        """
        if v is None:
            return v
        return _require_text(v, "title").strip()

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _require_text(v, "content")


# PUBLIC_INTERFACE
class NoteOut(BaseModel):
    """
    Schema returned by the API for a note.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": 42,
                "title": "Shopping List",
                "content": "Milk, eggs, bread",
                "created_at": "2026-10-18T09:15:30.123456+00:00",
                "updated_at": "2026-10-18T10:02:11.000001+00:00",
            }
        }
    )

    id: Optional[int] = Field(..., description="Unique identifier of the note (null if not persisted)")
    title: str = Field(..., description="Note title")
    content: str = Field(..., description="Note body")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


class MessageOut(BaseModel):
    """Plain acknowledgement body."""

    message: str = Field(..., description="Human readable outcome")
