from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Request, status

from ..models import NoteEntity
from ..repositories import Repository, StorageError
from ..schemas import MessageOut, NoteCreate, NoteOut, NoteUpdate

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/notes",
    tags=["notes"],
)

NOT_FOUND = "Note not found"

# SQLite INTEGER range; anything wider is rejected as an invalid id
NOTE_ID = Path(..., ge=-(2**63), le=2**63 - 1, description="Note identifier")

_ERROR_RESPONSES = {
    400: {"description": "Validation error"},
    500: {"description": "Storage failure"},
}


def _get_repo(request: Request) -> Repository:
    """
    Dependency returning the repository opened by the application lifespan.
    """
    return request.app.state.repository


def _storage_failure(message: str) -> HTTPException:
    # Internal detail is logged by the caller, never returned
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)


def _out(items: List[NoteEntity]) -> List[NoteOut]:
    return [NoteOut(**it) for it in items]  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=List[NoteOut],
    summary="List Notes",
    description="Return every note, most recently updated first.",
    responses={
        200: {"description": "Notes retrieved successfully"},
        500: _ERROR_RESPONSES[500],
    },
)
def list_notes(repo: Repository = Depends(_get_repo)) -> List[NoteOut]:
    """
    List all notes.
    """
    try:
        items = repo.list_all()
    except StorageError:
        logger.exception("Failed to list notes")
        raise _storage_failure("Failed to fetch notes")
    return _out(items)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=NoteOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Note",
    description="Create a new note and return the created resource.",
    responses={
        201: {"description": "Note created successfully"},
        **_ERROR_RESPONSES,
    },
)
def create_note(payload: NoteCreate, repo: Repository = Depends(_get_repo)) -> NoteOut:
    """
    Create a new note. Title and content must both be non-blank.
    """
    try:
        created = repo.create(payload)
    except StorageError:
        logger.exception("Failed to create note")
        raise _storage_failure("Failed to create note")
    logger.info("Created note id=%s", created["id"])
    return NoteOut(**created)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/search/{query:path}",
    response_model=List[NoteOut],
    summary="Search Notes",
    description=(
        "Return notes whose title or content contains the percent-decoded query as a "
        "case-insensitive substring. A blank query returns every note."
    ),
    responses={
        200: {"description": "Search results"},
        500: _ERROR_RESPONSES[500],
    },
)
def search_notes(query: str, repo: Repository = Depends(_get_repo)) -> List[NoteOut]:
    """
    Substring search across title and content.
    """
    try:
        items = repo.search(query) if query.strip() else repo.list_all()
    except StorageError:
        logger.exception("Failed to search notes")
        raise _storage_failure("Failed to search notes")
    return _out(items)


@router.get(
    "/search",
    response_model=List[NoteOut],
    summary="Search Notes (blank query)",
    description="A search without a term lists every note.",
    include_in_schema=False,
)
def search_notes_blank(repo: Repository = Depends(_get_repo)) -> List[NoteOut]:
    return search_notes("", repo)


# PUBLIC_INTERFACE
@router.get(
    "/{note_id}",
    response_model=NoteOut,
    summary="Get Note",
    description="Get a single note by ID.",
    responses={
        200: {"description": "Note found"},
        404: {"description": NOT_FOUND},
        **_ERROR_RESPONSES,
    },
)
def get_note(note_id: int = NOTE_ID, repo: Repository = Depends(_get_repo)) -> NoteOut:
    """
    Retrieve a single note by its ID.
    """
    try:
        item = repo.get(note_id)
    except StorageError:
        logger.exception("Failed to fetch note id=%s", note_id)
        raise _storage_failure("Failed to fetch note")
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    return NoteOut(**item)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.put(
    "/{note_id}",
    response_model=NoteOut,
    summary="Update Note",
    description=(
        "Update the title and/or content of a note. Omitted fields keep their value; "
        "updated_at is always reset."
    ),
    responses={
        200: {"description": "Note updated"},
        404: {"description": NOT_FOUND},
        **_ERROR_RESPONSES,
    },
)
def update_note(payload: NoteUpdate, note_id: int = NOTE_ID, repo: Repository = Depends(_get_repo)) -> NoteOut:
    """
    Partial update of a note.
    """
    try:
        updated = repo.update(note_id, payload)
    except StorageError:
        logger.exception("Failed to update note id=%s", note_id)
        raise _storage_failure("Failed to update note")
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    return NoteOut(**updated)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/{note_id}",
    response_model=MessageOut,
    summary="Delete Note",
    description="Delete a note by ID.",
    responses={
        200: {"description": "Note deleted"},
        404: {"description": NOT_FOUND},
        **_ERROR_RESPONSES,
    },
)
def delete_note(note_id: int = NOTE_ID, repo: Repository = Depends(_get_repo)) -> MessageOut:
    """
    Delete a note. Returns 200 with a message on success, 404 if not found.
    """
    try:
        ok = repo.delete(note_id)
    except StorageError:
        logger.exception("Failed to delete note id=%s", note_id)
        raise _storage_failure("Failed to delete note")
    if not ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    logger.info("Deleted note id=%s", note_id)
    return MessageOut(message="Note deleted successfully")
