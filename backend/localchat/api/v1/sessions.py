"""
Session API endpoints.

Provides endpoints for:
- Listing and searching sessions (most recently updated first)
- Creating, updating and deleting sessions
- Retrieving a session's messages
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from localchat.core.deps import get_db
from localchat.schemas.chat import AckResponse, MessageRecord, SessionRecord, SessionUpdate
from localchat.services import chat_repository

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("", response_model=List[SessionRecord])
def list_sessions(
    q: Optional[str] = None,
    db: Session = Depends(get_db),
) -> List[SessionRecord]:
    """
    List all sessions, or only those whose title contains `q` (case-insensitive).
    """
    if q:
        return chat_repository.search_sessions(db, q)
    return chat_repository.list_sessions(db)


@router.post("", response_model=AckResponse, status_code=status.HTTP_201_CREATED)
def create_session(
    data: SessionRecord,
    db: Session = Depends(get_db),
) -> AckResponse:
    """
    Create a session. The client chooses the id and timestamps.
    """
    chat_repository.create_session(db, data)
    return AckResponse(message="Session created")


@router.patch("/{session_id}", response_model=AckResponse)
def update_session(
    session_id: str,
    data: SessionUpdate,
    db: Session = Depends(get_db),
) -> AckResponse:
    """
    Partially update a session (title, preview, updatedAt).
    """
    fields = data.model_dump(exclude_unset=True)
    if not any(value is not None for value in fields.values()):
        return AckResponse(message="No updates")

    chat_repository.update_session(db, session_id, fields)
    return AckResponse(message="Session updated")


@router.delete("/{session_id}", response_model=AckResponse)
def delete_session(
    session_id: str,
    db: Session = Depends(get_db),
) -> AckResponse:
    """
    Delete a session and all its messages.
    """
    chat_repository.delete_session(db, session_id)
    return AckResponse(message="Session deleted")


@router.get("/{session_id}/messages", response_model=List[MessageRecord])
def list_messages(
    session_id: str,
    db: Session = Depends(get_db),
) -> List[MessageRecord]:
    """
    Get a session's messages in conversation order.
    """
    chat_repository.get_session_or_404(db, session_id)
    return chat_repository.list_messages(db, session_id)
