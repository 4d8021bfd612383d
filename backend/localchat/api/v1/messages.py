"""
Message API endpoints.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from localchat.core.deps import get_db
from localchat.schemas.chat import AckResponse, MessageRecord
from localchat.services import chat_repository

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("", response_model=AckResponse, status_code=status.HTTP_201_CREATED)
def save_message(
    data: MessageRecord,
    db: Session = Depends(get_db),
) -> AckResponse:
    """
    Save a message (insert, or replace by id).

    Also refreshes the owning session's preview and updatedAt unless the
    message is a failed generation.
    """
    chat_repository.save_message(db, data)
    return AckResponse(message="Message saved")
