"""
Session and message storage on top of SQLAlchemy.

Shared by the REST API routes and the local persistence gateway so both
paths apply the same rules:
- sessions are listed most recently updated first
- messages are listed by timestamp, insertion order breaking ties
- saving a message is an upsert by message id
- saving a non-error message refreshes its session's preview and updated_at,
  unless the message is older than the session's last update
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from localchat.core.exceptions import BadRequestError, NotFoundError
from localchat.models.chat_session import ChatSession
from localchat.models.message import Message
from localchat.schemas.chat import MessageRecord, SessionRecord, make_preview

logger = logging.getLogger(__name__)

UPDATABLE_SESSION_FIELDS = ("title", "preview", "updated_at")


def session_to_record(session: ChatSession) -> SessionRecord:
    return SessionRecord.model_validate(session)


def message_to_record(msg: Message) -> MessageRecord:
    return MessageRecord.model_validate(msg)


def get_session_or_404(db: Session, session_id: str) -> ChatSession:
    session = db.query(ChatSession).filter(ChatSession.id == session_id).first()
    if not session:
        raise NotFoundError(f"Session not found: {session_id}")
    return session


# =============================================================================
# Sessions
# =============================================================================

def list_sessions(db: Session) -> List[SessionRecord]:
    sessions = db.query(ChatSession).order_by(
        ChatSession.updated_at.desc(),
        ChatSession.created_at.desc(),
    ).all()
    return [session_to_record(s) for s in sessions]


def search_sessions(db: Session, query: str) -> List[SessionRecord]:
    """Case-insensitive substring match on title; blank query returns everything."""
    if not query:
        return list_sessions(db)

    # Filter in Python: SQL lower() only folds ASCII on SQLite
    needle = query.lower()
    return [s for s in list_sessions(db) if needle in s.title.lower()]


def create_session(db: Session, record: SessionRecord) -> SessionRecord:
    session = ChatSession(
        id=record.id,
        title=record.title,
        preview=record.preview,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session_to_record(session)


def update_session(db: Session, session_id: str, fields: Dict) -> SessionRecord:
    """Apply a partial update. Unknown keys and None values are ignored."""
    session = get_session_or_404(db, session_id)

    title = fields.get("title")
    if title is not None and not title.strip():
        raise BadRequestError("Session title cannot be empty")

    for key in UPDATABLE_SESSION_FIELDS:
        value = fields.get(key)
        if value is not None:
            setattr(session, key, value)

    db.commit()
    db.refresh(session)
    return session_to_record(session)


def delete_session(db: Session, session_id: str) -> None:
    """Delete a session and, through the cascade, all its messages."""
    session = get_session_or_404(db, session_id)

    # Bulk delete covers databases without ON DELETE CASCADE enforcement
    db.query(Message).filter(Message.session_id == session_id).delete(
        synchronize_session=False
    )
    db.delete(session)
    db.commit()


# =============================================================================
# Messages
# =============================================================================

def list_messages(db: Session, session_id: str) -> List[MessageRecord]:
    messages = db.query(Message).filter(
        Message.session_id == session_id
    ).order_by(
        Message.timestamp.asc(),
        Message.pk.asc(),
    ).all()
    return [message_to_record(m) for m in messages]


def save_message(db: Session, record: MessageRecord) -> MessageRecord:
    """Insert or replace a message, then refresh the owning session."""
    session = get_session_or_404(db, record.session_id)

    msg: Optional[Message] = db.query(Message).filter(Message.id == record.id).first()
    if msg is None:
        msg = Message(id=record.id, session_id=record.session_id)
        db.add(msg)

    msg.role = record.role.value
    msg.content = record.content
    msg.is_error = record.is_error
    msg.timestamp = record.timestamp

    # Failed generations never become the preview; neither do late writes of
    # messages older than the session's last update
    if not record.is_error and record.timestamp >= session.updated_at:
        session.preview = make_preview(record.content)
        session.updated_at = record.timestamp

    db.commit()
    db.refresh(msg)
    return message_to_record(msg)
