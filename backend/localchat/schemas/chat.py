"""
Chat schemas shared by the REST API, the persistence gateways and the engine.

Field names are snake_case in Python and camelCase on the wire
(createdAt, updatedAt, sessionId, isError).
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from localchat.core.config import settings


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


def make_preview(content: str, max_chars: Optional[int] = None) -> str:
    """First max_chars characters, plus '...' iff the content was longer."""
    limit = max_chars or settings.PREVIEW_MAX_CHARS
    return content[:limit] + ("..." if len(content) > limit else "")


class WireModel(BaseModel):
    """Base for schemas exchanged over HTTP."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# =============================================================================
# Session Schemas
# =============================================================================

class SessionRecord(WireModel):
    """A conversation thread's metadata."""
    id: str
    title: str = Field(..., max_length=255)
    preview: str = ""
    created_at: int
    updated_at: int


class SessionUpdate(WireModel):
    """Partial session update; only fields that were set are applied."""
    title: Optional[str] = Field(None, max_length=255)
    preview: Optional[str] = None
    updated_at: Optional[int] = None


# =============================================================================
# Message Schemas
# =============================================================================

class MessageRecord(WireModel):
    """One turn of a conversation."""
    id: str
    session_id: str
    role: Role
    content: str = ""
    timestamp: int
    is_error: bool = False


# =============================================================================
# Responses
# =============================================================================

class AckResponse(BaseModel):
    """Plain acknowledgement returned by write endpoints."""
    message: str
