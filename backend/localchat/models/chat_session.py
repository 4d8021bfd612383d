"""
ChatSession model for managing conversation sessions.

A session is a named, timestamped conversation thread. Timestamps are
epoch milliseconds so the list order survives round trips through the
HTTP API unchanged.
"""

import uuid

from sqlalchemy import BigInteger, Column, String, Text
from sqlalchemy.orm import relationship

from localchat.db.base import Base


class ChatSession(Base):
    """
    Represents a chat session.

    The session list is always shown most recently updated first, so
    updated_at is indexed.
    """

    __tablename__ = "chat_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Placeholder until the title deriver (or the user) names the session
    title = Column(String(255), nullable=False)

    # Short preview of the last saved message
    preview = Column(Text, nullable=False, default="")

    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False, index=True)

    # Relationships
    messages = relationship(
        "Message",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
