"""
Message model for storing chat messages.
"""
from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from localchat.db.base import Base


class Message(Base):
    """
    Represents a single message in a chat conversation.

    Messages are ordered by timestamp; pk follows insertion order and breaks ties.
    """
    __tablename__ = "messages"

    pk = Column(Integer, primary_key=True, autoincrement=True)

    # Client-generated identifier, stable across regenerate
    id = Column(String(36), nullable=False, unique=True, index=True)

    session_id = Column(
        String(36),
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # "user" or "model"
    role = Column(String(20), nullable=False)

    content = Column(Text, nullable=False, default="")

    # True when content is the localized failure text of a failed generation
    is_error = Column(Boolean, nullable=False, default=False)

    timestamp = Column(BigInteger, nullable=False, index=True)

    # Relationships
    session = relationship("ChatSession", back_populates="messages")
