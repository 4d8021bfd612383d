from localchat.db.base import Base  # noqa: F401

from .chat_session import ChatSession  # noqa: F401
from .message import Message  # noqa: F401
