"""
Persistence gateway abstraction for session and message storage.

Provides a unified async interface that works with either the local
database (SQLAlchemy, default SQLite) or a remote chat backend over HTTP.
Gateway failures raise PersistenceError; NotFoundError is raised when the
target session does not exist.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from localchat.core.config import settings
from localchat.core.exceptions import NotFoundError, PersistenceError
from localchat.schemas.chat import MessageRecord, SessionRecord, SessionUpdate
from localchat.services import chat_repository

logger = logging.getLogger(__name__)

# Database work for SqlPersistenceGateway; one worker since SQLite allows a single writer
_executor = ThreadPoolExecutor(max_workers=1)


class PersistenceGateway(ABC):
    """Abstract base class for session/message storage."""

    @abstractmethod
    async def list_sessions(self) -> List[SessionRecord]:
        """
        Return all sessions, most recently updated first.
        """
        pass

    @abstractmethod
    async def create_session(self, session: SessionRecord) -> None:
        pass

    @abstractmethod
    async def update_session(self, session_id: str, fields: Dict) -> None:
        """
        Apply a partial update.

        Args:
            session_id: Session to update
            fields: Any of title, preview, updated_at
        """
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """
        Delete a session together with all its messages.
        """
        pass

    @abstractmethod
    async def list_messages(self, session_id: str) -> List[MessageRecord]:
        """
        Return a session's messages ordered by timestamp.
        """
        pass

    @abstractmethod
    async def create_message(self, message: MessageRecord) -> None:
        """
        Save a message, replacing any stored message with the same id.

        Saving a non-error message also refreshes the owning session's
        preview and updated_at on the backing store, unless the message is
        older than the session's last update.
        """
        pass

    async def search_sessions(self, query: str) -> List[SessionRecord]:
        """Case-insensitive title search; blank query returns everything."""
        sessions = await self.list_sessions()
        if not query:
            return sessions
        needle = query.lower()
        return [s for s in sessions if needle in s.title.lower()]

    async def aclose(self) -> None:
        """Release any held resources."""
        return None


class SqlPersistenceGateway(PersistenceGateway):
    """Gateway talking to the database directly."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        if session_factory is None:
            from localchat.db.session import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory

    async def _run(self, operation, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, self._run_sync, operation, *args)

    def _run_sync(self, operation, *args):
        db = self.session_factory()
        try:
            return operation(db, *args)
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Database error: {e}") from e
        finally:
            db.close()

    async def list_sessions(self) -> List[SessionRecord]:
        return await self._run(chat_repository.list_sessions)

    async def search_sessions(self, query: str) -> List[SessionRecord]:
        return await self._run(chat_repository.search_sessions, query)

    async def create_session(self, session: SessionRecord) -> None:
        await self._run(chat_repository.create_session, session)

    async def update_session(self, session_id: str, fields: Dict) -> None:
        await self._run(chat_repository.update_session, session_id, fields)

    async def delete_session(self, session_id: str) -> None:
        await self._run(chat_repository.delete_session, session_id)

    async def list_messages(self, session_id: str) -> List[MessageRecord]:
        return await self._run(chat_repository.list_messages, session_id)

    async def create_message(self, message: MessageRecord) -> None:
        await self._run(chat_repository.save_message, message)


class HttpPersistenceGateway(PersistenceGateway):
    """Gateway talking to a running chat backend (see localchat.main)."""

    def __init__(
        self,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_base = (api_base or settings.REMOTE_API_BASE).rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=timeout or float(settings.REMOTE_TIMEOUT)
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self.client.request(method, f"{self.api_base}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise PersistenceError(f"Chat backend unreachable: {e}") from e

        if resp.status_code == 404:
            raise NotFoundError(f"Not found: {path}")
        if resp.status_code >= 400:
            raise PersistenceError(
                f"Chat backend returned HTTP {resp.status_code} for {method} {path}"
            )
        return resp

    async def list_sessions(self) -> List[SessionRecord]:
        resp = await self._request("GET", "/sessions")
        return [SessionRecord.model_validate(item) for item in resp.json()]

    async def search_sessions(self, query: str) -> List[SessionRecord]:
        if not query:
            return await self.list_sessions()
        resp = await self._request("GET", "/sessions", params={"q": query})
        return [SessionRecord.model_validate(item) for item in resp.json()]

    async def create_session(self, session: SessionRecord) -> None:
        await self._request("POST", "/sessions", json=session.model_dump(by_alias=True))

    async def update_session(self, session_id: str, fields: Dict) -> None:
        body = SessionUpdate(**fields).model_dump(by_alias=True, exclude_none=True)
        await self._request("PATCH", f"/sessions/{session_id}", json=body)

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/sessions/{session_id}")

    async def list_messages(self, session_id: str) -> List[MessageRecord]:
        resp = await self._request("GET", f"/sessions/{session_id}/messages")
        return [MessageRecord.model_validate(item) for item in resp.json()]

    async def create_message(self, message: MessageRecord) -> None:
        await self._request(
            "POST", "/messages", json=message.model_dump(by_alias=True, mode="json")
        )

    async def aclose(self) -> None:
        await self.client.aclose()


def get_persistence_gateway() -> PersistenceGateway:
    """
    Get the configured gateway.

    Uses PERSISTENCE_BACKEND setting to determine which backend to use.
    """
    if settings.PERSISTENCE_BACKEND == "remote":
        logger.info(f"Using remote chat store at {settings.REMOTE_API_BASE}")
        return HttpPersistenceGateway()

    from localchat.db.session import init_db

    init_db()
    logger.info("Using local chat store")
    return SqlPersistenceGateway()
