"""
Pytest configuration and fixtures for the test suite.
"""
import asyncio
import os
import pytest
from typing import Dict, Generator, List, Optional
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker, Session

# Use SQLite for testing; set before importing the app so its engine points here
SQLALCHEMY_TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    "sqlite:///./test.db"
)
os.environ["ENV"] = "development"
os.environ["DATABASE_URL"] = SQLALCHEMY_TEST_DATABASE_URL
os.environ["PERSISTENCE_BACKEND"] = "local"

from localchat.main import app
from localchat.core.deps import get_db
from localchat.core.exceptions import PersistenceError
from localchat.db.base import Base
from localchat.db.session import build_engine, init_db
from localchat.schemas.chat import MessageRecord, SessionRecord
from localchat.services.conversation import ConversationEngine
from localchat.services.persistence import PersistenceGateway, SqlPersistenceGateway
from localchat.services.session_store import SessionStore


engine = build_engine(SQLALCHEMY_TEST_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""

    def override_get_db_with_session():
        """Return the test database session."""
        yield db

    app.dependency_overrides[get_db] = override_get_db_with_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def sql_gateway(tmp_path) -> SqlPersistenceGateway:
    """Local gateway on its own SQLite file."""
    gateway_engine = build_engine(f"sqlite:///{tmp_path / 'chat.db'}")
    init_db(bind=gateway_engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=gateway_engine)
    yield SqlPersistenceGateway(session_factory=factory)
    gateway_engine.dispose()


# =============================================================================
# In-memory collaborators for store and engine tests
# =============================================================================

class InMemoryGateway(PersistenceGateway):
    """Dict-backed gateway; operations named in `fail` raise PersistenceError."""

    def __init__(self, sessions: Optional[List[SessionRecord]] = None):
        self.sessions: Dict[str, SessionRecord] = {s.id: s for s in sessions or []}
        self.messages: Dict[str, MessageRecord] = {}
        self.fail = set()
        self.calls: List[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail:
            raise PersistenceError(f"{operation} failed")

    async def list_sessions(self) -> List[SessionRecord]:
        self._check("list_sessions")
        return sorted(self.sessions.values(), key=lambda s: s.updated_at, reverse=True)

    async def create_session(self, session: SessionRecord) -> None:
        self._check("create_session")
        self.sessions[session.id] = session.model_copy()

    async def update_session(self, session_id: str, fields: Dict) -> None:
        self._check("update_session")
        current = self.sessions[session_id]
        self.sessions[session_id] = current.model_copy(update=fields)

    async def delete_session(self, session_id: str) -> None:
        self._check("delete_session")
        self.sessions.pop(session_id, None)
        self.messages = {
            k: m for k, m in self.messages.items() if m.session_id != session_id
        }

    async def list_messages(self, session_id: str) -> List[MessageRecord]:
        self._check("list_messages")
        found = [m for m in self.messages.values() if m.session_id == session_id]
        return sorted((m.model_copy() for m in found), key=lambda m: m.timestamp)

    async def create_message(self, message: MessageRecord) -> None:
        self._check("create_message")
        self.messages[message.id] = message.model_copy()


class FakeLLM:
    """
    Scripted generation client.

    stream_reply emits `chunks` as deltas (cumulative text to on_chunk). When
    `pause` is set, it stops after the first chunk until `resume` is set.
    """

    def __init__(self, chunks=None, error=None, title="Greeting"):
        self.model = "fake-model"
        self.chunks = ["Hello"] if chunks is None else chunks
        self.error = error
        self.title = title
        self.calls: List[Dict] = []
        self.title_calls: List[List[Dict]] = []
        self.pause = False
        self.paused = asyncio.Event()
        self.resume = asyncio.Event()

    async def stream_reply(self, history, new_message, on_chunk, system_instruction=None):
        self.calls.append({
            "history": [(m.role.value, m.content) for m in history],
            "message": new_message,
            "system_instruction": system_instruction,
        })
        text = ""
        for index, delta in enumerate(self.chunks):
            text += delta
            on_chunk(text)
            if index == 0 and self.pause:
                self.paused.set()
                await self.resume.wait()
        if self.error is not None:
            raise self.error
        return text

    async def chat(self, messages, temperature=None, max_tokens=None):
        self.title_calls.append(messages)
        if isinstance(self.title, Exception):
            raise self.title
        return self.title


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def store(gateway: InMemoryGateway) -> SessionStore:
    return SessionStore(gateway)


@pytest.fixture
def chat_engine(store: SessionStore, gateway: InMemoryGateway, fake_llm: FakeLLM) -> ConversationEngine:
    return ConversationEngine(store=store, gateway=gateway, llm_client=fake_llm)
