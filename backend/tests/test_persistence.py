"""
Tests for the persistence gateways.
"""
import asyncio
import json
import threading
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from localchat.core.exceptions import NotFoundError, PersistenceError
from localchat.main import app
from localchat.schemas.chat import MessageRecord, Role, SessionRecord
from localchat.services.persistence import HttpPersistenceGateway, SqlPersistenceGateway


def _session(session_id: str, updated_at: int, title: str = "New Chat") -> SessionRecord:
    return SessionRecord(
        id=session_id,
        title=title,
        preview="Start a new conversation",
        created_at=updated_at,
        updated_at=updated_at,
    )


def _message(message_id: str, timestamp: int, content: str = "hi", **extra) -> MessageRecord:
    role = extra.pop("role", Role.USER)
    return MessageRecord(
        id=message_id,
        session_id="s-1",
        role=role,
        content=content,
        timestamp=timestamp,
        **extra,
    )


class TestSqlGateway:
    """Tests for the local SQLAlchemy gateway."""

    @pytest.mark.asyncio
    async def test_sessions_most_recent_first(self, sql_gateway: SqlPersistenceGateway):
        await sql_gateway.create_session(_session("s-1", 1000))
        await sql_gateway.create_session(_session("s-2", 3000))
        await sql_gateway.create_session(_session("s-3", 2000))

        sessions = await sql_gateway.list_sessions()
        assert [s.id for s in sessions] == ["s-2", "s-3", "s-1"]

    @pytest.mark.asyncio
    async def test_partial_update(self, sql_gateway: SqlPersistenceGateway):
        await sql_gateway.create_session(_session("s-1", 1000))
        await sql_gateway.update_session("s-1", {"title": "Weekend Trip"})

        [session] = await sql_gateway.list_sessions()
        assert session.title == "Weekend Trip"
        assert session.preview == "Start a new conversation"
        assert session.updated_at == 1000

    @pytest.mark.asyncio
    async def test_update_unknown_session(self, sql_gateway: SqlPersistenceGateway):
        with pytest.raises(NotFoundError):
            await sql_gateway.update_session("missing", {"title": "X"})

    @pytest.mark.asyncio
    async def test_messages_ordered_with_ties(self, sql_gateway: SqlPersistenceGateway):
        await sql_gateway.create_session(_session("s-1", 1000))
        await sql_gateway.create_message(_message("m-b", 2000, "second"))
        await sql_gateway.create_message(_message("m-c", 2000, "third"))
        await sql_gateway.create_message(_message("m-a", 1500, "first"))

        messages = await sql_gateway.list_messages("s-1")
        assert [m.content for m in messages] == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_message_upsert_keeps_position(self, sql_gateway: SqlPersistenceGateway):
        await sql_gateway.create_session(_session("s-1", 1000))
        await sql_gateway.create_message(_message("m-1", 2000, "question"))
        await sql_gateway.create_message(_message("m-2", 2001, "old", role=Role.MODEL))
        await sql_gateway.create_message(_message("m-2", 2001, "new", role=Role.MODEL))

        messages = await sql_gateway.list_messages("s-1")
        assert [(m.id, m.content) for m in messages] == [("m-1", "question"), ("m-2", "new")]

    @pytest.mark.asyncio
    async def test_message_refreshes_session(self, sql_gateway: SqlPersistenceGateway):
        await sql_gateway.create_session(_session("s-1", 1000))
        await sql_gateway.create_message(_message("m-1", 2000, "Hello"))

        [session] = await sql_gateway.list_sessions()
        assert session.preview == "Hello"
        assert session.updated_at == 2000

    @pytest.mark.asyncio
    async def test_error_message_leaves_session(self, sql_gateway: SqlPersistenceGateway):
        await sql_gateway.create_session(_session("s-1", 1000))
        await sql_gateway.create_message(
            _message("m-1", 2000, "Failed", role=Role.MODEL, is_error=True)
        )

        [session] = await sql_gateway.list_sessions()
        assert session.preview == "Start a new conversation"
        [message] = await sql_gateway.list_messages("s-1")
        assert message.is_error is True

    @pytest.mark.asyncio
    async def test_delete_cascades(self, sql_gateway: SqlPersistenceGateway):
        await sql_gateway.create_session(_session("s-1", 1000))
        await sql_gateway.create_message(_message("m-1", 2000))
        await sql_gateway.delete_session("s-1")

        assert await sql_gateway.list_sessions() == []
        assert await sql_gateway.list_messages("s-1") == []

    @pytest.mark.asyncio
    async def test_search(self, sql_gateway: SqlPersistenceGateway):
        await sql_gateway.create_session(_session("s-1", 1000, "Python Basics"))
        await sql_gateway.create_session(_session("s-2", 2000, "Trip"))

        assert [s.id for s in await sql_gateway.search_sessions("python")] == ["s-1"]
        assert len(await sql_gateway.search_sessions("")) == 2

    @pytest.mark.asyncio
    async def test_duplicate_session_raises_persistence_error(
        self, sql_gateway: SqlPersistenceGateway
    ):
        await sql_gateway.create_session(_session("s-1", 1000))
        with pytest.raises(PersistenceError):
            await sql_gateway.create_session(_session("s-1", 1000))

    @pytest.mark.asyncio
    async def test_database_work_leaves_event_loop_free(self, sql_gateway: SqlPersistenceGateway):
        loop_ran = threading.Event()
        seen = {}

        def slow_list(db):
            seen["thread"] = threading.get_ident()
            # Set only if the event loop keeps running during the query
            seen["loop_ran"] = loop_ran.wait(timeout=2)
            return []

        async def mark():
            loop_ran.set()

        with patch("localchat.services.chat_repository.list_sessions", side_effect=slow_list):
            marker = asyncio.ensure_future(mark())
            assert await sql_gateway.list_sessions() == []
            await marker

        assert seen["thread"] != threading.get_ident()
        assert seen["loop_ran"] is True


class TestHttpGateway:
    """Tests for the remote gateway against a mock transport."""

    @staticmethod
    def _gateway(handler) -> HttpPersistenceGateway:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpPersistenceGateway(api_base="http://chat/api/v1/", client=client)

    @pytest.mark.asyncio
    async def test_create_session_sends_camel_case(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(201, json={"message": "Session created"})

        gateway = self._gateway(handler)
        await gateway.create_session(_session("s-1", 1000))
        await gateway.aclose()

        method, path, body = seen[0]
        assert (method, path) == ("POST", "/api/v1/sessions")
        assert body["createdAt"] == 1000
        assert body["updatedAt"] == 1000

    @pytest.mark.asyncio
    async def test_update_sends_only_given_fields(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"message": "Session updated"})

        gateway = self._gateway(handler)
        await gateway.update_session("s-1", {"preview": "Hi", "updated_at": 5})
        assert seen == [{"preview": "Hi", "updatedAt": 5}]

    @pytest.mark.asyncio
    async def test_list_messages_parses_records(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/sessions/s-1/messages"
            return httpx.Response(200, json=[{
                "id": "m-1",
                "sessionId": "s-1",
                "role": "model",
                "content": "Hello",
                "timestamp": 10,
                "isError": True,
            }])

        [message] = await self._gateway(handler).list_messages("s-1")
        assert message.role == Role.MODEL
        assert message.is_error is True

    @pytest.mark.asyncio
    async def test_search_passes_query(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["q"] == "trip"
            return httpx.Response(200, json=[])

        assert await self._gateway(handler).search_sessions("trip") == []

    @pytest.mark.asyncio
    async def test_not_found(self):
        gateway = self._gateway(lambda request: httpx.Response(404, json={"detail": "x"}))
        with pytest.raises(NotFoundError):
            await gateway.delete_session("missing")

    @pytest.mark.asyncio
    async def test_server_error(self):
        gateway = self._gateway(lambda request: httpx.Response(500))
        with pytest.raises(PersistenceError):
            await gateway.list_sessions()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(PersistenceError):
            await self._gateway(handler).list_sessions()


class TestHttpGatewayAgainstBackend:
    """The remote gateway speaks the backend's own REST API."""

    @pytest.mark.asyncio
    async def test_round_trip(self, client: TestClient):
        transport = httpx.ASGITransport(app=app)
        gateway = HttpPersistenceGateway(
            api_base="http://testserver/api/v1",
            client=httpx.AsyncClient(transport=transport),
        )

        await gateway.create_session(_session("s-1", 1000))
        await gateway.create_message(_message("m-1", 2000, "Hello backend"))
        await gateway.update_session("s-1", {"title": "Greetings"})

        [session] = await gateway.list_sessions()
        assert session.title == "Greetings"
        assert session.preview == "Hello backend"
        [message] = await gateway.list_messages("s-1")
        assert message.content == "Hello backend"

        await gateway.delete_session("s-1")
        assert await gateway.list_sessions() == []
        await gateway.aclose()
