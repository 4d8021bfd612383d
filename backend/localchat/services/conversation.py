"""
Conversation engine: the active session's messages and the send/regenerate flows.

This module handles:
- Optimistic updates: messages appear in memory before they are durably saved
- Streaming: the model message is overwritten with each cumulative chunk
- Failure: a failed generation becomes an error message that can be regenerated
- Title derivation after the first exchange, without blocking generation

All state lives on one asyncio event loop. is_generating is a single
application-wide gate: at most one stream mutates message state at a time.
"""

import asyncio
import logging
import uuid
from typing import Callable, Coroutine, List, Optional, Set

from localchat.core.clock import now_ms
from localchat.core.i18n import get_translations, is_placeholder_title
from localchat.schemas.chat import MessageRecord, Role, SessionRecord, make_preview
from localchat.schemas.user_settings import UserSettings
from localchat.services.llm_client import LLMClient
from localchat.services.persistence import PersistenceGateway
from localchat.services.session_store import SessionStore
from localchat.services.title_deriver import TitleDeriver

logger = logging.getLogger(__name__)

# Called with (message_id, full_text) whenever an in-view message changes
MessageListener = Callable[[str, str], None]


class ConversationEngine:
    """Owns the in-memory message list of the active session."""

    def __init__(
        self,
        store: SessionStore,
        gateway: PersistenceGateway,
        llm_client: LLMClient,
        title_deriver: Optional[TitleDeriver] = None,
        config: Optional[UserSettings] = None,
        listener: Optional[MessageListener] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.llm_client = llm_client
        self.title_deriver = title_deriver or TitleDeriver(llm_client)
        self._config = config or UserSettings()
        self.store.language = self._config.language

        self._messages: List[MessageRecord] = []
        # Session whose messages are currently loaded into _messages
        self._view_session_id: Optional[str] = None
        self._is_generating = False
        self._streaming_message_id: Optional[str] = None
        self._background: Set[asyncio.Task] = set()
        self.listener = listener

    # =========================================================================
    # State
    # =========================================================================

    @property
    def config(self) -> UserSettings:
        return self._config

    @property
    def messages(self) -> List[MessageRecord]:
        return list(self._messages)

    @property
    def is_generating(self) -> bool:
        return self._is_generating

    @property
    def streaming_message_id(self) -> Optional[str]:
        return self._streaming_message_id

    @property
    def active_session(self) -> Optional[SessionRecord]:
        return self.store.active_session

    def update_config(self, **changes) -> UserSettings:
        """Swap in a new settings snapshot; later sends use it."""
        self._config = self._config.with_changes(**changes)
        self.store.language = self._config.language
        return self._config

    # =========================================================================
    # Sessions
    # =========================================================================

    async def start(self) -> None:
        """Load sessions (creating one if none exist) and the front session's messages."""
        await self.store.load()
        await self._load_active_messages()

    # Switching, creating and deleting sessions are ignored while a reply
    # streams: the in-flight model message exists only in _messages until
    # its final write, so reloading the view would lose it.

    async def select_session(self, session_id: str) -> bool:
        if session_id == self._view_session_id:
            return True
        if self._is_generating:
            logger.debug(f"Ignoring switch to session {session_id} during generation")
            return False
        if not self.store.select(session_id):
            return False
        await self._load_active_messages()
        return True

    async def new_session(self) -> Optional[SessionRecord]:
        if self._is_generating:
            return None
        session = await self.store.create()
        self._messages = []
        self._view_session_id = session.id
        return session

    async def delete_session(self, session_id: str) -> bool:
        if self._is_generating:
            return False
        await self.store.delete(session_id)
        if self._view_session_id != self.store.active_id:
            await self._load_active_messages()
        return True

    async def rename_session(self, session_id: str, title: str) -> Optional[SessionRecord]:
        title = title.strip()
        if not title:
            return None
        return await self.store.update(session_id, {"title": title})

    def search_sessions(self, query: str) -> List[SessionRecord]:
        return self.store.search(query)

    async def _load_active_messages(self) -> None:
        session_id = self.store.active_id
        if session_id is None:
            self._messages = []
            self._view_session_id = None
            return

        try:
            messages = await self.gateway.list_messages(session_id)
        except Exception as e:
            logger.error(f"Failed to load messages for session {session_id}: {e}")
            messages = []

        # The active session changed while loading; the newer load wins
        if self.store.active_id != session_id:
            return

        self._messages = sorted(messages, key=lambda m: m.timestamp)
        self._view_session_id = session_id

    # =========================================================================
    # Send / Regenerate
    # =========================================================================

    async def send(self, text: str) -> None:
        """
        Send user text and stream the model's reply into a new model message.

        Silently does nothing for blank text, without an active session, or
        while another generation is running.
        """
        prompt = (text or "").strip()
        session = self.store.active_session
        if not prompt or session is None or self._is_generating:
            return
        if self._view_session_id != session.id:
            return

        # Prior turns only; the new text is passed separately
        history = list(self._messages)

        user_msg = MessageRecord(
            id=str(uuid.uuid4()),
            session_id=session.id,
            role=Role.USER,
            content=prompt,
            timestamp=now_ms(),
        )
        self._messages.append(user_msg)
        self._spawn(self._save_message(user_msg.model_copy()))

        self._is_generating = True
        try:
            model_msg = MessageRecord(
                id=str(uuid.uuid4()),
                session_id=session.id,
                role=Role.MODEL,
                content="",
                timestamp=now_ms(),
            )
            self._messages.append(model_msg)

            if is_placeholder_title(session.title) and not history:
                self._spawn(self._derive_title(session.id, prompt, self._config.language))

            await self._generate(session.id, model_msg, history, prompt)
        finally:
            self._is_generating = False

    async def regenerate(self, message_id: str) -> None:
        """
        Re-run generation for a model message, in place.

        Used for both "regenerate" and "retry" on a failed message. The
        preceding user message is resent; the message keeps its id and
        position. Silently does nothing when the target is not a model
        message directly preceded by a user message.
        """
        session = self.store.active_session
        if session is None or self._is_generating:
            return
        if self._view_session_id != session.id:
            return

        index = next(
            (i for i, m in enumerate(self._messages) if m.id == message_id), None
        )
        if index is None or index == 0:
            return
        target = self._messages[index]
        previous = self._messages[index - 1]
        if target.role != Role.MODEL or previous.role != Role.USER:
            return

        prompt = previous.content
        target.content = ""
        target.is_error = False

        self._is_generating = True
        try:
            history = list(self._messages[:index - 1])

            if is_placeholder_title(session.title) and not history:
                self._spawn(self._derive_title(session.id, prompt, self._config.language))

            await self._generate(session.id, target, history, prompt)
        finally:
            self._is_generating = False

    async def _generate(
        self,
        session_id: str,
        target: MessageRecord,
        history: List[MessageRecord],
        prompt: str,
    ) -> bool:
        """Stream into target and persist the outcome. Returns True on success."""
        config = self._config
        message_id = target.id
        self._streaming_message_id = message_id

        def on_chunk(text: str) -> None:
            # Chunks are cumulative: overwrite, never append
            visible = self._find_visible(session_id, message_id)
            if visible is None:
                logger.debug(f"Dropping chunk for message {message_id} no longer in view")
                return
            visible.content = text
            self._notify(message_id, text)

        try:
            try:
                final_text = await self.llm_client.stream_reply(
                    history,
                    prompt,
                    on_chunk,
                    system_instruction=config.system_instruction or None,
                )
            except Exception as e:
                logger.error(f"Generation failed for message {message_id}: {e}")
                error_text = get_translations(config.language)["error"]
                failed = target.model_copy(update={"content": error_text, "is_error": True})
                visible = self._find_visible(session_id, message_id)
                if visible is not None:
                    visible.content = error_text
                    visible.is_error = True
                    self._notify(message_id, error_text)
                await self._save_message(failed)
                return False

            final = target.model_copy(update={"content": final_text, "is_error": False})
            visible = self._find_visible(session_id, message_id)
            if visible is not None:
                visible.content = final_text
                visible.is_error = False
                self._notify(message_id, final_text)

            await self._save_message(final)
            await self.store.update(
                session_id,
                {"preview": make_preview(final_text), "updated_at": now_ms()},
            )
            logger.info(f"Generation completed for message {message_id}")
            return True
        finally:
            self._streaming_message_id = None

    def _notify(self, message_id: str, text: str) -> None:
        if self.listener is not None:
            self.listener(message_id, text)

    def _find_visible(self, session_id: str, message_id: str) -> Optional[MessageRecord]:
        """The in-view message a stream may write to, or None if it left the view."""
        if self._view_session_id != session_id:
            return None
        return next((m for m in self._messages if m.id == message_id), None)

    # =========================================================================
    # Background work
    # =========================================================================

    async def _save_message(self, message: MessageRecord) -> None:
        """Durable write; failure is logged and never reaches the caller."""
        try:
            await self.gateway.create_message(message)
        except Exception as e:
            logger.error(f"Failed to persist message {message.id}: {e}")

    async def _derive_title(self, session_id: str, prompt: str, language: str) -> None:
        try:
            title = await self.title_deriver.derive(prompt, language)
        except Exception as e:
            logger.warning(f"Title derivation failed for session {session_id}: {e}")
            return
        if not title:
            return

        session = self.store.get(session_id)
        # Deleted, renamed, or already titled by an earlier derivation
        if session is None or not is_placeholder_title(session.title):
            return
        await self.store.update(session_id, {"title": title})
        logger.info(f"Session {session_id} titled {title!r}")

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_for_background(self) -> None:
        """Wait for pending durable writes and title derivations."""
        while self._background:
            await asyncio.gather(*list(self._background))

    async def close(self) -> None:
        await self.wait_for_background()
        await self.gateway.aclose()
