"""
In-memory session list, kept in sync with the persistence gateway.

The in-memory list is authoritative for the UI. Durable writes happen after
the in-memory change; a failed write is logged and the in-memory state is
kept, accepting divergence until the next successful write.
"""
import logging
import uuid
from typing import Dict, List, Optional

from localchat.core.clock import now_ms
from localchat.core.i18n import get_translations
from localchat.schemas.chat import SessionRecord
from localchat.services.persistence import PersistenceGateway

logger = logging.getLogger(__name__)

SESSION_FIELDS = ("title", "preview", "updated_at")


class SessionStore:
    """
    Recency-ordered sessions plus the id of the active one.

    Invariants:
    - the list is sorted by updated_at descending at every observation point
    - updated_at of a session never decreases
    - only updates carrying updated_at move a session in the list
    """

    def __init__(self, gateway: PersistenceGateway, language: str = "en"):
        self.gateway = gateway
        self.language = language
        self._sessions: List[SessionRecord] = []
        self.active_id: Optional[str] = None

    # =========================================================================
    # Reads
    # =========================================================================

    def list(self) -> List[SessionRecord]:
        return list(self._sessions)

    def get(self, session_id: str) -> Optional[SessionRecord]:
        return next((s for s in self._sessions if s.id == session_id), None)

    @property
    def active_session(self) -> Optional[SessionRecord]:
        if self.active_id is None:
            return None
        return self.get(self.active_id)

    def search(self, query: str) -> List[SessionRecord]:
        """Filtered view by case-insensitive title match; the list itself is untouched."""
        if not query:
            return self.list()
        needle = query.lower()
        return [s for s in self._sessions if needle in s.title.lower()]

    # =========================================================================
    # Mutations
    # =========================================================================

    async def load(self) -> List[SessionRecord]:
        """
        Load sessions from the gateway and activate the most recent one.

        Creates a fresh session when none exist (or the store is unreachable).
        """
        try:
            sessions = await self.gateway.list_sessions()
        except Exception as e:
            logger.error(f"Failed to load sessions: {e}")
            sessions = []

        self._sessions = sorted(sessions, key=lambda s: s.updated_at, reverse=True)
        logger.info(f"Loaded {len(self._sessions)} sessions")

        if self._sessions:
            self.active_id = self._sessions[0].id
        else:
            await self.create()
        return self.list()

    def select(self, session_id: str) -> bool:
        if self.get(session_id) is None:
            return False
        self.active_id = session_id
        return True

    async def create(self) -> SessionRecord:
        """Create a placeholder session at the front of the list and activate it."""
        strings = get_translations(self.language)
        now = now_ms()
        session = SessionRecord(
            id=str(uuid.uuid4()),
            title=strings["new_chat"],
            preview=strings["default_preview"],
            created_at=now,
            updated_at=now,
        )
        self._sessions.insert(0, session)
        self.active_id = session.id

        try:
            await self.gateway.create_session(session)
        except Exception as e:
            logger.error(f"Failed to persist new session {session.id}: {e}")
        return session

    async def delete(self, session_id: str) -> Optional[str]:
        """
        Delete a session and its messages.

        If it was active, the new front session becomes active, or a fresh
        one is created when none remain. Returns the active session id.
        """
        self._sessions = [s for s in self._sessions if s.id != session_id]
        was_active = self.active_id == session_id
        if was_active:
            self.active_id = self._sessions[0].id if self._sessions else None

        try:
            await self.gateway.delete_session(session_id)
        except Exception as e:
            logger.error(f"Failed to delete session {session_id}: {e}")

        # Another create/delete may have run while the delete was awaited
        if self.active_id is None or self.get(self.active_id) is None:
            if self._sessions:
                self.active_id = self._sessions[0].id
            else:
                await self.create()
        return self.active_id

    async def update(self, session_id: str, fields: Dict) -> Optional[SessionRecord]:
        """
        Merge fields (title, preview, updated_at) into a session.

        The merge is applied to the current record, so concurrent updates
        touching different fields both survive. Returns None for unknown ids.
        """
        current = self.get(session_id)
        if current is None:
            logger.debug(f"Ignoring update for unknown session {session_id}")
            return None

        changes = {k: v for k, v in fields.items() if k in SESSION_FIELDS and v is not None}
        if "updated_at" in changes:
            changes["updated_at"] = max(current.updated_at, changes["updated_at"])

        updated = current.model_copy(update=changes)
        self._sessions = [updated if s.id == session_id else s for s in self._sessions]
        if "updated_at" in changes:
            self._sessions.sort(key=lambda s: s.updated_at, reverse=True)

        try:
            await self.gateway.update_session(session_id, changes)
        except Exception as e:
            logger.error(f"Failed to persist update for session {session_id}: {e}")
        return updated
