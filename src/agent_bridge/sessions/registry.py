"""Client-side registry of conversation sessions."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from psygnal import Signal

from agent_bridge.client.normalize import placeholder_title
from agent_bridge.exceptions import ApiRequestError, InvalidResponseError, ServerNotRunningError
from agent_bridge.log import get_logger
from agent_bridge.models import SessionDetails, SessionMetadata


if TYPE_CHECKING:
    from collections.abc import Callable

    import structlog

    from agent_bridge.client.api_client import AgentApiClient


LOCAL_ID_FORMAT = "%Y%m%d%H%M%S"


class SessionRegistry:
    """Tracks known sessions and which one is current.

    New sessions are created locally and flagged `is_local` until the server
    has seen them. Reads from the server are advisory: when they fail the
    registry keeps what it has.
    """

    sessions_loaded = Signal(list)
    """Emitted with the full session list whenever it changes."""

    session_loaded = Signal(SessionDetails)
    """Emitted when a session and its history become current."""

    session_created = Signal(SessionDetails)
    """Emitted when a new local session was created."""

    session_switched = Signal(SessionDetails)
    """Emitted after switching to another session."""

    error = Signal(Exception)
    """Emitted when a session operation failed."""

    def __init__(
        self,
        get_client: Callable[[], AgentApiClient | None],
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """Initialize the registry.

        Args:
            get_client: Returns the client of the running server, or None
            logger: Logger to use, defaults to the module logger
        """
        self._get_client = get_client
        self.log = logger if logger is not None else get_logger(__name__)
        self._sessions: dict[str, SessionMetadata] = {}
        self._local_details: dict[str, SessionDetails] = {}
        self._current_session_id: str | None = None
        self._current_session: SessionDetails | None = None

    @property
    def sessions(self) -> list[SessionMetadata]:
        """Copy of the known sessions in display order."""
        return list(self._sessions.values())

    @property
    def current_session_id(self) -> str | None:
        return self._current_session_id

    @property
    def current_session(self) -> SessionDetails | None:
        return self._current_session

    def get(self, session_id: str) -> SessionMetadata | None:
        return self._sessions.get(session_id)

    def _require(self, session_id: str) -> SessionMetadata:
        if (session := self._sessions.get(session_id)) is None:
            msg = f"Unknown session: {session_id}"
            raise KeyError(msg)
        return session

    def _require_client(self) -> AgentApiClient:
        if (client := self._get_client()) is None:
            raise ServerNotRunningError
        return client

    def _set_current(self, details: SessionDetails) -> None:
        self._current_session_id = details.session_id
        self._current_session = details

    def _emit_sessions(self) -> None:
        self.sessions_loaded.emit(self.sessions)

    async def fetch_all(self) -> list[SessionMetadata]:
        """Refresh the session list from the server.

        The current session is kept even when the server does not return it,
        which is the normal case for a session that has not been used yet.
        """
        current = self._sessions.get(self._current_session_id or "")
        backend: list[SessionMetadata] = []
        if (client := self._get_client()) is None:
            self.log.error("Cannot fetch sessions, server not ready")
        else:
            raw = await client.list_sessions()
            backend = [
                s.model_copy(
                    update={
                        "title": s.title or s.description or placeholder_title(s.id),
                        "is_local": False,
                    }
                )
                for s in raw
            ]

        merged = backend
        if current is not None and all(s.id != current.id for s in backend):
            merged = [current, *backend]
        self._sessions = {s.id: s for s in merged}
        self.log.info("Sessions loaded", count=len(self._sessions))
        self._emit_sessions()
        return self.sessions

    def _new_local_id(self) -> str:
        base = datetime.now(UTC).strftime(LOCAL_ID_FORMAT)
        session_id, n = base, 1
        while session_id in self._sessions:
            session_id = f"{base}_{n}"
            n += 1
        return session_id

    def create(self, working_dir: str, description: str | None = None) -> SessionDetails:
        """Create a local session and make it current. No server round-trip."""
        session_id = self._new_local_id()
        now = datetime.now(UTC)
        title = description or f"Session {now.astimezone():%Y-%m-%d %H:%M:%S}"
        metadata = SessionMetadata(
            id=session_id,
            path=str(Path(working_dir) / session_id),
            modified=now.isoformat(),
            working_dir=working_dir,
            title=title,
            description=title,
            is_local=True,
        )
        details = SessionDetails(session_id=session_id, metadata=metadata)
        self._sessions[session_id] = metadata
        self._local_details[session_id] = details
        self._set_current(details)
        self.log.info("Created local session", session_id=session_id, working_dir=working_dir)
        self.session_created.emit(details)
        self.session_loaded.emit(details)
        self._emit_sessions()
        return details

    async def switch_to(self, session_id: str) -> SessionDetails | None:
        """Load a session's history and make it current.

        Returns:
            The loaded session, or None if loading failed. The registry is
            left unchanged on failure.
        """
        known = self._sessions.get(session_id)
        if known is not None and known.is_local:
            details = self._local_details.get(session_id) or SessionDetails(
                session_id=session_id, metadata=known
            )
        else:
            client = self._get_client()
            if client is None:
                self.log.error("Cannot load session, server not ready", session_id=session_id)
                self.error.emit(ServerNotRunningError())
                return None
            try:
                details = await client.get_session_history(session_id, raise_on_error=True)
            except (httpx.HTTPError, ApiRequestError, InvalidResponseError) as e:
                self.log.error("Failed to load session", session_id=session_id, error=str(e))
                self.error.emit(e)
                return None
            meta = details.metadata
            if not meta.title:
                meta = meta.model_copy(
                    update={"title": meta.description or placeholder_title(session_id)}
                )
                details = details.model_copy(update={"metadata": meta})

        self._set_current(details)
        if session_id not in self._sessions:
            self._sessions[session_id] = details.metadata
        self.session_loaded.emit(details)
        if not details.metadata.is_local:
            await self.fetch_all()
        self.session_switched.emit(details)
        return details

    async def rename(self, session_id: str, description: str) -> SessionMetadata:
        """Rename a session. Saved sessions are renamed on the server first.

        Raises:
            KeyError: If the session is unknown
            ServerNotRunningError: If a saved session is renamed while stopped
        """
        session = self._require(session_id)
        if not session.is_local:
            await self._require_client().rename_session(session_id, description)
        updated = session.model_copy(update={"description": description, "title": description})
        self._sessions[session_id] = updated
        if session_id in self._local_details:
            self._local_details[session_id] = self._local_details[session_id].model_copy(
                update={"metadata": updated}
            )
        if self._current_session and self._current_session.session_id == session_id:
            self._current_session = self._current_session.model_copy(update={"metadata": updated})
        self.log.info("Renamed session", session_id=session_id)
        self._emit_sessions()
        return updated

    async def delete(self, session_id: str) -> None:
        """Delete a session.

        Deleting the current session makes another known session current, or
        creates a fresh local one when none is left.

        Raises:
            KeyError: If the session is unknown
            ServerNotRunningError: If a saved session is deleted while stopped
        """
        session = self._require(session_id)
        if not session.is_local:
            await self._require_client().delete_session(session_id)
        del self._sessions[session_id]
        self._local_details.pop(session_id, None)
        self.log.info("Deleted session", session_id=session_id)

        if session_id != self._current_session_id:
            self._emit_sessions()
            return

        self._current_session_id = None
        self._current_session = None
        if not self._sessions:
            self.create(session.working_dir)
            return
        next_id = next(iter(self._sessions))
        if await self.switch_to(next_id) is None:
            fallback = SessionDetails(session_id=next_id, metadata=self._sessions[next_id])
            self._set_current(fallback)
            self.session_switched.emit(fallback)
        self._emit_sessions()

    def mark_saved(self, session_id: str) -> None:
        """Clear the local flag once the server has acknowledged the session."""
        session = self._sessions.get(session_id)
        if session is None or not session.is_local:
            return
        updated = session.model_copy(update={"is_local": False})
        self._sessions[session_id] = updated
        self._local_details.pop(session_id, None)
        if self._current_session and self._current_session.session_id == session_id:
            self._current_session = self._current_session.model_copy(update={"metadata": updated})
        self.log.debug("Session saved on server", session_id=session_id)
        self._emit_sessions()
