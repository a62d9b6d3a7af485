"""Conversation sessions held across plan and execute calls, with phase transitions."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from switchboard.agent.models import AgentSession, SessionPhase
from switchboard.config import SESSION_MAX_AGE_SEC

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[SessionPhase, set[SessionPhase]] = {
    SessionPhase.IDLE: {SessionPhase.PLANNING, SessionPhase.EXECUTING},
    SessionPhase.PLANNING: {SessionPhase.EXECUTING, SessionPhase.IDLE},
    SessionPhase.EXECUTING: {SessionPhase.IDLE},
}


def check_transition(current: SessionPhase, new_phase: SessionPhase) -> None:
    """Raise ValueError unless *current* -> *new_phase* is in VALID_TRANSITIONS."""
    allowed = VALID_TRANSITIONS[current]
    if new_phase not in allowed:
        raise ValueError(
            f"Invalid session transition: {current!r} -> {new_phase!r}. "
            f"Allowed from {current!r}: {sorted(p.value for p in allowed) or 'none'}"
        )


class SessionStore:
    """In-memory session table. Every phase change goes through :meth:`transition`."""

    def __init__(self) -> None:
        self._sessions: dict[str, AgentSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def create(self, phase: SessionPhase = SessionPhase.IDLE, session_id: str | None = None) -> AgentSession:
        session = AgentSession(id=session_id, phase=phase) if session_id else AgentSession(phase=phase)
        self._sessions[session.id] = session
        logger.debug("Session %s created in %s", session.id, phase)
        return session

    def get(self, session_id: str) -> AgentSession | None:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str | None) -> AgentSession:
        """Existing session for *session_id*, or a fresh idle one. A stopped session is replaced."""
        if session_id:
            session = self._sessions.get(session_id)
            if session is not None and not session.abort.aborted:
                return session
        return self.create(SessionPhase.IDLE, session_id)

    def transition(self, session_id: str, phase: SessionPhase) -> AgentSession:
        """Move a session to *phase*.

        Raises:
            KeyError: unknown session.
            ValueError: the transition is not allowed.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session: {session_id}")
        if session.phase == phase:
            return session
        check_transition(session.phase, phase)
        session.phase = phase
        return session

    def retire(self, session_id: str) -> None:
        """Return a session to idle once its stream has ended."""
        session = self._sessions.get(session_id)
        if session is not None:
            session.phase = SessionPhase.IDLE

    def stop(self, session_id: str) -> bool:
        """Signal the session's abort handle. Stopping twice is the same as once."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.is_aborted = True
        session.abort.abort("stopped")
        session.phase = SessionPhase.IDLE
        logger.info("Session %s stopped", session_id)
        return True

    def delete(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.abort.abort("deleted")
        return True

    def list_sessions(self) -> list[AgentSession]:
        return list(self._sessions.values())

    def cleanup(self, max_age: float = SESSION_MAX_AGE_SEC) -> int:
        """Remove idle sessions older than *max_age* seconds."""
        cutoff = datetime.now(UTC) - timedelta(seconds=max_age)
        stale = [
            sid
            for sid, s in self._sessions.items()
            if s.phase == SessionPhase.IDLE and s.created_at < cutoff
        ]
        for sid in stale:
            del self._sessions[sid]
        if stale:
            logger.info("Cleaned up %d stale sessions", len(stale))
        return len(stale)

    def stop_all(self) -> None:
        for session_id in list(self._sessions):
            self.stop(session_id)
