"""Tests for SessionStore phase transitions."""

from datetime import UTC, datetime, timedelta

import pytest

from switchboard.agent.models import SessionPhase
from switchboard.orchestration.sessions import VALID_TRANSITIONS, SessionStore, check_transition


@pytest.fixture
def store():
    return SessionStore()


class TestCheckTransition:
    @pytest.mark.parametrize(
        "current,new_phase",
        [
            (SessionPhase.IDLE, SessionPhase.PLANNING),
            (SessionPhase.IDLE, SessionPhase.EXECUTING),
            (SessionPhase.PLANNING, SessionPhase.EXECUTING),
            (SessionPhase.PLANNING, SessionPhase.IDLE),
            (SessionPhase.EXECUTING, SessionPhase.IDLE),
        ],
    )
    def test_allowed(self, current, new_phase):
        check_transition(current, new_phase)

    def test_executing_cannot_replan(self):
        with pytest.raises(ValueError, match="Invalid session transition"):
            check_transition(SessionPhase.EXECUTING, SessionPhase.PLANNING)

    def test_every_phase_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == set(SessionPhase)


class TestSessionStore:
    def test_create_and_get(self, store):
        session = store.create(SessionPhase.PLANNING)
        assert store.get(session.id) is session
        assert session.id in store
        assert len(store) == 1

    def test_get_or_create_reuses(self, store):
        session = store.create(session_id="s1")
        assert store.get_or_create("s1") is session

    def test_get_or_create_with_new_id(self, store):
        session = store.get_or_create("fresh")
        assert session.id == "fresh"
        assert session.phase == SessionPhase.IDLE

    def test_get_or_create_replaces_stopped(self, store):
        session = store.create(session_id="s1")
        store.stop("s1")
        replacement = store.get_or_create("s1")
        assert replacement is not session
        assert not replacement.abort.aborted

    def test_transition(self, store):
        session = store.create()
        store.transition(session.id, SessionPhase.PLANNING)
        store.transition(session.id, SessionPhase.EXECUTING)
        assert session.phase == SessionPhase.EXECUTING

    def test_same_phase_is_noop(self, store):
        session = store.create(SessionPhase.EXECUTING)
        store.transition(session.id, SessionPhase.EXECUTING)
        assert session.phase == SessionPhase.EXECUTING

    def test_invalid_transition(self, store):
        session = store.create(SessionPhase.EXECUTING)
        with pytest.raises(ValueError):
            store.transition(session.id, SessionPhase.PLANNING)

    def test_transition_unknown(self, store):
        with pytest.raises(KeyError):
            store.transition("missing", SessionPhase.PLANNING)

    def test_stop(self, store):
        session = store.create(SessionPhase.EXECUTING)
        assert store.stop(session.id)
        assert store.stop(session.id)
        assert session.is_aborted
        assert session.phase == SessionPhase.IDLE

    def test_stop_unknown(self, store):
        assert not store.stop("missing")

    def test_delete_aborts(self, store):
        session = store.create()
        assert store.delete(session.id)
        assert session.abort.reason == "deleted"
        assert not store.delete(session.id)

    def test_retire(self, store):
        session = store.create(SessionPhase.EXECUTING)
        store.retire(session.id)
        assert session.phase == SessionPhase.IDLE

    def test_cleanup(self, store):
        old = store.create()
        old.created_at = datetime.now(UTC) - timedelta(hours=1)
        store.create()
        assert store.cleanup(max_age=60) == 1
        assert old.id not in store

    def test_stop_all(self, store):
        sessions = [store.create(SessionPhase.EXECUTING) for _ in range(3)]
        store.stop_all()
        assert all(s.abort.aborted for s in sessions)
