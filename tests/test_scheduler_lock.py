from contextlib import nullcontext
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from pcntrack.models.scheduler_lock import SchedulerLock
from pcntrack.services.cron import heartbeat_once
from pcntrack.services.scheduler_lock import (
    describe_scheduler_lock,
    refresh_scheduler_lock,
    release_scheduler_lock,
    try_acquire_scheduler_lock,
)


def _lock(db_session) -> SchedulerLock | None:
    return db_session.execute(select(SchedulerLock).where(SchedulerLock.name == "default")).scalar_one_or_none()


def test_scheduler_lock_enforces_single_owner(db_session):
    assert try_acquire_scheduler_lock(db_session, owner="node-A") is True
    assert try_acquire_scheduler_lock(db_session, owner="node-A") is True
    assert try_acquire_scheduler_lock(db_session, owner="node-B") is False
    assert _lock(db_session).owner == "node-A"


def test_lock_can_be_reacquired_after_expiry(db_session):
    assert try_acquire_scheduler_lock(db_session, ttl_seconds=60, owner="node-A")

    lock = _lock(db_session)
    lock.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    db_session.commit()

    assert try_acquire_scheduler_lock(db_session, ttl_seconds=300, owner="node-B")
    assert _lock(db_session).owner == "node-B"


def test_refresh_only_extends_own_lock(db_session):
    assert try_acquire_scheduler_lock(db_session, ttl_seconds=5, owner="node-A")
    before = _lock(db_session).expires_at

    refresh_scheduler_lock(db_session, ttl_seconds=600, owner="node-B")
    assert _lock(db_session).expires_at == before

    refresh_scheduler_lock(db_session, ttl_seconds=600, owner="node-A")
    assert _lock(db_session).expires_at > before


def test_release_requires_ownership(db_session):
    assert try_acquire_scheduler_lock(db_session, owner="node-A")

    release_scheduler_lock(db_session, owner="node-B")
    assert _lock(db_session) is not None

    release_scheduler_lock(db_session, owner="node-A")
    assert _lock(db_session) is None


def test_describe_scheduler_lock(db_session, monkeypatch):
    assert describe_scheduler_lock(db_session) == {"status": "none", "owner": None, "present": False}

    monkeypatch.setattr("pcntrack.services.scheduler_lock._owner_id", lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session, ttl_seconds=60)

    info = describe_scheduler_lock(db_session)
    assert info["present"] is True
    assert info["status"] == "owned_by_self"
    assert 0 < info["expires_in_seconds"] <= 60
    assert info["stale"] is False
    assert info["heartbeat_age_seconds"] >= 0


class _SessionOnly:
    """Hands out the test session the way Database.session() would."""

    def __init__(self, session):
        self._session = session

    def session(self):
        return nullcontext(self._session)


def test_heartbeat_refreshes_the_lock(db_session, monkeypatch):
    monkeypatch.setattr("pcntrack.services.scheduler_lock._owner_id", lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session, ttl_seconds=1)
    before = _lock(db_session).expires_at

    heartbeat_once(_SessionOnly(db_session))
    assert _lock(db_session).expires_at > before
