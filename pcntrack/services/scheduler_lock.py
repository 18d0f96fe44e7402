"""Simple DB-backed lock to ensure only one scheduler runs."""
from __future__ import annotations

import logging
import os
import socket
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pcntrack.models.scheduler_lock import SchedulerLock
from pcntrack.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

LOCK_NAME = "default"
LOCK_TTL_SECONDS = 300


def _owner_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def _load(session: Session, name: str) -> SchedulerLock | None:
    return session.execute(
        select(SchedulerLock).where(SchedulerLock.name == name).with_for_update()
    ).scalar_one_or_none()


def try_acquire_scheduler_lock(
    db_session: Session,
    name: str = LOCK_NAME,
    *,
    ttl_seconds: int = LOCK_TTL_SECONDS,
    owner: str | None = None,
) -> bool:
    """Attempt to acquire the scheduler lock with owner + TTL safety."""

    owner = owner or _owner_id()
    now = utcnow()
    expires = now + timedelta(seconds=ttl_seconds)

    lock = _load(db_session, name)
    if lock is None:
        try:
            with db_session.begin_nested():
                db_session.add(
                    SchedulerLock(name=name, owner=owner, acquired_at=now, heartbeat_at=now, expires_at=expires)
                )
        except IntegrityError:
            db_session.rollback()
            return False
        db_session.commit()
        return True

    expires_at = ensure_utc(lock.expires_at)
    if expires_at is None or expires_at <= now or lock.owner == owner:
        if lock.owner != owner:
            logger.info("Scheduler lock taken over", extra={"lock": name, "previous_owner": lock.owner, "owner": owner})
            lock.acquired_at = now
        lock.owner = owner
        lock.heartbeat_at = now
        lock.expires_at = expires
        db_session.commit()
        return True

    db_session.rollback()
    return False


def refresh_scheduler_lock(
    db_session: Session,
    name: str = LOCK_NAME,
    *,
    ttl_seconds: int = LOCK_TTL_SECONDS,
    owner: str | None = None,
) -> None:
    """Refresh the TTL of the scheduler lock when owned by this runner."""

    lock = _load(db_session, name)
    if lock and lock.owner == (owner or _owner_id()):
        now = utcnow()
        lock.heartbeat_at = now
        lock.expires_at = now + timedelta(seconds=ttl_seconds)
    elif lock:
        logger.warning("Scheduler lock held by another owner", extra={"lock": name, "owner": lock.owner})
    db_session.commit()


def release_scheduler_lock(db_session: Session, name: str = LOCK_NAME, *, owner: str | None = None) -> None:
    """Release the scheduler lock if held by this runner."""

    lock = _load(db_session, name)
    if lock and lock.owner == (owner or _owner_id()):
        db_session.delete(lock)
    db_session.commit()


def describe_scheduler_lock(db_session: Session, name: str = LOCK_NAME) -> dict[str, object]:
    """Return a lightweight description of the current scheduler lock state."""

    lock = db_session.execute(select(SchedulerLock).where(SchedulerLock.name == name)).scalar_one_or_none()
    if lock is None:
        return {"status": "none", "owner": None, "present": False}

    now = utcnow()
    acquired_at = ensure_utc(lock.acquired_at)
    heartbeat_at = ensure_utc(lock.heartbeat_at)
    expires_at = ensure_utc(lock.expires_at)
    expires_in = (expires_at - now).total_seconds() if expires_at else None
    return {
        "status": "owned_by_self" if lock.owner == _owner_id() else "owned_by_other",
        "owner": lock.owner,
        "present": True,
        "age_seconds": (now - acquired_at).total_seconds() if acquired_at else None,
        "heartbeat_age_seconds": (now - heartbeat_at).total_seconds() if heartbeat_at else None,
        "expires_in_seconds": expires_in,
        "stale": expires_in is not None and expires_in < -60,
    }


__all__ = [
    "LOCK_NAME",
    "try_acquire_scheduler_lock",
    "refresh_scheduler_lock",
    "release_scheduler_lock",
    "describe_scheduler_lock",
]
