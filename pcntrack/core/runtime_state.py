"""Process-wide runtime flags shared across modules."""
from __future__ import annotations

_scheduler_active = False
_scheduled_jobs: tuple[str, ...] = ()


def set_scheduler_active(active: bool, jobs: tuple[str, ...] = ()) -> None:
    global _scheduler_active, _scheduled_jobs
    _scheduler_active = active
    _scheduled_jobs = jobs if active else ()


def is_scheduler_active() -> bool:
    return _scheduler_active


def scheduled_jobs() -> tuple[str, ...]:
    return _scheduled_jobs
