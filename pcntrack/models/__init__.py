"""ORM models package."""
from .api_key import ApiKey, ApiScope
from .appointment import Appointment, AppointmentStatus, InclusionFlag
from .audit import AuditLog
from .base import Base
from .calendar import Calendar
from .company import AttributionStrategy, Company
from .contact import Contact
from .notification import PCNNotification, WeeklyReportDispatch
from .pcn import PCNRecord
from .scheduler_lock import SchedulerLock
from .user import User
from .webhook_event import WebhookEvent, WebhookEventStatus

__all__ = [
    "ApiKey",
    "ApiScope",
    "Appointment",
    "AppointmentStatus",
    "AttributionStrategy",
    "AuditLog",
    "Base",
    "Calendar",
    "Company",
    "Contact",
    "InclusionFlag",
    "PCNNotification",
    "PCNRecord",
    "SchedulerLock",
    "User",
    "WebhookEvent",
    "WebhookEventStatus",
    "WeeklyReportDispatch",
]
