"""Schema package exports."""
from .appointment import AppointmentRead, PendingPCNRead
from .company import AttributionConfigRead, AttributionConfigUpdate
from .jobs import RecomputeRead, SweepRead, WeeklyReportRead
from .pcn import PCNRecordRead, PCNSubmission, PCNSubmitRequest, PCNSubmitResult
from .webhook import WebhookAck
