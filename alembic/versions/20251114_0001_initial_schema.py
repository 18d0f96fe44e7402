"""initial schema: companies, appointments, pcn records, webhook events

Revision ID: 20251114_0001
Revises:
Create Date: 2025-11-14 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20251114_0001"
down_revision = None
branch_labels = None
depends_on = None


ATTRIBUTION_STRATEGIES = ("ghl_fields", "calendars", "hyros", "tags", "none")
API_SCOPES = ("closer", "manager", "admin")
INCLUSION_FLAGS = ("included", "excluded", "pending")
WEBHOOK_EVENT_STATUSES = ("pending", "processed", "failed")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("ghl_location_id", sa.String(length=64), nullable=True, unique=True),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column(
            "attribution_strategy",
            sa.Enum(*ATTRIBUTION_STRATEGIES, name="attribution_strategy"),
            nullable=False,
        ),
        sa.Column("attribution_source_field", sa.String(length=200), nullable=True),
        sa.Column("ghl_webhook_secret", sa.String(length=255), nullable=True),
        sa.Column("ghl_webhook_secret_legacy", sa.String(length=255), nullable=True),
        sa.Column("ghl_api_key", sa.String(length=255), nullable=True),
        sa.Column("notification_webhook_url", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        sa.Column("slack_user_id", sa.String(length=64), nullable=True),
        sa.Column("is_super_admin", sa.Boolean, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_company_external", "users", ["company_id", "external_id"])

    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("prefix", sa.String(length=32), nullable=False),
        sa.Column("key_hash", sa.String(length=128), nullable=False, unique=True),
        sa.Column("scope", sa.Enum(*API_SCOPES, name="apiscope"), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("tags", sa.JSON, nullable=False),
        sa.Column("custom_fields", sa.JSON, nullable=False),
        sa.Column("traffic_source", sa.String(length=200), nullable=True),
        sa.Column("lead_source", sa.String(length=200), nullable=True),
        sa.Column("attribution_confidence", sa.Float, nullable=True),
        sa.Column("attribution_resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "external_id", name="uq_contacts_company_external"),
    )

    op.create_table(
        "calendars",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("traffic_source", sa.String(length=200), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "external_id", name="uq_calendars_company_external"),
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=False),
        sa.Column("contact_id", sa.Integer, sa.ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True),
        sa.Column("closer_id", sa.Integer, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("calendar_id", sa.Integer, sa.ForeignKey("calendars.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=True),
        sa.Column("pcn_submitted", sa.Boolean, nullable=False),
        sa.Column("pcn_submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "pcn_submitted_by_id", sa.Integer, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("inclusion_flag", sa.Enum(*INCLUSION_FLAGS, name="inclusion_flag"), nullable=True),
        sa.Column("cash_collected", sa.Numeric(18, 2), nullable=True),
        sa.Column("last_event_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("field_versions", sa.JSON, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "external_id", name="uq_appointments_company_external"),
    )
    op.create_index("ix_appointments_overdue", "appointments", ["pcn_submitted", "scheduled_at"])
    op.create_index("ix_appointments_company_scheduled", "appointments", ["company_id", "scheduled_at"])

    op.create_table(
        "pcn_records",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "appointment_id",
            sa.Integer,
            sa.ForeignKey("appointments.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("submitted_by_id", sa.Integer, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("submitted_by_name", sa.String(length=200), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("cash_collected", sa.Numeric(18, 2), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("details", sa.JSON, nullable=False),
        sa.Column("attribution_snapshot", sa.JSON, nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("revision", sa.Integer, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=True),
        sa.Column("external_event_id", sa.String(length=128), nullable=True),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("headers", sa.JSON, nullable=False),
        sa.Column(
            "status",
            sa.Enum(*WEBHOOK_EVENT_STATUSES, name="webhook_event_status"),
            nullable=False,
        ),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_webhook_events_received", "webhook_events", ["received_at"])
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_source_external", "webhook_events", ["source", "external_event_id"])

    op.create_table(
        "pcn_notifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "appointment_id",
            sa.Integer,
            sa.ForeignKey("appointments.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=True),
        sa.Column("last_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "weekly_report_dispatches",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("week_start", sa.Date, nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "week_start", name="uq_weekly_report_company_week"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer, nullable=False),
        sa.Column("data_json", sa.JSON, nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])
    op.create_index("ix_audit_logs_company_at", "audit_logs", ["company_id", "at"])

    op.create_table(
        "scheduler_locks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=64), nullable=False, unique=True),
        sa.Column("owner", sa.String(length=128), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("scheduler_locks")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_index("ix_audit_logs_company_at", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("weekly_report_dispatches")
    op.drop_table("pcn_notifications")
    op.drop_index("ix_webhook_events_source_external", table_name="webhook_events")
    op.drop_index("ix_webhook_events_status", table_name="webhook_events")
    op.drop_index("ix_webhook_events_received", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_table("pcn_records")
    op.drop_index("ix_appointments_company_scheduled", table_name="appointments")
    op.drop_index("ix_appointments_overdue", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("calendars")
    op.drop_table("contacts")
    op.drop_table("api_keys")
    op.drop_index("ix_users_company_external", table_name="users")
    op.drop_table("users")
    op.drop_table("companies")
