"""Test configuration."""
import logging
import os
import time
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

# --- Default env, before the application is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./pcntrack_test.db")
os.environ.setdefault("API_KEY", "test-secret-key")
os.environ.setdefault("PCN_ENV", "test")
os.environ.setdefault("GHL_WEBHOOK_SECRET", "test-ghl-secret")
os.environ.setdefault("APP_BASE_URL", "https://pcn.example.com")

from pcntrack.config import settings  # noqa: E402
from pcntrack.db import Database, get_db  # noqa: E402
from pcntrack.main import app  # noqa: E402
from pcntrack.models import (  # noqa: E402
    Appointment,
    AppointmentStatus,
    AttributionStrategy,
    Company,
    Contact,
    InclusionFlag,
    User,
)
from pcntrack.models.api_key import ApiKey, ApiScope  # noqa: E402
from pcntrack.services.notifications import DeliveryResult, get_notifier  # noqa: E402
from pcntrack.services.signatures import compute_signature  # noqa: E402
from pcntrack.utils.apikey import hash_key  # noqa: E402

DB_PATH = Path("./pcntrack_test.db")
GHL_SECRET = os.environ["GHL_WEBHOOK_SECRET"]
SURVEY_SECRET = "survey-secret"


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file per test session
if DB_PATH.exists():
    DB_PATH.unlink()

# --- (2) Schema comes from Alembic only
_run_migrations()

database = Database(os.environ["DATABASE_URL"])
app.state.database = database


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def db_session() -> Iterator[Session]:
    connection = database.engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        join_transaction_mode="create_savepoint",
        autoflush=False,
        expire_on_commit=False,
    )
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture(autouse=True)
def package_log_level(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    """Run every test with the package loggers at INFO, whatever the root level is."""

    caplog.set_level(logging.INFO, logger="pcntrack")
    return caplog


@pytest.fixture(autouse=True)
def app_settings() -> Iterator:
    """Expose the live settings and restore every field after the test."""

    snapshot = settings.model_dump()
    yield settings
    for key, value in snapshot.items():
        setattr(settings, key, value)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


class FakeNotifier:
    """Records every message instead of posting it."""

    name = "fake"

    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.sent: list[tuple[str, str]] = []

    def send(self, channel: str, message: str) -> DeliveryResult:
        self.sent.append((channel, message))
        if self.ok:
            return DeliveryResult(ok=True, status_code=200)
        return DeliveryResult(ok=False, status_code=500, error="HTTP 500: channel unavailable")


@pytest.fixture
def make_notifier() -> Callable[..., FakeNotifier]:
    return FakeNotifier


@pytest.fixture
def notifier() -> Iterator[FakeNotifier]:
    fake = FakeNotifier()
    app.dependency_overrides[get_notifier] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_notifier, None)


@pytest.fixture
def make_company(db_session: Session) -> Callable[..., Company]:
    def _factory(
        *,
        name: str | None = None,
        strategy: AttributionStrategy = AttributionStrategy.none,
        source_field: str | None = None,
        webhook_url: str | None = "https://hooks.slack.test/services/T000/B000",
        survey_secret: str | None = SURVEY_SECRET,
        ghl_api_key: str | None = None,
        is_active: bool = True,
    ) -> Company:
        company = Company(
            name=name or f"company-{uuid4().hex[:8]}",
            ghl_location_id=f"loc-{uuid4().hex[:10]}",
            timezone="UTC",
            attribution_strategy=strategy,
            attribution_source_field=source_field,
            ghl_webhook_secret=survey_secret,
            ghl_api_key=ghl_api_key,
            notification_webhook_url=webhook_url,
            is_active=is_active,
        )
        db_session.add(company)
        db_session.commit()
        return company

    return _factory


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(
        company: Company | None = None,
        *,
        name: str = "Casey Closer",
        external_id: str | None = None,
        slack_user_id: str | None = None,
        is_super_admin: bool = False,
    ) -> User:
        user = User(
            company_id=company.id if company else None,
            name=name,
            email=f"user-{uuid4().hex[:8]}@example.com",
            external_id=external_id,
            slack_user_id=slack_user_id,
            is_super_admin=is_super_admin,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _factory


@pytest.fixture
def make_api_key(db_session: Session) -> Callable[..., ApiKey]:
    def _factory(
        name: str,
        key: str,
        scope: ApiScope = ApiScope.closer,
        user: User | None = None,
        is_active: bool = True,
    ) -> ApiKey:
        api_key = ApiKey(
            name=name,
            prefix="test_" + scope.value,
            key_hash=hash_key(key),
            scope=scope,
            user_id=user.id if user else None,
            is_active=is_active,
        )
        db_session.add(api_key)
        db_session.commit()
        db_session.refresh(api_key)
        return api_key

    return _factory


@pytest.fixture
def headers_for(make_api_key: Callable[..., ApiKey]) -> Callable[..., dict[str, str]]:
    """Bearer headers for a fresh key of ``scope`` owned by ``user``."""

    def _factory(scope: ApiScope, user: User | None = None) -> dict[str, str]:
        token = f"{scope.value}-{uuid4().hex}"
        make_api_key(name=f"{scope.value}-{uuid4().hex}", key=token, scope=scope, user=user)
        return {"Authorization": f"Bearer {token}"}

    return _factory


@pytest.fixture
def admin_headers(headers_for: Callable[..., dict[str, str]]) -> dict[str, str]:
    return headers_for(ApiScope.admin)


@pytest.fixture
def make_appointment(db_session: Session) -> Callable[..., Appointment]:
    def _factory(
        company: Company,
        *,
        external_id: str | None = None,
        scheduled_at: datetime | None = datetime(2025, 11, 14, 18, 0, tzinfo=UTC),
        status: str = AppointmentStatus.scheduled.value,
        outcome: str | None = None,
        inclusion_flag: InclusionFlag | None = InclusionFlag.included,
        pcn_submitted: bool = False,
        closer: User | None = None,
        contact: Contact | None = None,
        title: str | None = "Strategy Call",
    ) -> Appointment:
        appointment = Appointment(
            company_id=company.id,
            external_id=external_id or f"appt-{uuid4().hex[:10]}",
            scheduled_at=scheduled_at,
            status=status,
            outcome=outcome,
            inclusion_flag=inclusion_flag,
            pcn_submitted=pcn_submitted,
            closer_id=closer.id if closer else None,
            contact_id=contact.id if contact else None,
            title=title,
            field_versions={},
        )
        db_session.add(appointment)
        db_session.commit()
        return appointment

    return _factory


@pytest.fixture
def ghl_headers() -> Callable[..., dict[str, str]]:
    """Sign a raw body the way GHL does."""

    def _sign(body: bytes, secret: str = GHL_SECRET, timestamp: str | None = None) -> dict[str, str]:
        ts = timestamp or str(int(time.time()))
        return {
            "Content-Type": "application/json",
            "X-GHL-Timestamp": ts,
            "X-GHL-Signature": compute_signature(secret, body, ts),
        }

    return _sign
