"""Seed a demo company with a closer and a handful of appointments."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from dotenv import load_dotenv

load_dotenv()

from pcntrack import models
from pcntrack.config import get_settings
from pcntrack.db import Database
from pcntrack.services import inclusion


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    database = Database(settings.database_url)
    database.create_all()
    now = datetime.now(tz=UTC)

    try:
        with database.session() as session:
            company = models.Company(
                name="Demo Sales Co",
                ghl_location_id="demo-location",
                timezone="America/New_York",
                attribution_strategy=models.AttributionStrategy.calendars,
                ghl_webhook_secret="demo-survey-secret",
            )
            session.add(company)
            session.flush()

            closer = models.User(
                company_id=company.id,
                name="Jordan Closer",
                email="jordan@example.com",
                external_id="ghl-user-jordan",
            )
            calendar = models.Calendar(company_id=company.id, external_id="cal-fb", name="FB Strategy Call")
            contact = models.Contact(
                company_id=company.id,
                external_id="contact-demo",
                name="Pat Prospect",
                email="pat@example.com",
                tags=[],
                custom_fields={},
            )
            session.add_all([closer, calendar, contact])
            session.flush()

            for offset_hours, status in ((-30, "showed"), (-2, "scheduled"), (20, "scheduled")):
                appointment = models.Appointment(
                    company_id=company.id,
                    external_id=f"demo-appt-{offset_hours}",
                    contact_id=contact.id,
                    closer_id=closer.id,
                    calendar_id=calendar.id,
                    title="Strategy Call",
                    scheduled_at=now + timedelta(hours=offset_hours),
                    status=status,
                    field_versions={},
                )
                session.add(appointment)
                session.flush()
                inclusion.recompute(session, appointment, now=now)

            session.commit()
            print(f"Seed data inserted (company id {company.id}).")
    finally:
        database.dispose()


if __name__ == "__main__":
    main()
