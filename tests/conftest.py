import sys
import pathlib
import os
import logging
import warnings
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.exc import SAWarning

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# The engine is created at import time, so point it at a throwaway database
# before anything from the package is imported.
os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{ROOT / 'test_practice_calendar.db'}"

warnings.filterwarnings('ignore', category=SAWarning)
# Reduce SQLAlchemy logger verbosity during tests
for _name in ('sqlalchemy', 'sqlalchemy.engine', 'sqlalchemy.pool'):
    logging.getLogger(_name).setLevel(logging.ERROR)

from practice_calendar.main import app  # noqa: E402
from practice_calendar.db import async_session, reset_db  # noqa: E402
from practice_calendar.models import (  # noqa: E402
    ClientGroup,
    Clinician,
    ClinicianService,
    Location,
    PracticeService,
)


@pytest_asyncio.fixture
async def ensure_db():
    await reset_db()


@pytest_asyncio.fixture
async def client(ensure_db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def practice(ensure_db):
    """One active clinician with a location, two client groups and three services.

    Of the clinician's services only ``online`` is both active and
    online-bookable; ``intake`` is inactive for the clinician and
    ``office_only`` is not bookable online.
    """
    async with async_session() as sess:
        clinician = Clinician(first_name='Ada', last_name='Byrne')
        retired = Clinician(first_name='Old', last_name='Timer', is_active=False)
        location = Location(name='Main office', address='1 High St')
        group = ClientGroup(name='Smith household', type='family')
        other_group = ClientGroup(name='Jones')
        online = PracticeService(code='90834', description='Psychotherapy, 45 min', rate=150.0,
                                 duration=45, allow_online_booking=True)
        intake = PracticeService(code='90791', description='Diagnostic evaluation', rate=200.0,
                                 duration=60, allow_online_booking=True)
        office_only = PracticeService(code='90837', description='Psychotherapy, 60 min', rate=180.0,
                                      duration=60, allow_online_booking=False)
        sess.add_all([clinician, retired, location, group, other_group, online, intake, office_only])
        await sess.flush()
        sess.add_all([
            ClinicianService(clinician_id=clinician.id, service_id=online.id),
            ClinicianService(clinician_id=clinician.id, service_id=intake.id, is_active=False),
            ClinicianService(clinician_id=clinician.id, service_id=office_only.id),
        ])
        await sess.commit()
        return SimpleNamespace(
            clinician=clinician.id,
            retired=retired.id,
            location=location.id,
            group=group.id,
            other_group=other_group.id,
            online=online.id,
            intake=intake.id,
            office_only=office_only.id,
        )


@pytest.fixture
def appointment_body(practice):
    """Build an appointment create body for the seeded practice."""
    def _build(start='2024-01-01T09:00:00Z', end='2024-01-01T09:45:00Z', rule=None, **extra):
        body = {
            'title': 'Session',
            'start_date': start,
            'end_date': end,
            'clinician_id': practice.clinician,
            'location_id': practice.location,
            'client_group_id': practice.group,
            'service_id': practice.online,
        }
        if rule:
            body['is_recurring'] = True
            body['recurring_rule'] = rule
        body.update(extra)
        return body
    return _build
