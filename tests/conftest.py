"""Pytest configuration and shared fixtures."""

import os
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# in-memory database for the app lifespan and no background jobs
os.environ.setdefault("AQUABILL_DB_URL", "sqlite://:memory:")
os.environ.setdefault("AQUABILL_BACKFILL_INTERVAL_SECONDS", "0")

from tortoise import Tortoise  # noqa: E402

from notifications import Notifier  # noqa: E402
from storage import Storage  # noqa: E402


class RecordingNotifier(Notifier):
    """Keeps every event instead of broadcasting it."""

    def __init__(self):
        super().__init__(None)
        self.events = []

    async def notify(self, event_type, payload, audience=None):
        self.events.append({"type": event_type, "payload": payload, "audience": audience})

    def of_type(self, event_type):
        return [e for e in self.events if e["type"] == event_type]


class UncheckedStorage(Storage):
    """
    Answers one existence lookup (kind plus exact filter names) with False,
    so writes reach the storage uniqueness constraints directly.
    """

    def __init__(self, kind, *fields):
        self.kind = kind
        self.fields = set(fields)

    async def exists(self, kind, **filters):
        if kind == self.kind and set(filters) == self.fields:
            return False
        return await super().exists(kind, **filters)


@pytest_asyncio.fixture
async def db():
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": ["models"]})
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest.fixture
def storage():
    return Storage()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def unchecked_storage():
    return UncheckedStorage


@pytest_asyncio.fixture
async def billing_setup(db):
    """
    One tariff with tiers [0,10]@5.00, [11,20]@1.20, [21,∞)@2.00,
    a customer on that tariff owning one meter, and one route.
    """
    from models import Customer, Meter, Route, Tariff, TariffRange

    tariff = await Tariff.create(name="Residential", start_date=date(2024, 1, 1))
    await TariffRange.create(tariff=tariff, min_consumption=0, max_consumption=10, price_per_unit=Decimal("5.00"))
    await TariffRange.create(tariff=tariff, min_consumption=11, max_consumption=20, price_per_unit=Decimal("1.20"))
    await TariffRange.create(tariff=tariff, min_consumption=21, max_consumption=None, price_per_unit=Decimal("2.00"))
    customer = await Customer.create(name="Ana Ruiz", phone="555-0101", tariff=tariff)
    meter = await Meter.create(serial_number="M-001", customer=customer)
    route = await Route.create(name="North")
    return {"tariff": tariff, "customer": customer, "meter": meter, "route": route}
