"""Tests for reading ingestion and the automatic invoice it triggers."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from errors import ConflictError, NotFoundError, ValidationError
from models import Customer, Invoice, Meter, Reading, Tariff
from services.readings import ReadingIngestionCoordinator, check_period


class TestCheckPeriod:
    @pytest.mark.parametrize("period", ["2024-01", "1999-12"])
    def test_valid(self, period):
        assert check_period(period) == period

    @pytest.mark.parametrize("period", ["2024-13", "2024-1", "24-01", "2024/01", ""])
    def test_invalid(self, period):
        with pytest.raises(ValidationError):
            check_period(period)


class TestReadingIngestion:
    @pytest.mark.asyncio
    async def test_registers_and_invoices(self, billing_setup, storage, notifier):
        s = billing_setup
        res = await ReadingIngestionCoordinator(storage, notifier).register(
            s["meter"].id, s["route"].id, Decimal("7"), date(2024, 3, 28), "2024-03",
        )
        assert res["warning"] is None
        assert res["reading"]["route_name"] == "North"
        assert res["invoice"]["total"] == Decimal("5.00")

        inv = await Invoice.get(id=res["invoice"]["invoice_id"])
        assert inv.emission_date == date(2024, 3, 28)
        assert notifier.of_type("reading_registered")[0]["audience"] == "operators"
        assert notifier.of_type("route_progress")[0]["audience"] == "admins"

    @pytest.mark.asyncio
    async def test_duplicate_period_rejected(self, billing_setup, storage, notifier):
        s = billing_setup
        coord = ReadingIngestionCoordinator(storage, notifier)
        await coord.register(s["meter"].id, s["route"].id, Decimal("7"), date(2024, 3, 28), "2024-03")
        with pytest.raises(ConflictError):
            await coord.register(s["meter"].id, s["route"].id, Decimal("9"), date(2024, 3, 29), "2024-03")
        assert await Reading.filter(meter_id=s["meter"].id).count() == 1
        assert await Invoice.filter(reading__meter_id=s["meter"].id).count() == 1
        assert len(notifier.of_type("invoice_generated")) == 1

    @pytest.mark.asyncio
    async def test_unique_period_constraint_conflicts(self, billing_setup, unchecked_storage, notifier):
        s = billing_setup
        coord = ReadingIngestionCoordinator(unchecked_storage("reading", "meter_id", "period"), notifier)
        await coord.register(s["meter"].id, s["route"].id, Decimal("7"), date(2024, 3, 28), "2024-03")
        with pytest.raises(ConflictError, match="already has a reading for 2024-03"):
            await coord.register(s["meter"].id, s["route"].id, Decimal("9"), date(2024, 3, 29), "2024-03")
        assert await Reading.filter(meter_id=s["meter"].id).count() == 1
        assert await Invoice.filter(reading__meter_id=s["meter"].id).count() == 1
        assert len(notifier.of_type("invoice_generated")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_registration_keeps_one(self, billing_setup, storage, notifier):
        s = billing_setup
        coord = ReadingIngestionCoordinator(storage, notifier)
        results = await asyncio.gather(
            coord.register(s["meter"].id, s["route"].id, Decimal("7"), date(2024, 3, 28), "2024-03"),
            coord.register(s["meter"].id, s["route"].id, Decimal("9"), date(2024, 3, 29), "2024-03"),
            return_exceptions=True,
        )
        assert sum(isinstance(r, dict) for r in results) == 1
        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert await Reading.filter(meter_id=s["meter"].id).count() == 1
        assert await Invoice.filter(reading__meter_id=s["meter"].id).count() == 1

    @pytest.mark.asyncio
    async def test_validation_and_lookups(self, billing_setup, storage, notifier):
        s = billing_setup
        coord = ReadingIngestionCoordinator(storage, notifier)
        with pytest.raises(ValidationError):
            await coord.register(s["meter"].id, s["route"].id, Decimal("-1"), date(2024, 3, 28), "2024-03")
        with pytest.raises(ValidationError):
            await coord.register(s["meter"].id, s["route"].id, Decimal("1"), date(2024, 3, 28), "2024-3")
        with pytest.raises(NotFoundError, match="meter"):
            await coord.register(999, s["route"].id, Decimal("1"), date(2024, 3, 28), "2024-03")
        with pytest.raises(NotFoundError, match="route"):
            await coord.register(s["meter"].id, 999, Decimal("1"), date(2024, 3, 28), "2024-03")

    @pytest.mark.asyncio
    async def test_unowned_meter_is_not_invoiced(self, billing_setup, storage, notifier):
        loose = await Meter.create(serial_number="M-LOOSE")
        res = await ReadingIngestionCoordinator(storage, notifier).register(
            loose.id, billing_setup["route"].id, Decimal("3"), date(2024, 3, 28), "2024-03",
        )
        assert res["invoice"] is None
        assert res["reading"]["customer_id"] is None
        assert await Invoice.all().count() == 0

    @pytest.mark.asyncio
    async def test_invoice_failure_becomes_warning(self, billing_setup, storage, notifier):
        empty = await Tariff.create(name="Empty", start_date=date(2024, 1, 1))
        customer = await Customer.create(name="Luis Paz", phone="555-0202", tariff=empty)
        meter = await Meter.create(serial_number="M-002", customer=customer)
        res = await ReadingIngestionCoordinator(storage, notifier).register(
            meter.id, billing_setup["route"].id, Decimal("3"), date(2024, 3, 28), "2024-03",
        )
        assert res["invoice"] is None
        assert "no ranges" in res["warning"]
        assert await Reading.filter(meter_id=meter.id).exists()
