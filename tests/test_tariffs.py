"""Tests for registering and modifying tariff tiers."""

from datetime import date
from decimal import Decimal

import pytest

from errors import NotFoundError, ValidationError
from models import Tariff, TariffRange, TariffRangeHistory
from services.pricing import RangeSpec
from services.tariffs import create_tariff, modify_ranges, register_ranges, update_tariff


async def _ranges(tariff_id):
    return await TariffRange.filter(tariff_id=tariff_id).order_by("min_consumption")


class TestCreateTariff:
    @pytest.mark.asyncio
    async def test_create(self, db, storage, notifier):
        tid = await create_tariff(storage, notifier, {"name": "Commercial", "start_date": date(2024, 1, 1)}, None)
        assert (await Tariff.get(id=tid)).name == "Commercial"
        assert notifier.of_type("tariff_created")

    @pytest.mark.asyncio
    async def test_end_before_start_rejected(self, db, storage, notifier):
        with pytest.raises(ValidationError):
            await create_tariff(
                storage, notifier,
                {"name": "Bad", "start_date": date(2024, 6, 1), "end_date": date(2024, 1, 1)}, None,
            )

    @pytest.mark.asyncio
    async def test_update_missing_tariff(self, db, storage):
        with pytest.raises(NotFoundError):
            await update_tariff(storage, 999, {"name": "x"}, None)


class TestRegisterRanges:
    @pytest.mark.asyncio
    async def test_registers_all(self, db, storage, notifier):
        t = await Tariff.create(name="T", start_date=date(2024, 1, 1))
        n = await register_ranges(storage, notifier, t.id, [
            RangeSpec(11, 20, Decimal("1.20")),
            RangeSpec(0, 10, Decimal("5.00")),
            RangeSpec(21, None, Decimal("2.00")),
        ])
        assert n == 3
        rows = await _ranges(t.id)
        assert [(r.min_consumption, r.max_consumption) for r in rows] == [(0, 10), (11, 20), (21, None)]

    @pytest.mark.asyncio
    async def test_gap_writes_nothing(self, db, storage, notifier):
        t = await Tariff.create(name="T", start_date=date(2024, 1, 1))
        with pytest.raises(ValidationError):
            await register_ranges(storage, notifier, t.id, [
                RangeSpec(0, 10, Decimal("5")), RangeSpec(12, 20, Decimal("1")),
            ])
        assert await _ranges(t.id) == []

    @pytest.mark.asyncio
    async def test_unknown_tariff(self, db, storage, notifier):
        with pytest.raises(NotFoundError):
            await register_ranges(storage, notifier, 42, [RangeSpec(0, 10, Decimal("5"))])

    @pytest.mark.asyncio
    async def test_validation_runs_before_existence_check(self, db, storage, notifier):
        with pytest.raises(ValidationError):
            await register_ranges(storage, notifier, 42, [RangeSpec(0, 10, Decimal("-5"))])

    @pytest.mark.asyncio
    async def test_extends_existing_schedule(self, db, storage, notifier):
        t = await Tariff.create(name="T", start_date=date(2024, 1, 1))
        await register_ranges(storage, notifier, t.id, [RangeSpec(0, 10, Decimal("5"))])
        await register_ranges(storage, notifier, t.id, [RangeSpec(11, None, Decimal("2"))])
        assert len(await _ranges(t.id)) == 2

    @pytest.mark.asyncio
    async def test_rejects_batch_overlapping_existing(self, db, storage, notifier):
        t = await Tariff.create(name="T", start_date=date(2024, 1, 1))
        await register_ranges(storage, notifier, t.id, [RangeSpec(0, 10, Decimal("5"))])
        with pytest.raises(ValidationError):
            await register_ranges(storage, notifier, t.id, [RangeSpec(5, 15, Decimal("2"))])
        assert len(await _ranges(t.id)) == 1


class TestModifyRanges:
    @pytest.mark.asyncio
    async def test_price_change_updates_in_place_and_logs_history(self, billing_setup, storage, notifier):
        tariff = billing_setup["tariff"]
        middle = (await _ranges(tariff.id))[1]
        n = await modify_ranges(storage, notifier, tariff.id, [
            RangeSpec(11, 20, Decimal("1.50"), id=middle.id),
        ])
        assert n == 1
        refreshed = await TariffRange.get(id=middle.id)
        assert refreshed.price_per_unit == Decimal("1.50")
        history = await TariffRangeHistory.filter(tariff_range_id=middle.id)
        assert len(history) == 1
        assert history[0].previous_price == Decimal("1.20")
        assert history[0].new_price == Decimal("1.50")

    @pytest.mark.asyncio
    async def test_change_that_opens_gap_is_rejected(self, billing_setup, storage, notifier):
        tariff = billing_setup["tariff"]
        middle = (await _ranges(tariff.id))[1]
        with pytest.raises(ValidationError):
            await modify_ranges(storage, notifier, tariff.id, [
                RangeSpec(11, 18, Decimal("1.20"), id=middle.id),
            ])
        assert (await TariffRange.get(id=middle.id)).max_consumption == 20

    @pytest.mark.asyncio
    async def test_foreign_range_id_rejected(self, billing_setup, storage, notifier):
        other = await Tariff.create(name="Other", start_date=date(2024, 1, 1))
        foreign = await TariffRange.create(tariff=other, min_consumption=0, max_consumption=5, price_per_unit=1)
        with pytest.raises(ValidationError, match="does not belong"):
            await modify_ranges(storage, notifier, billing_setup["tariff"].id, [
                RangeSpec(0, 10, Decimal("4"), id=foreign.id),
            ])
