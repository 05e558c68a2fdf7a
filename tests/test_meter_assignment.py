"""Tests for customer updates and concurrent meter reassignment."""

import asyncio

import pytest

from errors import MeterAssignmentError, NotFoundError, ValidationError, ConflictError
from models import ChangeLogEntry, Customer, Meter
from services.customers import create_customer, update_customer
from services.meter_assignment import MeterAssignmentCoordinator
from storage import Storage


class _OwnerChangesAfterRead(Storage):
    """Another writer moves the meter to `new_owner` right after it is read."""

    def __init__(self, new_owner):
        self.new_owner = new_owner

    async def get_by_id(self, kind, id, related=()):
        obj = await super().get_by_id(kind, id, related)
        if kind == "meter":
            await Meter.filter(id=id).update(customer_id=self.new_owner)
        return obj


class TestMeterAssignmentCoordinator:
    @pytest.mark.asyncio
    async def test_no_operations(self, billing_setup, storage):
        assert await MeterAssignmentCoordinator(storage).apply(billing_setup["customer"].id) == []

    @pytest.mark.asyncio
    async def test_assign_and_release(self, billing_setup, storage):
        s = billing_setup
        free = await Meter.create(serial_number="M-FREE")
        applied = await MeterAssignmentCoordinator(storage).apply(
            s["customer"].id, release=[s["meter"].id], assign=[free.id],
        )
        assert len(applied) == 2
        assert (await Meter.get(id=s["meter"].id)).customer_id is None
        assert (await Meter.get(id=free.id)).customer_id == s["customer"].id

    @pytest.mark.asyncio
    async def test_assigning_owned_meter_is_noop(self, billing_setup, storage):
        s = billing_setup
        applied = await MeterAssignmentCoordinator(storage).apply(s["customer"].id, assign=[s["meter"].id])
        assert applied == []

    @pytest.mark.asyncio
    async def test_conflict_reports_errors_and_keeps_applied(self, billing_setup, storage):
        s = billing_setup
        other = await Customer.create(name="Luis Paz", phone="555-0202")
        taken = await Meter.create(serial_number="M-TAKEN", customer=other)
        free = await Meter.create(serial_number="M-FREE")

        with pytest.raises(MeterAssignmentError) as exc:
            await MeterAssignmentCoordinator(storage).apply(
                s["customer"].id, assign=[taken.id, free.id, 999],
            )
        err = exc.value
        assert err.status_code == 400
        assert len(err.errors) == 2
        assert any("already assigned elsewhere" in e for e in err.errors)
        assert any("999" in e for e in err.errors)
        assert [a["meter_id"] for a in err.applied] == [free.id]
        # no rollback of the successful assignment
        assert (await Meter.get(id=free.id)).customer_id == s["customer"].id
        assert (await Meter.get(id=taken.id)).customer_id == other.id

    @pytest.mark.asyncio
    async def test_release_of_foreign_meter(self, billing_setup, storage):
        other = await Customer.create(name="Luis Paz", phone="555-0202")
        theirs = await Meter.create(serial_number="M-THEIRS", customer=other)
        with pytest.raises(MeterAssignmentError, match="not assigned to customer"):
            await MeterAssignmentCoordinator(storage).apply(billing_setup["customer"].id, release=[theirs.id])

    @pytest.mark.asyncio
    async def test_concurrent_assign_has_one_owner(self, billing_setup, storage):
        other = await Customer.create(name="Luis Paz", phone="555-0202")
        free = await Meter.create(serial_number="M-FREE")
        coord = MeterAssignmentCoordinator(storage)
        results = await asyncio.gather(
            coord.apply(billing_setup["customer"].id, assign=[free.id]),
            coord.apply(other.id, assign=[free.id]),
            return_exceptions=True,
        )
        won = [r for r in results if isinstance(r, list)]
        lost = [r for r in results if isinstance(r, MeterAssignmentError)]
        assert len(won) == 1 and len(lost) == 1
        assert "already assigned elsewhere" in lost[0].errors[0]
        assert lost[0].applied == []
        owner = (await Meter.get(id=free.id)).customer_id
        assert won[0][0]["new_customer_id"] == owner

    @pytest.mark.asyncio
    async def test_assign_loses_to_owner_set_after_read(self, billing_setup):
        other = await Customer.create(name="Luis Paz", phone="555-0202")
        free = await Meter.create(serial_number="M-FREE")
        with pytest.raises(MeterAssignmentError, match="already assigned elsewhere"):
            await MeterAssignmentCoordinator(_OwnerChangesAfterRead(other.id)).apply(
                billing_setup["customer"].id, assign=[free.id],
            )
        assert (await Meter.get(id=free.id)).customer_id == other.id

    @pytest.mark.asyncio
    async def test_release_loses_to_owner_set_after_read(self, billing_setup):
        s = billing_setup
        other = await Customer.create(name="Luis Paz", phone="555-0202")
        with pytest.raises(MeterAssignmentError, match="not assigned to customer"):
            await MeterAssignmentCoordinator(_OwnerChangesAfterRead(other.id)).apply(
                s["customer"].id, release=[s["meter"].id],
            )
        assert (await Meter.get(id=s["meter"].id)).customer_id == other.id


class TestCustomerService:
    @pytest.mark.asyncio
    async def test_create_logs_insert(self, db, storage, notifier):
        cid = await create_customer(storage, notifier, {"name": "Eva Soto", "phone": "555-1111"}, None)
        entry = await ChangeLogEntry.get(table_name="customers", record_id=cid)
        assert entry.operation == "INSERT"

    @pytest.mark.asyncio
    async def test_create_duplicate_name_phone(self, db, storage, notifier):
        await create_customer(storage, notifier, {"name": "Eva Soto", "phone": "555-1111"}, None)
        with pytest.raises(ConflictError):
            await create_customer(storage, notifier, {"name": "Eva Soto", "phone": "555-1111"}, None)

    @pytest.mark.asyncio
    async def test_update_requires_fields(self, billing_setup, storage, notifier):
        with pytest.raises(ValidationError):
            await update_customer(storage, notifier, billing_setup["customer"].id, {})

    @pytest.mark.asyncio
    async def test_update_unknown_customer_or_tariff(self, billing_setup, storage, notifier):
        with pytest.raises(NotFoundError):
            await update_customer(storage, notifier, 999, {"city": "Lima"})
        with pytest.raises(NotFoundError):
            await update_customer(storage, notifier, billing_setup["customer"].id, {"tariff_id": 999})

    @pytest.mark.asyncio
    async def test_update_writes_one_changelog_entry(self, billing_setup, storage, notifier):
        s = billing_setup
        free = await Meter.create(serial_number="M-FREE")
        res = await update_customer(
            storage, notifier, s["customer"].id, {"city": "Lima"}, assign_meters=[free.id],
        )
        assert res["changes"]["city"] == {"old": None, "new": "Lima"}
        assert res["changes"]["meters"][0]["meter_id"] == free.id
        assert {m.id for m in res["customer"].meters} == {s["meter"].id, free.id}
        assert await ChangeLogEntry.filter(table_name="customers", operation="UPDATE").count() == 1
        assert notifier.of_type("customer_updated")

    @pytest.mark.asyncio
    async def test_failed_fanout_keeps_field_update(self, billing_setup, storage, notifier):
        s = billing_setup
        with pytest.raises(MeterAssignmentError):
            await update_customer(storage, notifier, s["customer"].id, {"city": "Lima"}, assign_meters=[999])
        assert (await Customer.get(id=s["customer"].id)).city == "Lima"
        assert await ChangeLogEntry.filter(operation="UPDATE").count() == 0
