# services/invoicing.py
from __future__ import annotations
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from errors import BillingError, ConflictError, NotFoundError, ValidationError
from models import INVOICE_PENDING, INVOICE_STATUSES, derive_invoice_status
from notifications import ADMINS, OPERATORS, Notifier
from services import config
from services.changelog import record_change
from services.pricing import RangeSpec, calculate_amount, to_money
from storage import Storage

logger = logging.getLogger("aquabill.invoicing")


class InvoiceGenerator:
    """Creates at most one invoice per reading."""

    def __init__(self, storage: Storage, notifier: Notifier):
        self.storage = storage
        self.notifier = notifier

    async def generate(
        self,
        reading_id: int,
        customer_id: int,
        tariff_id: int,
        consumption,
        emission_date: date,
        actor: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        if await self.storage.exists("invoice", reading_id=reading_id):
            raise ConflictError("invoice already exists for reading")
        if not await self.storage.exists("tariff", id=tariff_id):
            raise NotFoundError(f"tariff {tariff_id} not found")
        if not await self.storage.exists("customer", id=customer_id):
            raise NotFoundError(f"customer {customer_id} not found")
        if not await self.storage.exists("reading", id=reading_id):
            raise NotFoundError(f"reading {reading_id} not found")

        rows = await self.storage.find_many("tariff_range", order=["min_consumption"], tariff_id=tariff_id)
        if not rows:
            raise ValidationError("tariff has no ranges defined")

        total = calculate_amount(consumption, [RangeSpec.from_model(r) for r in rows])
        due_date = emission_date + timedelta(days=config.INVOICE_DUE_DAYS)

        try:
            invoice_id = await self.storage.insert(
                "invoice",
                reading_id=reading_id,
                customer_id=customer_id,
                tariff_id=tariff_id,
                emission_date=emission_date,
                due_date=due_date,
                total=total,
                balance=total,
                status=INVOICE_PENDING,
                modified_by=actor,
            )
        except ConflictError:
            raise ConflictError("invoice already exists for reading")

        result = {
            "invoice_id": invoice_id,
            "reading_id": reading_id,
            "customer_id": customer_id,
            "total": total,
            "due_date": due_date,
        }
        await self.notifier.notify("invoice_generated", result, OPERATORS)
        return result


class BulkInvoiceBackfill:
    """Invoices every billable reading of a period that does not have one yet."""

    def __init__(self, storage: Storage, notifier: Notifier):
        self.storage = storage
        self.notifier = notifier
        self.generator = InvoiceGenerator(storage, notifier)

    async def pending_readings(self, period: str) -> list:
        readings = await self.storage.find_many(
            "reading", order=["id"], related=["meter__customer"], period=period,
        )
        if not readings:
            return []
        invoiced = set(
            await self.storage.column("invoice", "reading_id", reading_id__in=[r.id for r in readings])
        )
        return [
            r for r in readings
            if r.id not in invoiced
            and r.meter.customer is not None
            and r.meter.customer.tariff_id is not None
        ]

    async def run(self, period: str, emission_date: date, actor: Optional[UUID] = None) -> Dict[str, Any]:
        pending = await self.pending_readings(period)
        report: Dict[str, Any] = {"period": period, "total": len(pending), "succeeded": 0, "failed": 0, "items": []}
        if not pending:
            report["message"] = "no readings pending"
            return report

        for reading in pending:
            customer = reading.meter.customer
            item: Dict[str, Any] = {
                "reading_id": reading.id,
                "customer_id": customer.id,
                "customer_name": customer.name,
                "meter_serial": reading.meter.serial_number,
                "consumption": reading.consumption,
            }
            try:
                res = await self.generator.generate(
                    reading.id, customer.id, customer.tariff_id, reading.consumption, emission_date, actor,
                )
            except BillingError as e:
                logger.warning("backfill %s: reading %s failed: %s", period, reading.id, e.detail)
                item.update(outcome="failed", error=e.detail)
                report["failed"] += 1
            else:
                item.update(outcome="created", invoice_id=res["invoice_id"], total=res["total"])
                report["succeeded"] += 1
            report["items"].append(item)

        report["message"] = f"{report['succeeded']} invoices generated, {report['failed']} failed"
        await self.notifier.notify(
            "invoices_backfilled",
            {k: report[k] for k in ("period", "total", "succeeded", "failed")},
            ADMINS,
        )
        return report


async def correct_invoice(
    storage: Storage,
    notifier: Notifier,
    invoice_id: int,
    status: Optional[str],
    total: Optional[Decimal],
    actor: Optional[UUID] = None,
) -> Dict[str, Any]:
    """
    Manual correction of an invoice's status and/or total. A new total moves the
    balance by the same amount (floored at 0) and re-derives the status unless
    one is given explicitly.
    """
    invoice = await storage.require("invoice", invoice_id)
    if status is None and total is None:
        raise ValidationError("status or total is required")
    if status is not None and status not in INVOICE_STATUSES:
        raise ValidationError(f"unknown invoice status {status!r}")

    changes: Dict[str, Any] = {}
    values: Dict[str, Any] = {}
    if total is not None:
        total = to_money(total)
        if total < 0:
            raise ValidationError("total cannot be negative")
        paid = Decimal(str(invoice.total)) - Decimal(str(invoice.balance))
        balance = max(to_money(total - paid), Decimal("0.00"))
        values.update(total=total, balance=balance)
        changes["total"] = {"old": invoice.total, "new": total}
        if status is None:
            status = derive_invoice_status(total, balance)
    if status is not None and status != invoice.status:
        values["status"] = status
        changes["status"] = {"old": invoice.status, "new": status}

    if values:
        await storage.update("invoice", invoice_id, modified_by=actor, **values)
        await record_change(storage, "invoices", "UPDATE", invoice_id, actor, changes)
        await notifier.notify("invoice_corrected", {"invoice_id": invoice_id, "changes": changes}, ADMINS)
    return {"invoice_id": invoice_id, "changes": changes}


def previous_period(period: str) -> str:
    year, month = (int(p) for p in period.split("-"))
    if month == 1:
        return f"{year - 1}-12"
    return f"{year}-{month - 1:02d}"


async def invoice_statement(storage: Storage, invoice) -> Dict[str, Any]:
    """
    Invoice with its billing context: meter, route, the meter's consumption in
    the previous period and the customer's unpaid balance on earlier invoices.
    Expects reading__meter, reading__route, customer and tariff prefetched.
    """
    reading = invoice.reading
    prev = previous_period(reading.period)
    prev_reading = await storage.find_one("reading", meter_id=reading.meter_id, period=prev)
    earlier = await storage.find_many(
        "invoice",
        customer_id=invoice.customer_id,
        emission_date__lt=invoice.emission_date,
        balance__gt=0,
    )
    return {
        "id": invoice.id,
        "reading_id": reading.id,
        "period": reading.period,
        "consumption": reading.consumption,
        "customer_id": invoice.customer_id,
        "customer_name": invoice.customer.name,
        "customer_address": invoice.customer.address,
        "tariff_id": invoice.tariff_id,
        "tariff_name": invoice.tariff.name,
        "meter_id": reading.meter_id,
        "meter_serial": reading.meter.serial_number,
        "route_id": reading.route_id,
        "route_name": reading.route.name,
        "emission_date": invoice.emission_date,
        "due_date": invoice.due_date,
        "total": invoice.total,
        "balance": invoice.balance,
        "status": invoice.status,
        "previous_period": prev,
        "previous_consumption": prev_reading.consumption if prev_reading else None,
        "previous_debt": to_money(sum((Decimal(str(i.balance)) for i in earlier), Decimal("0"))),
    }
