# services/readings.py
from __future__ import annotations
import logging
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from uuid import UUID

from errors import BillingError, ConflictError, ValidationError
from notifications import ADMINS, OPERATORS, Notifier
from services.invoicing import InvoiceGenerator
from storage import Storage

logger = logging.getLogger("aquabill.readings")

PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def check_period(period: str) -> str:
    if not isinstance(period, str) or not PERIOD_RE.match(period):
        raise ValidationError(f"invalid period {period!r}, expected YYYY-MM")
    return period


class ReadingIngestionCoordinator:
    """
    Stores a meter reading and bills it right away when the meter's owner
    has a tariff. A billing failure leaves the reading in place and comes back
    as a warning.
    """

    def __init__(self, storage: Storage, notifier: Notifier):
        self.storage = storage
        self.notifier = notifier
        self.invoices = InvoiceGenerator(storage, notifier)

    async def register(
        self,
        meter_id: int,
        route_id: int,
        consumption,
        reading_date: date,
        period: str,
        actor: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        try:
            consumption = Decimal(str(consumption))
        except InvalidOperation:
            raise ValidationError("consumption must be a number")
        if consumption < 0:
            raise ValidationError("consumption cannot be negative")
        check_period(period)

        meter = await self.storage.require("meter", meter_id)
        route = await self.storage.require("route", route_id)

        if await self.storage.exists("reading", meter_id=meter_id, period=period):
            raise ConflictError(f"meter {meter.serial_number} already has a reading for {period}")
        try:
            reading_id = await self.storage.insert(
                "reading",
                meter_id=meter_id,
                route_id=route_id,
                consumption=consumption,
                reading_date=reading_date,
                period=period,
                modified_by=actor,
            )
        except ConflictError:
            raise ConflictError(f"meter {meter.serial_number} already has a reading for {period}")

        customer = await self.storage.get_by_id("customer", meter.customer_id) if meter.customer_id else None
        tariff = None
        if customer is not None and customer.tariff_id is not None:
            tariff = await self.storage.get_by_id("tariff", customer.tariff_id)

        reading = {
            "id": reading_id,
            "meter_id": meter_id,
            "meter_serial": meter.serial_number,
            "route_id": route_id,
            "route_name": route.name,
            "customer_id": customer.id if customer else None,
            "customer_name": customer.name if customer else None,
            "consumption": consumption,
            "reading_date": reading_date,
            "period": period,
        }
        await self.notifier.notify("reading_registered", reading, OPERATORS)
        await self.notifier.notify(
            "route_progress",
            {"route_id": route_id, "route_name": route.name, "meter_id": meter_id, "period": period},
            ADMINS,
        )

        result: Dict[str, Any] = {"reading": reading, "invoice": None, "warning": None}
        if tariff is None:
            return result

        try:
            result["invoice"] = await self.invoices.generate(
                reading_id, customer.id, tariff.id, consumption, reading_date, actor,
            )
        except BillingError as e:
            logger.warning("reading %s stored but not invoiced: %s", reading_id, e.detail)
            result["warning"] = f"reading stored, invoice not generated: {e.detail}"
        return result
