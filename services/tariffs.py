# services/tariffs.py
from __future__ import annotations
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from tortoise.transactions import in_transaction

from errors import NotFoundError, ValidationError
from notifications import ADMINS, Notifier
from services.pricing import RangeSpec, validate_ranges
from storage import Storage

logger = logging.getLogger("aquabill.tariffs")


def _check_window(start: Optional[date], end: Optional[date]) -> None:
    if start is not None and end is not None and end <= start:
        raise ValidationError("tariff end date must be after its start date")


async def create_tariff(storage: Storage, notifier: Notifier, data: Dict[str, Any], actor: Optional[UUID]) -> int:
    if not (data.get("name") or "").strip():
        raise ValidationError("tariff name is required")
    if data.get("start_date") is None:
        raise ValidationError("tariff start date is required")
    _check_window(data.get("start_date"), data.get("end_date"))
    tariff_id = await storage.insert("tariff", modified_by=actor, **data)
    await notifier.notify("tariff_created", {"tariff_id": tariff_id, "name": data["name"]}, ADMINS)
    return tariff_id


async def update_tariff(storage: Storage, tariff_id: int, data: Dict[str, Any], actor: Optional[UUID]) -> None:
    tariff = await storage.require("tariff", tariff_id)
    if not data:
        raise ValidationError("no fields to update")
    if "start_date" in data and data["start_date"] is None:
        raise ValidationError("tariff start date is required")
    _check_window(data.get("start_date", tariff.start_date), data.get("end_date", tariff.end_date))
    await storage.update("tariff", tariff_id, modified_by=actor, **data)


async def _existing_ranges(storage: Storage, tariff_id: int) -> List[RangeSpec]:
    rows = await storage.find_many("tariff_range", order=["min_consumption"], tariff_id=tariff_id)
    return [RangeSpec.from_model(r) for r in rows]


async def register_ranges(
    storage: Storage,
    notifier: Notifier,
    tariff_id: int,
    ranges: List[RangeSpec],
    actor: Optional[UUID] = None,
) -> int:
    """
    Add new tiers to a tariff. The batch alone and the batch merged with the
    tariff's current tiers must both pass every range rule before anything is written.
    """
    batch = validate_ranges(ranges)
    if not await storage.exists("tariff", id=tariff_id):
        raise NotFoundError(f"tariff {tariff_id} not found")

    existing = await _existing_ranges(storage, tariff_id)
    validate_ranges(existing + batch)

    async with in_transaction():
        for r in batch:
            await storage.insert(
                "tariff_range",
                tariff_id=tariff_id,
                min_consumption=r.min,
                max_consumption=r.max,
                price_per_unit=r.price,
            )

    logger.info("tariff %s: registered %d ranges", tariff_id, len(batch))
    await notifier.notify("tariff_ranges_registered", {"tariff_id": tariff_id, "count": len(batch)}, ADMINS)
    return len(batch)


async def modify_ranges(
    storage: Storage,
    notifier: Notifier,
    tariff_id: int,
    ranges: List[RangeSpec],
    actor: Optional[UUID] = None,
) -> int:
    """
    Update tiers in place (those carrying an id) and insert the rest.
    Contiguity is checked on the tariff's full schedule after the change.
    Price changes are recorded in the range history.
    """
    batch = validate_ranges(ranges, contiguous=False)
    if not await storage.exists("tariff", id=tariff_id):
        raise NotFoundError(f"tariff {tariff_id} not found")

    existing = {r.id: r for r in await _existing_ranges(storage, tariff_id)}
    for r in batch:
        if r.id is not None and r.id not in existing:
            raise ValidationError(f"range {r.id} does not belong to tariff {tariff_id}")

    merged = dict(existing)
    for r in batch:
        if r.id is not None:
            merged[r.id] = r
    validate_ranges(list(merged.values()) + [r for r in batch if r.id is None])

    async with in_transaction():
        for r in batch:
            values = dict(min_consumption=r.min, max_consumption=r.max, price_per_unit=r.price)
            if r.id is None:
                await storage.insert("tariff_range", tariff_id=tariff_id, **values)
                continue
            await storage.update("tariff_range", r.id, **values)
            previous = existing[r.id]
            if Decimal(str(previous.price)) != Decimal(str(r.price)):
                await storage.insert(
                    "tariff_range_history",
                    tariff_id=tariff_id,
                    tariff_range_id=r.id,
                    min_consumption=r.min,
                    max_consumption=r.max,
                    previous_price=previous.price,
                    new_price=r.price,
                    modified_by=actor,
                )

    logger.info("tariff %s: modified %d ranges", tariff_id, len(batch))
    await notifier.notify("tariff_ranges_modified", {"tariff_id": tariff_id, "count": len(batch)}, ADMINS)
    return len(batch)
