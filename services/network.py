# services/network.py
from __future__ import annotations
from typing import Any, Dict, List, Optional
from uuid import UUID

from tortoise.transactions import in_transaction

from errors import ConflictError, NotFoundError, ValidationError
from models import METER_STATUSES
from notifications import ADMINS, Notifier
from services.changelog import record_change
from storage import Storage


# ---------- Meters ----------

async def create_meter(storage: Storage, notifier: Notifier, data: Dict[str, Any], actor: Optional[UUID]) -> int:
    serial = (data.get("serial_number") or "").strip()
    if not serial:
        raise ValidationError("serial number is required")
    if data.get("status") is not None and data["status"] not in METER_STATUSES:
        raise ValidationError(f"unknown meter status {data['status']!r}")
    if await storage.exists("meter", serial_number=serial):
        raise ConflictError(f"meter {serial} already exists")
    if data.get("customer_id") is not None and not await storage.exists("customer", id=data["customer_id"]):
        raise NotFoundError(f"customer {data['customer_id']} not found")

    data = {**data, "serial_number": serial}
    meter_id = await storage.insert("meter", modified_by=actor, **data)
    await record_change(storage, "meters", "INSERT", meter_id, actor, data)
    await notifier.notify("meter_created", {"meter_id": meter_id, "serial_number": serial}, ADMINS)
    return meter_id


# ---------- Routes ----------

async def create_route(
    storage: Storage,
    notifier: Notifier,
    name: str,
    description: Optional[str],
    meter_ids: List[int],
    actor: Optional[UUID] = None,
) -> int:
    """Create a route visiting `meter_ids` in the given order."""
    if not (name or "").strip():
        raise ValidationError("route name is required")
    if len(set(meter_ids)) != len(meter_ids):
        raise ValidationError("a meter can appear only once in a route")
    found = {m.id for m in await storage.find_many("meter", id__in=meter_ids)} if meter_ids else set()
    missing = [m for m in meter_ids if m not in found]
    if missing:
        raise ValidationError(f"meters not found: {', '.join(str(m) for m in missing)}")
    if await storage.exists("route", name=name):
        raise ConflictError(f"route {name} already exists")

    async with in_transaction():
        route_id = await storage.insert("route", name=name, description=description, modified_by=actor)
        for position, meter_id in enumerate(meter_ids, start=1):
            await storage.insert("route_point", route_id=route_id, meter_id=meter_id, position=position)

    await notifier.notify("route_created", {"route_id": route_id, "name": name, "meters": len(meter_ids)}, ADMINS)
    return route_id
