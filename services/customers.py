# services/customers.py
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from errors import ConflictError, NotFoundError, ValidationError
from models import CUSTOMER_STATUSES
from notifications import ADMINS, OPERATORS, Notifier
from services.changelog import diff_fields, record_change
from services.meter_assignment import MeterAssignmentCoordinator
from storage import Storage

logger = logging.getLogger("aquabill.customers")

CUSTOMER_FIELDS = ("name", "address", "phone", "city", "email", "status", "tariff_id")


def _check_status(data: Dict[str, Any]) -> None:
    status = data.get("status")
    if status is not None and status not in CUSTOMER_STATUSES:
        raise ValidationError(f"unknown customer status {status!r}")


async def create_customer(storage: Storage, notifier: Notifier, data: Dict[str, Any], actor: Optional[UUID]) -> int:
    if not (data.get("name") or "").strip():
        raise ValidationError("customer name is required")
    _check_status(data)
    if data.get("tariff_id") is not None and not await storage.exists("tariff", id=data["tariff_id"]):
        raise NotFoundError(f"tariff {data['tariff_id']} not found")
    if await storage.exists("customer", name=data["name"], phone=data.get("phone")):
        raise ConflictError("a customer with this name and phone already exists")

    customer_id = await storage.insert("customer", modified_by=actor, **data)
    await record_change(storage, "customers", "INSERT", customer_id, actor, data)
    await notifier.notify("customer_created", {"customer_id": customer_id, "name": data["name"]}, ADMINS)
    return customer_id


async def update_customer(
    storage: Storage,
    notifier: Notifier,
    customer_id: int,
    data: Dict[str, Any],
    release_meters: Optional[List[int]] = None,
    assign_meters: Optional[List[int]] = None,
    actor: Optional[UUID] = None,
) -> Dict[str, Any]:
    """
    Update customer fields, then move meters in/out of its ownership.
    One change-log entry covers both. If a meter operation fails the field
    update and any successful meter moves stay applied.
    """
    release_meters = list(release_meters or [])
    assign_meters = list(assign_meters or [])
    fields = {k: v for k, v in data.items() if k in CUSTOMER_FIELDS}

    customer = await storage.require("customer", customer_id)
    if not fields and not release_meters and not assign_meters:
        raise ValidationError("no fields to update")
    _check_status(fields)
    if fields.get("tariff_id") is not None and not await storage.exists("tariff", id=fields["tariff_id"]):
        raise NotFoundError(f"tariff {fields['tariff_id']} not found")

    deltas = diff_fields(customer, fields)
    if deltas:
        await storage.update(
            "customer", customer_id, modified_by=actor, **{k: v["new"] for k, v in deltas.items()},
        )

    moved = await MeterAssignmentCoordinator(storage).apply(customer_id, release_meters, assign_meters, actor)

    changes: Dict[str, Any] = dict(deltas)
    if moved:
        changes["meters"] = moved
    if changes:
        await record_change(storage, "customers", "UPDATE", customer_id, actor, changes)
        await notifier.notify("customer_updated", {"customer_id": customer_id, "changes": changes}, OPERATORS)

    updated = await storage.require("customer", customer_id, related=["meters"])
    return {"customer": updated, "changes": changes}
