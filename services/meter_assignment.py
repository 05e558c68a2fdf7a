# services/meter_assignment.py
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from errors import BillingError, MeterAssignmentError
from storage import Storage

logger = logging.getLogger("aquabill.meters")


@dataclass
class Outcome:
    meter_id: int
    action: str  # "release" | "assign"
    delta: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class MeterAssignmentCoordinator:
    """
    Moves meters in and out of one customer's ownership.

    Every release/assign runs concurrently and reports an Outcome; the call
    returns once all of them have reported. Applied changes are not rolled
    back when a sibling fails: MeterAssignmentError lists both.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    async def _release(self, customer_id: int, meter_id: int, actor: Optional[UUID]) -> Outcome:
        out = Outcome(meter_id, "release")
        try:
            meter = await self.storage.get_by_id("meter", meter_id)
            if meter is None:
                out.error = f"meter {meter_id} not found"
            elif meter.customer_id != customer_id:
                out.error = f"meter {meter.serial_number} is not assigned to customer {customer_id}"
            else:
                moved = await self.storage.update_if(
                    "meter", meter_id, {"customer_id": customer_id}, customer_id=None, modified_by=actor,
                )
                if not moved:
                    out.error = f"meter {meter.serial_number} is not assigned to customer {customer_id}"
                    return out
                out.delta = {"meter_id": meter_id, "serial_number": meter.serial_number,
                             "old_customer_id": customer_id, "new_customer_id": None}
        except BillingError as e:
            out.error = f"meter {meter_id}: {e.detail}"
        return out

    async def _assign(self, customer_id: int, meter_id: int, actor: Optional[UUID]) -> Outcome:
        out = Outcome(meter_id, "assign")
        try:
            meter = await self.storage.get_by_id("meter", meter_id)
            if meter is None:
                out.error = f"meter {meter_id} not found"
            elif meter.customer_id == customer_id:
                pass
            elif meter.customer_id is not None:
                out.error = f"meter {meter.serial_number} already assigned elsewhere"
            else:
                # owner must still be empty when the write lands
                moved = await self.storage.update_if(
                    "meter", meter_id, {"customer_id__isnull": True}, customer_id=customer_id, modified_by=actor,
                )
                if not moved:
                    out.error = f"meter {meter.serial_number} already assigned elsewhere"
                    return out
                out.delta = {"meter_id": meter_id, "serial_number": meter.serial_number,
                             "old_customer_id": None, "new_customer_id": customer_id}
        except BillingError as e:
            out.error = f"meter {meter_id}: {e.detail}"
        return out

    async def apply(
        self,
        customer_id: int,
        release: Iterable[int] = (),
        assign: Iterable[int] = (),
        actor: Optional[UUID] = None,
    ) -> List[Dict[str, Any]]:
        ops = [self._release(customer_id, m, actor) for m in release]
        ops += [self._assign(customer_id, m, actor) for m in assign]
        if not ops:
            return []

        outcomes: List[Outcome] = await asyncio.gather(*ops)
        applied = [o.delta for o in outcomes if o.delta]
        errors = [o.error for o in outcomes if o.error]
        if errors:
            logger.warning("customer %s: %d meter operations failed, %d applied", customer_id, len(errors), len(applied))
            raise MeterAssignmentError(errors, applied)
        return applied
