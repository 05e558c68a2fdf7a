# services/changelog.py
from __future__ import annotations
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi.encoders import jsonable_encoder

from storage import Storage


async def record_change(
    storage: Storage,
    table: str,
    operation: str,
    record_id: int,
    actor: Optional[UUID],
    changes: Dict[str, Any],
) -> int:
    """Append one audit row; `changes` is stored as JSON."""
    return await storage.insert(
        "change_log",
        table_name=table,
        operation=operation,
        record_id=record_id,
        modified_by=actor,
        changes=jsonable_encoder(changes),
    )


def diff_fields(current: Any, incoming: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """{field: {"old": .., "new": ..}} for every incoming value that differs."""
    deltas: Dict[str, Dict[str, Any]] = {}
    for field, new in incoming.items():
        old = getattr(current, field, None)
        if old != new:
            deltas[field] = {"old": old, "new": new}
    return deltas
