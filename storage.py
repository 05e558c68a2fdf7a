# storage.py
from __future__ import annotations
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type

from tortoise.exceptions import BaseORMException, IntegrityError
from tortoise.models import Model

import models
from errors import ConflictError, InternalError, NotFoundError

logger = logging.getLogger("aquabill.storage")

KINDS: Dict[str, Type[Model]] = {
    "user": models.User,
    "tariff": models.Tariff,
    "tariff_range": models.TariffRange,
    "tariff_range_history": models.TariffRangeHistory,
    "customer": models.Customer,
    "meter": models.Meter,
    "route": models.Route,
    "route_point": models.RoutePoint,
    "reading": models.Reading,
    "invoice": models.Invoice,
    "payment": models.Payment,
    "change_log": models.ChangeLogEntry,
}


class Storage:
    """
    Record-oriented access to the billing tables.

    Every method takes an entity kind ("customer", "meter", ...) and Tortoise
    lookup keywords. Uniqueness violations surface as ConflictError, any other
    database failure as InternalError.
    """

    def model(self, kind: str) -> Type[Model]:
        try:
            return KINDS[kind]
        except KeyError:
            raise InternalError(f"unknown entity kind {kind!r}")

    async def _run(self, kind: str, op: str, awaitable):
        try:
            return await awaitable
        except IntegrityError as e:
            logger.info("%s %s rejected by storage constraint: %s", op, kind, e)
            raise ConflictError(f"{kind} conflicts with an existing record")
        except BaseORMException as e:
            logger.exception("%s %s failed", op, kind)
            raise InternalError(f"{op} {kind} failed: {e}")

    async def get_by_id(self, kind: str, id: Any, related: Sequence[str] = ()) -> Optional[Model]:
        qs = self.model(kind).filter(id=id)
        if related:
            qs = qs.prefetch_related(*related)
        return await self._run(kind, "get", qs.first())

    async def require(self, kind: str, id: Any, related: Sequence[str] = ()) -> Model:
        obj = await self.get_by_id(kind, id, related)
        if obj is None:
            raise NotFoundError(f"{kind.replace('_', ' ')} {id} not found")
        return obj

    async def lock(self, kind: str, id: Any) -> Model:
        """Fetch a row for update; holds the row until the surrounding transaction ends."""
        qs = self.model(kind).filter(id=id).select_for_update()
        obj = await self._run(kind, "lock", qs.first())
        if obj is None:
            raise NotFoundError(f"{kind.replace('_', ' ')} {id} not found")
        return obj

    async def find_one(self, kind: str, **filters) -> Optional[Model]:
        return await self._run(kind, "find", self.model(kind).filter(**filters).first())

    async def find_many(
        self,
        kind: str,
        order: Optional[Iterable[str]] = None,
        related: Sequence[str] = (),
        **filters,
    ) -> List[Model]:
        qs = self.model(kind).filter(**filters)
        if order:
            qs = qs.order_by(*order)
        if related:
            qs = qs.prefetch_related(*related)
        return await self._run(kind, "find", qs)

    async def exists(self, kind: str, **filters) -> bool:
        return await self._run(kind, "find", self.model(kind).filter(**filters).exists())

    async def insert(self, kind: str, **values) -> int:
        obj = await self._run(kind, "insert", self.model(kind).create(**values))
        return obj.pk

    async def update(self, kind: str, id: Any, **values) -> int:
        if not values:
            return 0
        return await self._run(kind, "update", self.model(kind).filter(id=id).update(**values))

    async def update_if(self, kind: str, id: Any, expected: Dict[str, Any], **values) -> int:
        """Update only while the row still matches `expected`; returns the affected count."""
        if not values:
            return 0
        qs = self.model(kind).filter(id=id, **expected)
        return await self._run(kind, "update", qs.update(**values))

    async def column(self, kind: str, field: str, **filters) -> List[Any]:
        qs = self.model(kind).filter(**filters).values_list(field, flat=True)
        return await self._run(kind, "find", qs)
