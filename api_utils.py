# api_utils.py
import json
from typing import Any, Callable, Iterable, Optional
from fastapi import Query
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from tortoise.queryset import QuerySet

# ---------- React-Admin param parsing ----------
def parse_range(range_param: str) -> tuple[int, int]:
    try:
        start, end = json.loads(range_param)
        skip = max(int(start), 0)
        limit = max(int(end) - skip + 1, 1)
    except (ValueError, TypeError):
        skip, limit = 0, 10
    return skip, limit

def parse_sort(sort_param: str, allowed_fields: Iterable[str]) -> str:
    allowed = set(allowed_fields) | {"id"}
    try:
        field, order = json.loads(sort_param)
    except (ValueError, TypeError):
        field, order = ("id", "ASC")
    field = field if field in allowed else "id"
    prefix = "-" if str(order).upper() == "DESC" else ""
    return f"{prefix}{field}"

def parse_filter(filter_param: Optional[str]) -> dict:
    try:
        parsed = json.loads(filter_param or "{}")
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}

def as_int(v) -> Optional[int]:
    try:
        return int(v)
    except (ValueError, TypeError):
        return None

# ---------- Query helpers ----------
def apply_filter_map(qs: QuerySet, filters: dict, fmap: dict[str, Callable[[QuerySet, Any], QuerySet]]) -> QuerySet:
    for key, fn in fmap.items():
        if key in filters and filters[key] is not None:
            qs = fn(qs, filters[key])
    return qs

def _encode(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return json.loads(obj.model_dump_json())
    return jsonable_encoder(obj)

def _content_range(skip: int, count: int, total: int) -> str:
    return f"items {skip}-{skip + max(count - 1, 0)}/{total}"

async def paginate_and_respond(
    qs: QuerySet,
    skip: int,
    limit: int,
    order: str,
    to_pydantic: Callable[[Any], Any],
) -> JSONResponse:
    total = await qs.count()
    items = await qs.order_by(order).offset(skip).limit(limit)
    content = [_encode(to_pydantic(it)) for it in items]
    return JSONResponse(
        status_code=206,
        content=content,
        headers={"Content-Range": _content_range(skip, len(items), total)},
    )

def respond_plain_list(items: list, skip: int, limit: int, total: Optional[int] = None) -> JSONResponse:
    """List response for rows built in Python; `total` when `items` is already a page."""
    if total is None:
        total = len(items)
        items = items[skip : skip + limit]
    return JSONResponse(
        status_code=206,
        content=[_encode(it) for it in items],
        headers={"Content-Range": _content_range(skip, len(items), total)},
    )

def respond_item(model_obj: Any, to_pydantic: Callable[[Any], Any], status_code: int = 200) -> JSONResponse:
    """Single item response that uses the same Pydantic-safe encoding."""
    return JSONResponse(status_code=status_code, content=_encode(to_pydantic(model_obj)))

# ---------- RA params container ----------
class RAListParams:
    def __init__(
        self,
        range: str = Query("[0,9]"),
        sort: str = Query('["id","ASC"]'),
        filter: str = Query("{}"),
    ):
        self.skip, self.limit = parse_range(range)
        self.filters = parse_filter(filter)
        self.sort = sort
