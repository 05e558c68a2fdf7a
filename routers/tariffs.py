# routers/tariffs.py
from fastapi import APIRouter, Depends, HTTPException
from tortoise.expressions import Q
from models import Tariff, TariffRangeHistory, User
from notifications import Notifier
from schemas import (
    TariffCreate, TariffUpdate, TariffRead, TariffRangeRead, TariffRangeBatch,
    TariffRangeHistoryRead, RangesProcessed,
)
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item, as_int
from deps import get_current_active_user, get_current_admin_user, get_notifier, get_storage
from services import tariffs as tariff_service
from services.pricing import RangeSpec
from storage import Storage

router = APIRouter(prefix="/tariffs", tags=["tariffs"])

def to_tariff_read(t: Tariff) -> TariffRead:
    # callers prefetch "ranges"
    ranges = sorted(t.ranges, key=lambda r: r.min_consumption)
    return TariffRead(
        id=t.id,
        name=t.name,
        description=t.description,
        start_date=t.start_date,
        end_date=t.end_date,
        ranges=[TariffRangeRead.model_validate(r) for r in ranges],
        created_at=t.created_at,
        updated_at=t.updated_at,
    )

def _specs(batch: TariffRangeBatch) -> list[RangeSpec]:
    return [
        RangeSpec(min=r.min_consumption, max=r.max_consumption, price=r.price_per_unit, id=r.id)
        for r in batch.ranges
    ]

async def _load(tariff_id: int) -> Tariff:
    obj = await Tariff.get_or_none(id=tariff_id).prefetch_related("ranges")
    if not obj:
        raise HTTPException(404, "Tariff not found")
    return obj

@router.get("", response_model=list[TariffRead])
async def list_tariffs(params: RAListParams = Depends(), user: User = Depends(get_current_active_user)):
    qs = Tariff.all().prefetch_related("ranges")
    fmap = {
        "name": lambda q, v: q.filter(name__icontains=str(v)),
        "description": lambda q, v: q.filter(description__icontains=str(v)),
        "active_on": lambda q, v: q.filter(Q(end_date__isnull=True) | Q(end_date__gte=v), start_date__lte=v),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["id", "name", "start_date", "end_date", "created_at", "updated_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_tariff_read)

@router.get("/history", response_model=list[TariffRangeHistoryRead])
async def list_range_history(params: RAListParams = Depends(), user: User = Depends(get_current_active_user)):
    qs = TariffRangeHistory.all()
    fmap = {
        "tariff_id": lambda q, v: q.filter(tariff_id=as_int(v)) if as_int(v) is not None else q,
        "tariff_range_id": lambda q, v: q.filter(tariff_range_id=as_int(v)) if as_int(v) is not None else q,
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["id", "tariff_id", "changed_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, TariffRangeHistoryRead.model_validate)

@router.get("/{tariff_id}", response_model=TariffRead)
async def get_tariff(tariff_id: int, user: User = Depends(get_current_active_user)):
    return respond_item(await _load(tariff_id), to_tariff_read)

@router.post("", response_model=TariffRead, status_code=201)
async def create_tariff(
    payload: TariffCreate,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_admin_user),
):
    tariff_id = await tariff_service.create_tariff(storage, notifier, payload.model_dump(), user.id)
    return respond_item(await _load(tariff_id), to_tariff_read, status_code=201)

@router.put("/{tariff_id}", response_model=TariffRead)
async def update_tariff(
    tariff_id: int,
    payload: TariffUpdate,
    storage: Storage = Depends(get_storage),
    user: User = Depends(get_current_admin_user),
):
    await tariff_service.update_tariff(storage, tariff_id, payload.model_dump(exclude_unset=True), user.id)
    return respond_item(await _load(tariff_id), to_tariff_read)

@router.post("/{tariff_id}/ranges", response_model=RangesProcessed, status_code=201)
async def register_ranges(
    tariff_id: int,
    payload: TariffRangeBatch,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_admin_user),
):
    n = await tariff_service.register_ranges(storage, notifier, tariff_id, _specs(payload), user.id)
    return RangesProcessed(tariff_id=tariff_id, processed=n)

@router.put("/{tariff_id}/ranges", response_model=RangesProcessed)
async def modify_ranges(
    tariff_id: int,
    payload: TariffRangeBatch,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_admin_user),
):
    n = await tariff_service.modify_ranges(storage, notifier, tariff_id, _specs(payload), user.id)
    return RangesProcessed(tariff_id=tariff_id, processed=n)
