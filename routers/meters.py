# routers/meters.py
from fastapi import APIRouter, Depends, HTTPException
from models import Meter, User
from notifications import Notifier
from schemas import MeterCreate, MeterRead
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item, as_int
from tortoise.queryset import QuerySet
from deps import get_current_active_user, get_notifier, get_storage
from services.network import create_meter as create_meter_record
from storage import Storage

router = APIRouter(prefix="/meters", tags=["meters"])

ALLOWED_SORTS = {
    "id", "serial_number", "status", "customer_id", "installed_on", "created_at", "updated_at"
}

@router.get("", response_model=list[MeterRead])
async def list_meters(
    params: RAListParams = Depends(),
    user: User = Depends(get_current_active_user),
):
    filters = params.filters or {}
    qs: QuerySet[Meter] = Meter.all()

    # Map React-Admin filter keys -> Tortoise filters
    fmap = {
        "serial_number": lambda q, v: q.filter(serial_number__icontains=str(v)),
        "location":      lambda q, v: q.filter(location__icontains=str(v)),
        "status":        lambda q, v: q.filter(status=str(v)),
        "id":            lambda q, v: q.filter(id=as_int(v)) if as_int(v) is not None else q,
        "customer":      lambda q, v: q.filter(customer_id=as_int(v)) if as_int(v) is not None else q,
        "customer_id":   lambda q, v: q.filter(customer_id=as_int(v)) if as_int(v) is not None else q,
        "unassigned":    lambda q, v: q.filter(customer_id__isnull=bool(v)),
    }
    qs = apply_filter_map(qs, filters, fmap)
    order = parse_sort(params.sort, ALLOWED_SORTS)

    return await paginate_and_respond(
        qs=qs,
        skip=params.skip,
        limit=params.limit,
        order=order,
        to_pydantic=lambda m: MeterRead.model_validate(m),
    )

@router.get("/{meter_id}", response_model=MeterRead)
async def get_meter(meter_id: int, user: User = Depends(get_current_active_user)):
    obj = await Meter.get_or_none(id=meter_id)
    if not obj:
        raise HTTPException(404, "Meter not found")
    return respond_item(obj, lambda m: MeterRead.model_validate(m))

@router.post("", response_model=MeterRead, status_code=201)
async def create_meter(
    payload: MeterCreate,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_active_user),
):
    meter_id = await create_meter_record(storage, notifier, payload.model_dump(), user.id)
    obj = await Meter.get(id=meter_id)
    return respond_item(obj, lambda m: MeterRead.model_validate(m), status_code=201)
