# routers/readings.py
from fastapi import APIRouter, Depends, HTTPException
from models import Reading, User
from notifications import Notifier
from schemas import ReadingCreate, ReadingRead, ReadingRegistered
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item, as_int
from deps import get_current_active_user, get_notifier, get_storage
from services.readings import ReadingIngestionCoordinator
from storage import Storage

router = APIRouter(prefix="/readings", tags=["readings"])

@router.get("", response_model=list[ReadingRead])
async def list_readings(params: RAListParams = Depends(), user: User = Depends(get_current_active_user)):
    qs = Reading.all()
    fmap = {
        "period":   lambda q, v: q.filter(period=str(v)),
        "meter_id": lambda q, v: q.filter(meter_id=as_int(v)) if as_int(v) is not None else q,
        "route_id": lambda q, v: q.filter(route_id=as_int(v)) if as_int(v) is not None else q,
        "customer_id": lambda q, v: q.filter(meter__customer_id=as_int(v)) if as_int(v) is not None else q,
        "date_gte": lambda q, v: q.filter(reading_date__gte=v),
        "date_lte": lambda q, v: q.filter(reading_date__lte=v),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["id", "period", "reading_date", "consumption", "meter_id", "route_id"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, ReadingRead.model_validate)

@router.get("/{reading_id}", response_model=ReadingRead)
async def get_reading(reading_id: int, user: User = Depends(get_current_active_user)):
    obj = await Reading.get_or_none(id=reading_id)
    if not obj:
        raise HTTPException(404, "Reading not found")
    return respond_item(obj, ReadingRead.model_validate)

@router.post("", response_model=ReadingRegistered, status_code=201)
async def register_reading(
    payload: ReadingCreate,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_active_user),
):
    res = await ReadingIngestionCoordinator(storage, notifier).register(
        payload.meter_id,
        payload.route_id,
        payload.consumption,
        payload.reading_date,
        payload.period,
        actor=user.id,
    )
    return respond_item(res, lambda r: ReadingRegistered(**r), status_code=201)
