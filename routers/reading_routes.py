# routers/reading_routes.py
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from models import Route, Reading, User
from notifications import Notifier
from schemas import RouteCreate, RouteRead, RoutePointRead, ReadingRead
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item, respond_plain_list
from deps import get_current_active_user, get_notifier, get_storage
from services.network import create_route as create_route_record
from services.readings import check_period
from storage import Storage

router = APIRouter(prefix="/routes", tags=["routes"])

def to_route_read(r: Route) -> RouteRead:
    points = sorted(r.points, key=lambda p: p.position)
    return RouteRead(
        id=r.id,
        name=r.name,
        description=r.description,
        points=[RoutePointRead.model_validate(p) for p in points],
        created_at=r.created_at,
    )

@router.get("", response_model=list[RouteRead])
async def list_routes(params: RAListParams = Depends(), user: User = Depends(get_current_active_user)):
    qs = Route.all().prefetch_related("points")
    fmap = {
        "name": lambda q, v: q.filter(name__icontains=str(v)),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["id", "name", "created_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_route_read)

@router.get("/{route_id}", response_model=RouteRead)
async def get_route(route_id: int, user: User = Depends(get_current_active_user)):
    obj = await Route.get_or_none(id=route_id).prefetch_related("points")
    if not obj:
        raise HTTPException(404, "Route not found")
    return respond_item(obj, to_route_read)

@router.get("/{route_id}/readings", response_model=list[ReadingRead])
async def route_readings(
    route_id: int,
    period: Optional[str] = Query(None, description="YYYY-MM"),
    params: RAListParams = Depends(),
    user: User = Depends(get_current_active_user),
):
    """Readings taken on a route, in visiting order of the route's meters."""
    route = await Route.get_or_none(id=route_id).prefetch_related("points")
    if not route:
        raise HTTPException(404, "Route not found")
    qs = Reading.filter(route_id=route_id)
    if period:
        qs = qs.filter(period=check_period(period))
    position = {p.meter_id: p.position for p in route.points}
    rows = sorted(await qs, key=lambda r: (r.period, position.get(r.meter_id, 1 << 30), r.id))
    return respond_plain_list([ReadingRead.model_validate(r) for r in rows], params.skip, params.limit)

@router.post("", response_model=RouteRead, status_code=201)
async def create_route(
    payload: RouteCreate,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_active_user),
):
    route_id = await create_route_record(
        storage, notifier, payload.name, payload.description, payload.meter_ids, user.id,
    )
    obj = await Route.get(id=route_id).prefetch_related("points")
    return respond_item(obj, to_route_read, status_code=201)
