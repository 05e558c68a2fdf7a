# routers/dashboard.py
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from models import ChangeLogEntry, User
from schemas import PeriodMetrics, ChangeLogRead
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, as_int
from deps import get_current_active_user, get_current_admin_user
from services.dashboard import period_metrics

router = APIRouter(tags=["dashboard"])

@router.get("/dashboard/metrics", response_model=PeriodMetrics)
async def metrics(
    period: Optional[str] = Query(None, description="YYYY-MM, defaults to the current month"),
    user: User = Depends(get_current_active_user),
):
    return PeriodMetrics(**await period_metrics(period or date.today().strftime("%Y-%m")))

@router.get("/changelog", response_model=list[ChangeLogRead])
async def list_changes(params: RAListParams = Depends(), user: User = Depends(get_current_admin_user)):
    qs = ChangeLogEntry.all()
    fmap = {
        "table_name": lambda q, v: q.filter(table_name=str(v)),
        "operation":  lambda q, v: q.filter(operation=str(v).upper()),
        "record_id":  lambda q, v: q.filter(record_id=as_int(v)) if as_int(v) is not None else q,
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["id", "table_name", "record_id", "created_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, ChangeLogRead.model_validate)
