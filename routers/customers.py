# routers/customers.py
from fastapi import APIRouter, Depends, HTTPException
from models import Customer, User
from notifications import Notifier
from schemas import CustomerCreate, CustomerUpdate, CustomerRead, CustomerDetail
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item, as_int
from deps import get_current_active_user, get_notifier, get_storage
from services import customers as customer_service
from storage import Storage

router = APIRouter(prefix="/customers", tags=["customers"])

def to_customer_detail(c: Customer, changes: dict | None = None) -> CustomerDetail:
    base = CustomerRead.model_validate(c).model_dump()
    return CustomerDetail(**base, meter_ids=sorted(m.id for m in c.meters), changes=changes or {})

@router.get("", response_model=list[CustomerRead])
async def list_customers(params: RAListParams = Depends(), user: User = Depends(get_current_active_user)):
    qs = Customer.all()
    fmap = {
        "name":    lambda q, v: q.filter(name__icontains=str(v)),
        "phone":   lambda q, v: q.filter(phone__icontains=str(v)),
        "city":    lambda q, v: q.filter(city__icontains=str(v)),
        "status":  lambda q, v: q.filter(status=str(v)),
        "tariff_id": lambda q, v: q.filter(tariff_id=as_int(v)) if as_int(v) is not None else q,
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["id", "name", "city", "status", "created_at", "updated_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, CustomerRead.model_validate)

@router.get("/{customer_id}", response_model=CustomerDetail)
async def get_customer(customer_id: int, user: User = Depends(get_current_active_user)):
    obj = await Customer.get_or_none(id=customer_id).prefetch_related("meters")
    if not obj:
        raise HTTPException(404, "Customer not found")
    return respond_item(obj, to_customer_detail)

@router.post("", response_model=CustomerDetail, status_code=201)
async def create_customer(
    payload: CustomerCreate,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_active_user),
):
    data = payload.model_dump()
    if data.get("email") is not None:
        data["email"] = str(data["email"])
    customer_id = await customer_service.create_customer(storage, notifier, data, user.id)
    obj = await Customer.get(id=customer_id).prefetch_related("meters")
    return respond_item(obj, to_customer_detail, status_code=201)

@router.put("/{customer_id}", response_model=CustomerDetail)
async def update_customer(
    customer_id: int,
    payload: CustomerUpdate,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_active_user),
):
    data = payload.model_dump(exclude_unset=True)
    assign = data.pop("assign_meters", [])
    release = data.pop("release_meters", [])
    if data.get("email") is not None:
        data["email"] = str(data["email"])
    res = await customer_service.update_customer(
        storage, notifier, customer_id, data,
        release_meters=release, assign_meters=assign, actor=user.id,
    )
    return respond_item(res["customer"], lambda c: to_customer_detail(c, res["changes"]))
