# routers/payments.py
from fastapi import APIRouter, Depends, HTTPException
from models import Payment, User
from notifications import Notifier
from schemas import PaymentCreate, PaymentApplied, PaymentRead
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item, as_int
from deps import get_current_active_user, get_notifier, get_storage
from services.dashboard import period_bounds
from services.payments import PaymentApplier
from storage import Storage

router = APIRouter(prefix="/payments", tags=["payments"])

def _in_period(q, v):
    start, end = period_bounds(str(v))
    return q.filter(payment_date__gte=start, payment_date__lt=end)

@router.get("", response_model=list[PaymentRead])
async def list_payments(params: RAListParams = Depends(), user: User = Depends(get_current_active_user)):
    qs = Payment.all()
    fmap = {
        "invoice_id":  lambda q, v: q.filter(invoice_id=as_int(v)) if as_int(v) is not None else q,
        "customer_id": lambda q, v: q.filter(invoice__customer_id=as_int(v)) if as_int(v) is not None else q,
        "method":      lambda q, v: q.filter(method=str(v)),
        "period":      _in_period,
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["id", "payment_date", "amount", "method", "invoice_id"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, PaymentRead.model_validate)

@router.get("/{payment_id}", response_model=PaymentRead)
async def get_payment(payment_id: int, user: User = Depends(get_current_active_user)):
    obj = await Payment.get_or_none(id=payment_id)
    if not obj:
        raise HTTPException(404, "Payment not found")
    return respond_item(obj, PaymentRead.model_validate)

@router.post("", response_model=PaymentApplied, status_code=201)
async def apply_payment(
    payload: PaymentCreate,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_active_user),
):
    res = await PaymentApplier(storage, notifier).apply(
        payload.invoice_id,
        payload.payment_date,
        payload.amount,
        method=payload.method,
        comment=payload.comment,
        actor=user.id,
    )
    return respond_item(res, lambda r: PaymentApplied(**r), status_code=201)
