# routers/invoices.py
from datetime import date
from fastapi import APIRouter, Depends, HTTPException
from models import Invoice, User
from notifications import Notifier
from schemas import (
    InvoiceGenerate, InvoiceBackfill, InvoiceCorrection, InvoiceRead, InvoiceStatement,
    InvoiceSummary, BackfillReport,
)
from api_utils import RAListParams, parse_sort, apply_filter_map, respond_item, respond_plain_list, as_int
from deps import get_current_active_user, get_current_admin_user, get_notifier, get_storage
from services.invoicing import InvoiceGenerator, BulkInvoiceBackfill, correct_invoice, invoice_statement
from services.readings import check_period
from storage import Storage

router = APIRouter(prefix="/invoices", tags=["invoices"])

RELATED = ("reading__meter", "reading__route", "customer", "tariff")

@router.get("", response_model=list[InvoiceStatement])
async def list_invoices(
    params: RAListParams = Depends(),
    storage: Storage = Depends(get_storage),
    user: User = Depends(get_current_active_user),
):
    """Invoices with previous-period consumption and earlier unpaid debt."""
    qs = Invoice.all().prefetch_related(*RELATED)
    fmap = {
        "period":      lambda q, v: q.filter(reading__period=check_period(str(v))),
        "status":      lambda q, v: q.filter(status=str(v)),
        "customer_id": lambda q, v: q.filter(customer_id=as_int(v)) if as_int(v) is not None else q,
        "tariff_id":   lambda q, v: q.filter(tariff_id=as_int(v)) if as_int(v) is not None else q,
        "outstanding": lambda q, v: q.filter(balance__gt=0) if v else q.filter(balance__lte=0),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["id", "emission_date", "due_date", "total", "balance", "status"])
    total = await qs.count()
    page = await qs.order_by(order).offset(params.skip).limit(params.limit)
    rows = [InvoiceStatement(**await invoice_statement(storage, inv)) for inv in page]
    return respond_plain_list(rows, params.skip, params.limit, total=total)

@router.get("/{invoice_id}", response_model=InvoiceStatement)
async def get_invoice(
    invoice_id: int,
    storage: Storage = Depends(get_storage),
    user: User = Depends(get_current_active_user),
):
    obj = await Invoice.get_or_none(id=invoice_id).prefetch_related(*RELATED)
    if not obj:
        raise HTTPException(404, "Invoice not found")
    return respond_item(InvoiceStatement(**await invoice_statement(storage, obj)), lambda s: s)

@router.post("", response_model=InvoiceSummary, status_code=201)
async def generate_invoice(
    payload: InvoiceGenerate,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_active_user),
):
    res = await InvoiceGenerator(storage, notifier).generate(
        payload.reading_id,
        payload.customer_id,
        payload.tariff_id,
        payload.consumption,
        payload.emission_date,
        actor=user.id,
    )
    return respond_item(res, lambda r: InvoiceSummary(**r), status_code=201)

@router.post("/backfill", response_model=BackfillReport)
async def backfill_invoices(
    payload: InvoiceBackfill,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_active_user),
):
    report = await BulkInvoiceBackfill(storage, notifier).run(
        check_period(payload.period),
        payload.emission_date or date.today(),
        actor=user.id,
    )
    return respond_item(report, lambda r: BackfillReport(**r))

@router.put("/{invoice_id}", response_model=InvoiceRead)
async def update_invoice(
    invoice_id: int,
    payload: InvoiceCorrection,
    storage: Storage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
    user: User = Depends(get_current_admin_user),
):
    await correct_invoice(storage, notifier, invoice_id, payload.status, payload.total, actor=user.id)
    obj = await Invoice.get(id=invoice_id)
    return respond_item(obj, InvoiceRead.model_validate)
