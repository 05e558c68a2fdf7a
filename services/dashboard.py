# services/dashboard.py
from __future__ import annotations
from datetime import date
from decimal import Decimal
from typing import Any, Dict

from tortoise.functions import Count

from models import INVOICE_STATUSES, Customer, Invoice, Meter, Payment, Reading
from services.pricing import to_money
from services.readings import check_period


def period_bounds(period: str) -> tuple[date, date]:
    """First day of the period and first day of the following one."""
    year, month = (int(p) for p in check_period(period).split("-"))
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


def _dsum(values) -> Decimal:
    return to_money(sum((Decimal(str(v)) for v in values if v is not None), Decimal("0")))


async def period_metrics(period: str) -> Dict[str, Any]:
    start, end = period_bounds(period)

    readings = Reading.filter(period=period)
    invoices = Invoice.filter(reading__period=period)

    by_status = {s: 0 for s in INVOICE_STATUSES}
    rows = await invoices.annotate(n=Count("id")).group_by("status").values("status", "n")
    for row in rows:
        by_status[row["status"]] = row["n"]

    totals = await invoices.values_list("total", "balance")
    paid = await Payment.filter(payment_date__gte=start, payment_date__lt=end).values_list("amount", flat=True)
    consumption = await readings.values_list("consumption", flat=True)

    return {
        "period": period,
        "readings": await readings.count(),
        "consumption": sum((Decimal(str(c)) for c in consumption), Decimal("0")),
        "invoices": await invoices.count(),
        "invoices_by_status": by_status,
        "billed_total": _dsum(t for t, _ in totals),
        "outstanding_total": _dsum(b for _, b in totals),
        "payments_total": _dsum(paid),
        "active_customers": await Customer.filter(status="Active").count(),
        "unassigned_meters": await Meter.filter(customer_id__isnull=True).count(),
    }
