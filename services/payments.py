# services/payments.py
from __future__ import annotations
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from uuid import UUID

from tortoise.transactions import in_transaction

from errors import ValidationError
from models import PAYMENT_METHODS
from notifications import OPERATORS, Notifier
from services.pricing import to_money
from storage import Storage

logger = logging.getLogger("aquabill.payments")


class PaymentApplier:
    """
    Applies a tendered amount to an invoice, capped at the outstanding balance.
    The invoice balance and status are derived by storage once the payment lands.
    """

    def __init__(self, storage: Storage, notifier: Notifier):
        self.storage = storage
        self.notifier = notifier

    async def apply(
        self,
        invoice_id: int,
        payment_date: date,
        tendered,
        method: str = "Cash",
        comment: Optional[str] = None,
        actor: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        try:
            tendered = to_money(tendered)
        except InvalidOperation:
            raise ValidationError("amount must be a number")
        if tendered <= 0:
            raise ValidationError("amount must be greater than zero")
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"unknown payment method {method!r}")

        # balance check, insert and recompute share one locked invoice row
        async with in_transaction():
            invoice = await self.storage.lock("invoice", invoice_id)
            balance = Decimal(str(invoice.balance))
            if balance <= 0:
                raise ValidationError("invoice is already fully paid")

            applied = to_money(min(balance, tendered))
            change = to_money(tendered - applied)

            payment_id = await self.storage.insert(
                "payment",
                invoice_id=invoice_id,
                payment_date=payment_date,
                amount=applied,
                tendered=tendered,
                change=change,
                method=method,
                comment=comment,
                modified_by=actor,
            )
        result = {
            "payment_id": payment_id,
            "invoice_id": invoice_id,
            "applied": applied,
            "change": change,
        }
        logger.info("payment %s: %s applied to invoice %s", payment_id, applied, invoice_id)
        await self.notifier.notify("payment_received", {**result, "customer_id": invoice.customer_id}, OPERATORS)
        return result
