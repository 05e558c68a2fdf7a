"""Tests for applying payments and the invoice balance they drive."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from errors import ConflictError, NotFoundError, ValidationError
from models import Invoice, Payment, Reading
from services.invoicing import InvoiceGenerator
from services.payments import PaymentApplier


async def _invoice(setup, storage, notifier, consumption="15"):
    reading = await Reading.create(
        meter=setup["meter"], route=setup["route"], consumption=Decimal(consumption),
        reading_date=date(2024, 3, 28), period="2024-03",
    )
    res = await InvoiceGenerator(storage, notifier).generate(
        reading.id, setup["customer"].id, setup["tariff"].id, reading.consumption, date(2024, 4, 1),
    )
    return res["invoice_id"]


class TestPaymentApplier:
    @pytest.mark.asyncio
    async def test_partial_then_overpay_then_rejected(self, billing_setup, storage, notifier):
        invoice_id = await _invoice(billing_setup, storage, notifier)  # 18.00
        payer = PaymentApplier(storage, notifier)

        first = await payer.apply(invoice_id, date(2024, 4, 5), Decimal("10"))
        assert first["applied"] == Decimal("10.00")
        assert first["change"] == Decimal("0.00")
        inv = await Invoice.get(id=invoice_id)
        assert inv.balance == Decimal("8.00")
        assert inv.status == "PartiallyPaid"

        second = await payer.apply(invoice_id, date(2024, 4, 6), Decimal("20"), method="Card")
        assert second["applied"] == Decimal("8.00")
        assert second["change"] == Decimal("12.00")
        inv = await Invoice.get(id=invoice_id)
        assert inv.balance == Decimal("0.00")
        assert inv.status == "Paid"

        with pytest.raises(ValidationError, match="already fully paid"):
            await payer.apply(invoice_id, date(2024, 4, 7), Decimal("1"))
        assert await Payment.filter(invoice_id=invoice_id).count() == 2
        assert len(notifier.of_type("payment_received")) == 2

    @pytest.mark.asyncio
    async def test_rejects_non_positive_amount(self, billing_setup, storage, notifier):
        invoice_id = await _invoice(billing_setup, storage, notifier)
        with pytest.raises(ValidationError):
            await PaymentApplier(storage, notifier).apply(invoice_id, date(2024, 4, 5), Decimal("0"))

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, db, storage, notifier):
        with pytest.raises(NotFoundError):
            await PaymentApplier(storage, notifier).apply(1, date(2024, 4, 5), Decimal("5"))

    @pytest.mark.asyncio
    async def test_storage_rejects_payment_above_balance(self, billing_setup, storage, notifier):
        invoice_id = await _invoice(billing_setup, storage, notifier)
        with pytest.raises(ConflictError):
            await storage.insert(
                "payment", invoice_id=invoice_id, payment_date=date(2024, 4, 5),
                amount=Decimal("100"), tendered=Decimal("100"),
            )

    @pytest.mark.asyncio
    async def test_concurrent_payments_never_exceed_total(self, billing_setup, storage, notifier):
        invoice_id = await _invoice(billing_setup, storage, notifier)  # 18.00
        payer = PaymentApplier(storage, notifier)
        results = await asyncio.gather(
            payer.apply(invoice_id, date(2024, 4, 5), Decimal("18")),
            payer.apply(invoice_id, date(2024, 4, 5), Decimal("18")),
            return_exceptions=True,
        )
        assert sum(isinstance(r, dict) for r in results) == 1
        rejected = [r for r in results if isinstance(r, ValidationError)]
        assert len(rejected) == 1
        assert "already fully paid" in rejected[0].detail

        amounts = await Payment.filter(invoice_id=invoice_id).values_list("amount", flat=True)
        assert sum(Decimal(str(a)) for a in amounts) == Decimal("18.00")
        inv = await Invoice.get(id=invoice_id)
        assert inv.balance == Decimal("0.00")
        assert inv.status == "Paid"

    @pytest.mark.asyncio
    async def test_applied_and_change_have_cent_precision(self, billing_setup, storage, notifier):
        invoice_id = await _invoice(billing_setup, storage, notifier, consumption="5")  # 5.00
        res = await PaymentApplier(storage, notifier).apply(invoice_id, date(2024, 4, 5), Decimal("50"))
        assert str(res["applied"]) == "5.00"
        assert str(res["change"]) == "45.00"
