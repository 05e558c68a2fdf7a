from decimal import Decimal
import uuid

from tortoise import fields, models
from tortoise.exceptions import IntegrityError
from tortoise.signals import pre_save, post_save

from services.pricing import to_money


# -------- Users --------
class User(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    username = fields.CharField(max_length=50, unique=True, index=True)
    email = fields.CharField(max_length=100, unique=True, index=True)
    hashed_password = fields.CharField(max_length=128)
    disabled = fields.BooleanField(default=False)
    is_admin = fields.BooleanField(default=False)

    class Meta:
        table = "users"

    def __str__(self) -> str:
        return f"{self.username} ({self.email})"


# -------- Tariffs --------
class Tariff(models.Model):
    id = fields.IntField(pk=True)
    name = fields.CharField(max_length=100, index=True)
    description = fields.TextField(null=True)
    start_date = fields.DateField(index=True)
    end_date = fields.DateField(null=True, index=True)  # null = open-ended
    modified_by = fields.UUIDField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True, index=True)

    class Meta:
        table = "tariffs"

    def __str__(self) -> str:
        return self.name


class TariffRange(models.Model):
    """
    One consumption tier of a tariff. Bounds are whole units, both inclusive.
    max_consumption is null only on the highest (open-ended) tier.
    """
    id = fields.IntField(pk=True)
    tariff = fields.ForeignKeyField("models.Tariff", related_name="ranges", on_delete=fields.CASCADE, index=True)
    min_consumption = fields.IntField()
    max_consumption = fields.IntField(null=True)
    price_per_unit = fields.DecimalField(max_digits=12, decimal_places=2)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "tariff_ranges"
        unique_together = ("tariff", "min_consumption")

    def __str__(self) -> str:
        return f"{self.min_consumption}..{self.max_consumption if self.max_consumption is not None else '∞'} @ {self.price_per_unit}"


class TariffRangeHistory(models.Model):
    id = fields.IntField(pk=True)
    tariff = fields.ForeignKeyField("models.Tariff", related_name="range_history", on_delete=fields.CASCADE, index=True)
    tariff_range = fields.ForeignKeyField("models.TariffRange", related_name="history", on_delete=fields.CASCADE)
    min_consumption = fields.IntField()
    max_consumption = fields.IntField(null=True)
    previous_price = fields.DecimalField(max_digits=12, decimal_places=2)
    new_price = fields.DecimalField(max_digits=12, decimal_places=2)
    modified_by = fields.UUIDField(null=True)
    changed_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "tariff_range_history"


# -------- Customers & metering --------
CUSTOMER_STATUSES = ("Active", "Inactive")
METER_STATUSES = ("Active", "Inactive", "Retired", "NotInstalled")


class Customer(models.Model):
    id = fields.IntField(pk=True)
    name = fields.CharField(max_length=200, index=True)
    address = fields.CharField(max_length=255, null=True)
    phone = fields.CharField(max_length=32, null=True)
    city = fields.CharField(max_length=100, null=True)
    email = fields.CharField(max_length=100, null=True)
    status = fields.CharField(max_length=16, default="Active")  # Active / Inactive, never deleted
    tariff = fields.ForeignKeyField("models.Tariff", null=True, related_name="customers", on_delete=fields.SET_NULL, index=True)
    modified_by = fields.UUIDField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True, index=True)

    class Meta:
        table = "customers"
        unique_together = ("name", "phone")

    def __str__(self) -> str:
        return self.name


class Meter(models.Model):
    id = fields.IntField(pk=True)
    serial_number = fields.CharField(max_length=64, unique=True, index=True)
    customer = fields.ForeignKeyField("models.Customer", null=True, related_name="meters", on_delete=fields.SET_NULL, index=True)
    location = fields.CharField(max_length=255, null=True)
    installed_on = fields.DateField(null=True)
    latitude = fields.FloatField(null=True)
    longitude = fields.FloatField(null=True)
    status = fields.CharField(max_length=16, default="Active")
    modified_by = fields.UUIDField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True, index=True)

    class Meta:
        table = "meters"

    def __str__(self) -> str:
        return self.serial_number


class Route(models.Model):
    id = fields.IntField(pk=True)
    name = fields.CharField(max_length=100, unique=True, index=True)
    description = fields.TextField(null=True)
    modified_by = fields.UUIDField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "routes"

    def __str__(self) -> str:
        return self.name


class RoutePoint(models.Model):
    id = fields.IntField(pk=True)
    route = fields.ForeignKeyField("models.Route", related_name="points", on_delete=fields.CASCADE, index=True)
    meter = fields.ForeignKeyField("models.Meter", related_name="route_points", on_delete=fields.CASCADE, index=True)
    position = fields.IntField()  # visiting order, from 1

    class Meta:
        table = "route_points"
        unique_together = (("route", "position"), ("route", "meter"))


# -------- Readings & billing --------
class Reading(models.Model):
    id = fields.IntField(pk=True)
    meter = fields.ForeignKeyField("models.Meter", related_name="readings", on_delete=fields.RESTRICT, index=True)
    route = fields.ForeignKeyField("models.Route", related_name="readings", on_delete=fields.RESTRICT, index=True)
    consumption = fields.DecimalField(max_digits=12, decimal_places=3)  # m3
    reading_date = fields.DateField(index=True)
    period = fields.CharField(max_length=7, index=True)  # YYYY-MM
    modified_by = fields.UUIDField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "readings"
        unique_together = ("meter", "period")


INVOICE_PENDING = "Pending"
INVOICE_PARTIALLY_PAID = "PartiallyPaid"
INVOICE_PAID = "Paid"
INVOICE_STATUSES = (INVOICE_PENDING, INVOICE_PARTIALLY_PAID, INVOICE_PAID)


class Invoice(models.Model):
    id = fields.IntField(pk=True)
    # one invoice per reading; the unique index is the idempotency guard
    reading = fields.OneToOneField("models.Reading", related_name="invoice", on_delete=fields.RESTRICT)
    customer = fields.ForeignKeyField("models.Customer", related_name="invoices", on_delete=fields.RESTRICT, index=True)
    tariff = fields.ForeignKeyField("models.Tariff", related_name="invoices", on_delete=fields.RESTRICT, index=True)
    emission_date = fields.DateField(index=True)
    due_date = fields.DateField(index=True)
    total = fields.DecimalField(max_digits=12, decimal_places=2)
    balance = fields.DecimalField(max_digits=12, decimal_places=2)
    status = fields.CharField(max_length=16, default=INVOICE_PENDING, index=True)
    modified_by = fields.UUIDField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "invoices"


PAYMENT_METHODS = ("Cash", "Transfer", "Card", "Check")


class Payment(models.Model):
    id = fields.IntField(pk=True)
    invoice = fields.ForeignKeyField("models.Invoice", related_name="payments", on_delete=fields.RESTRICT, index=True)
    payment_date = fields.DateField(index=True)
    amount = fields.DecimalField(max_digits=12, decimal_places=2)  # applied to the balance
    tendered = fields.DecimalField(max_digits=12, decimal_places=2)
    change = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    method = fields.CharField(max_length=16, default="Cash")
    comment = fields.TextField(null=True)
    modified_by = fields.UUIDField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "payments"


class ChangeLogEntry(models.Model):
    id = fields.IntField(pk=True)
    table_name = fields.CharField(max_length=64, index=True)
    operation = fields.CharField(max_length=8)  # INSERT / UPDATE
    record_id = fields.IntField(index=True)
    modified_by = fields.UUIDField(null=True)
    changes = fields.JSONField(default=dict)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "change_log"


# ========================
# Balance/status derivation for invoices
# ========================
def derive_invoice_status(total: Decimal, balance: Decimal) -> str:
    if balance <= 0:
        return INVOICE_PAID
    if balance >= total:
        return INVOICE_PENDING
    return INVOICE_PARTIALLY_PAID


async def recompute_invoice_balance(invoice_id: int) -> Decimal:
    """Balance is total minus every applied payment, floored at zero."""
    invoice = await Invoice.get(id=invoice_id)
    applied = await Payment.filter(invoice_id=invoice_id).values_list("amount", flat=True)
    paid = sum((Decimal(str(a)) for a in applied), Decimal("0"))
    balance = max(to_money(Decimal(str(invoice.total)) - paid), Decimal("0.00"))
    await Invoice.filter(id=invoice_id).update(
        balance=balance,
        status=derive_invoice_status(Decimal(str(invoice.total)), balance),
    )
    return balance


@pre_save(Payment)
async def _payment_within_balance(sender, instance: Payment, using_db, update_fields) -> None:
    # the row lock holds only inside a transaction; PaymentApplier opens one
    if instance.pk is not None:
        return
    invoice = await Invoice.filter(id=instance.invoice_id).select_for_update().using_db(using_db).first()
    if invoice is None:
        raise IntegrityError(f"invoice {instance.invoice_id} does not exist")
    if Decimal(str(instance.amount)) > Decimal(str(invoice.balance)):
        raise IntegrityError("payment amount exceeds invoice balance")


@post_save(Payment)
async def _payment_updates_invoice(sender, instance: Payment, created: bool, using_db, update_fields) -> None:
    if created:
        await recompute_invoice_balance(instance.invoice_id)
