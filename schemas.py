import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, Literal, Dict, List, Any
from pydantic import BaseModel, EmailStr, ConfigDict, Field


# =========================
# Auth
# =========================
class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserCreate(BaseModel):
    username: str
    email: EmailStr
    password: str


class UserUpdate(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None


class UserRead(BaseModel):
    id: uuid.UUID
    username: str
    email: EmailStr
    disabled: bool
    is_admin: bool
    model_config = ConfigDict(from_attributes=True)


# =========================
# Tariffs
# =========================
class TariffCreate(BaseModel):
    name: str
    description: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None


class TariffUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class TariffRangeIn(BaseModel):
    # everything optional so the engine reports missing bounds itself
    id: Optional[int] = None
    min_consumption: Optional[int] = None
    max_consumption: Optional[int] = None  # None = open-ended top tier
    price_per_unit: Optional[Decimal] = None


class TariffRangeBatch(BaseModel):
    ranges: List[TariffRangeIn]


class TariffRangeRead(BaseModel):
    id: int
    min_consumption: int
    max_consumption: Optional[int] = None
    price_per_unit: Decimal
    model_config = ConfigDict(from_attributes=True)


class TariffRead(TariffCreate):
    id: int
    ranges: List[TariffRangeRead] = []
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class TariffRangeHistoryRead(BaseModel):
    id: int
    tariff_id: int
    tariff_range_id: int
    min_consumption: int
    max_consumption: Optional[int] = None
    previous_price: Decimal
    new_price: Decimal
    modified_by: Optional[uuid.UUID] = None
    changed_at: datetime
    model_config = ConfigDict(from_attributes=True)


class RangesProcessed(BaseModel):
    tariff_id: int
    processed: int


# =========================
# Customers, meters, routes
# =========================
CustomerStatus = Literal["Active", "Inactive"]
MeterStatus = Literal["Active", "Inactive", "Retired", "NotInstalled"]


class CustomerCreate(BaseModel):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    email: Optional[EmailStr] = None
    status: CustomerStatus = "Active"
    tariff_id: Optional[int] = None


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    email: Optional[EmailStr] = None
    status: Optional[CustomerStatus] = None
    tariff_id: Optional[int] = None
    assign_meters: List[int] = Field(default_factory=list)
    release_meters: List[int] = Field(default_factory=list)


class CustomerRead(BaseModel):
    id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    email: Optional[str] = None
    status: str
    tariff_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class CustomerDetail(CustomerRead):
    meter_ids: List[int] = []
    changes: Dict[str, Any] = {}


class MeterCreate(BaseModel):
    serial_number: str
    customer_id: Optional[int] = None
    location: Optional[str] = None
    installed_on: Optional[date] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: MeterStatus = "Active"


class MeterRead(MeterCreate):
    id: int
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class RouteCreate(BaseModel):
    name: str
    description: Optional[str] = None
    meter_ids: List[int] = Field(default_factory=list)  # visiting order


class RoutePointRead(BaseModel):
    position: int
    meter_id: int
    model_config = ConfigDict(from_attributes=True)


class RouteRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    points: List[RoutePointRead] = []
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# =========================
# Readings
# =========================
class ReadingCreate(BaseModel):
    meter_id: int
    route_id: int
    consumption: Decimal
    reading_date: date
    period: str  # YYYY-MM


class ReadingRead(BaseModel):
    id: int
    meter_id: int
    route_id: int
    consumption: Decimal
    reading_date: date
    period: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class InvoiceSummary(BaseModel):
    invoice_id: int
    reading_id: int
    customer_id: int
    total: Decimal
    due_date: date


class ReadingRegistered(BaseModel):
    reading: Dict[str, Any]
    invoice: Optional[InvoiceSummary] = None
    warning: Optional[str] = None


# =========================
# Invoices
# =========================
InvoiceStatus = Literal["Pending", "PartiallyPaid", "Paid"]


class InvoiceGenerate(BaseModel):
    reading_id: int
    customer_id: int
    tariff_id: int
    consumption: Decimal
    emission_date: date


class InvoiceBackfill(BaseModel):
    period: str
    emission_date: Optional[date] = None  # defaults to today


class InvoiceCorrection(BaseModel):
    status: Optional[InvoiceStatus] = None
    total: Optional[Decimal] = None


class InvoiceRead(BaseModel):
    id: int
    reading_id: int
    customer_id: int
    tariff_id: int
    emission_date: date
    due_date: date
    total: Decimal
    balance: Decimal
    status: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class InvoiceStatement(BaseModel):
    id: int
    reading_id: int
    period: str
    consumption: Decimal
    customer_id: int
    customer_name: str
    customer_address: Optional[str] = None
    tariff_id: int
    tariff_name: str
    meter_id: int
    meter_serial: str
    route_id: int
    route_name: str
    emission_date: date
    due_date: date
    total: Decimal
    balance: Decimal
    status: str
    previous_period: str
    previous_consumption: Optional[Decimal] = None
    previous_debt: Decimal


class BackfillItem(BaseModel):
    reading_id: int
    customer_id: int
    customer_name: str
    meter_serial: str
    consumption: Decimal
    outcome: Literal["created", "failed"]
    invoice_id: Optional[int] = None
    total: Optional[Decimal] = None
    error: Optional[str] = None


class BackfillReport(BaseModel):
    period: str
    total: int
    succeeded: int
    failed: int
    message: str
    items: List[BackfillItem] = []


# =========================
# Payments
# =========================
PaymentMethod = Literal["Cash", "Transfer", "Card", "Check"]


class PaymentCreate(BaseModel):
    invoice_id: int
    payment_date: date
    amount: Decimal  # tendered
    method: PaymentMethod = "Cash"
    comment: Optional[str] = None


class PaymentApplied(BaseModel):
    payment_id: int
    invoice_id: int
    applied: Decimal
    change: Decimal


class PaymentRead(BaseModel):
    id: int
    invoice_id: int
    payment_date: date
    amount: Decimal
    tendered: Decimal
    change: Decimal
    method: str
    comment: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# =========================
# Audit & dashboard
# =========================
class ChangeLogRead(BaseModel):
    id: int
    table_name: str
    operation: str
    record_id: int
    modified_by: Optional[uuid.UUID] = None
    changes: Dict[str, Any]
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class PeriodMetrics(BaseModel):
    period: str
    readings: int
    consumption: Decimal
    invoices: int
    invoices_by_status: Dict[str, int]
    billed_total: Decimal
    outstanding_total: Decimal
    payments_total: Decimal
    active_customers: int
    unassigned_meters: int
