"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field, model_validator
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Literal

from paydesk.domain import models as domain


# Sales


class SaleItemRequest(BaseModel):
    """One line of a sale; either a catalog product or a free-text item"""

    product_id: Optional[int] = Field(None, description="Catalog product, stock is consumed")
    product_name: Optional[str] = Field(None, description="Name for items outside the catalog")
    quantity: int = Field(..., gt=0)
    unit_price_cents: int = Field(..., ge=0, description="Unit price in cents")

    @model_validator(mode="after")
    def check_identifies_item(self):
        if self.product_id is None and not self.product_name:
            raise ValueError("product_id or product_name is required")
        return self


class SaleRequest(BaseModel):
    """Request body for POST /v1/sales"""

    customer_id: Optional[int] = None
    payment_type: Literal["cash", "installments", "credit", "mixed"] = "cash"
    items: List[SaleItemRequest] = Field(..., min_length=1)
    number_of_installments: Optional[int] = Field(None, gt=0)
    advance_installments: int = Field(0, ge=0)
    first_due_date: Optional[date] = None
    notes: Optional[str] = None
    period_type: Optional[Literal["monthly", "weekly"]] = Field(None, description="Plan cadence, monthly by default")
    payment_period: Optional[str] = Field(
        None, description="Payment window ('1 to 10' or '20 to 30') used when the customer has none"
    )


class SaleResponse(BaseModel):
    """Response for sale endpoints"""

    sale_id: int
    sale_number: str
    customer_id: Optional[int]
    total_cents: int
    payment_type: str
    payment_status: str
    number_of_installments: Optional[int] = None
    installment_amount_cents: Optional[int] = None
    advance_installments: int = 0
    period_type: Optional[str] = None

    @classmethod
    def from_domain(cls, sale: domain.Sale) -> "SaleResponse":
        return cls(
            sale_id=sale.id,
            sale_number=sale.sale_number,
            customer_id=sale.customer_id,
            total_cents=sale.total_cents,
            payment_type=sale.payment_type,
            payment_status=sale.payment_status,
            number_of_installments=sale.number_of_installments,
            installment_amount_cents=sale.installment_amount_cents,
            advance_installments=sale.advance_installments,
            period_type=sale.period_type,
        )


class RestockRequest(BaseModel):
    """Request body for POST /v1/products/{product_id}/restock"""

    quantity: int = Field(..., gt=0)


class ProductResponse(BaseModel):
    product_id: int
    name: str
    price_cents: int
    category: Optional[str]
    stock: Optional[int]


# Installments


class InstallmentSchema(BaseModel):
    """Single installment with its running totals"""

    installment_id: int
    sale_id: int
    installment_number: int
    due_date: date
    amount_cents: int
    paid_amount_cents: int
    balance_cents: int
    status: str
    paid_date: Optional[datetime] = None
    days_overdue: int = 0
    late_fee_cents: int = 0
    late_fee_applied: bool = False

    @classmethod
    def from_domain(cls, inst: domain.Installment) -> "InstallmentSchema":
        return cls(
            installment_id=inst.id,
            sale_id=inst.sale_id,
            installment_number=inst.installment_number,
            due_date=inst.due_date,
            amount_cents=inst.amount_cents,
            paid_amount_cents=inst.paid_amount_cents,
            balance_cents=inst.balance_cents,
            status=inst.status,
            paid_date=inst.paid_date,
            days_overdue=inst.days_overdue,
            late_fee_cents=inst.late_fee_cents,
            late_fee_applied=inst.late_fee_applied,
        )


class CreateInstallmentRequest(BaseModel):
    """Request body for POST /v1/sales/{sale_id}/installments"""

    installment_number: int = Field(..., gt=0)
    due_date: date
    amount_cents: int = Field(..., description="Installment amount in cents")


class PaymentRequest(BaseModel):
    """Request body for POST /v1/installments/{installment_id}/payments"""

    amount_cents: int = Field(..., description="Amount paid in cents")
    payment_method: str = "cash"
    payment_reference: Optional[str] = None
    enforce_sequence: Optional[bool] = Field(
        None, description="Reject payments while an earlier installment is unpaid; defaults to the service setting"
    )


class TransactionSchema(BaseModel):
    """Payment transaction record"""

    transaction_id: int
    sale_id: int
    installment_id: Optional[int]
    amount_cents: int
    payment_method: str
    payment_reference: Optional[str]
    transaction_date: datetime
    status: str

    @classmethod
    def from_domain(cls, tx: domain.PaymentTransaction) -> "TransactionSchema":
        return cls(
            transaction_id=tx.id,
            sale_id=tx.sale_id,
            installment_id=tx.installment_id,
            amount_cents=tx.amount_cents,
            payment_method=tx.payment_method,
            payment_reference=tx.payment_reference,
            transaction_date=tx.transaction_date,
            status=tx.status,
        )


class PaymentResponse(BaseModel):
    """Installment state after a payment or reversal, with the transaction involved"""

    installment: InstallmentSchema
    transaction: TransactionSchema


class LateFeeRequest(BaseModel):
    fee_cents: int = Field(..., description="Late fee in cents")


class RescheduleRequest(BaseModel):
    due_date: date


# Notifications


class NotificationSchema(BaseModel):
    """Persisted notification as listed to the operator"""

    notification_id: int
    message: str
    type: str
    category: str
    message_key: Optional[str]
    created_at: datetime
    read_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class EmitRequest(BaseModel):
    """Request body for POST /v1/notifications"""

    message: str = Field(..., min_length=1)
    type: Literal["alert", "attention", "reminder", "info"] = "info"
    message_key: Optional[str] = None


class DismissTodayRequest(BaseModel):
    """Archive today's notifications by key, or by exact message text"""

    message_key: Optional[str] = None
    message: Optional[str] = None

    @model_validator(mode="after")
    def check_selector(self):
        if not self.message_key and not self.message:
            raise ValueError("message_key or message is required")
        return self


class EventSchema(BaseModel):
    """Payload pushed when a notification is created"""

    id: int
    message: str
    type: str
    meta: Dict[str, Any]


class CountResponse(BaseModel):
    """Number of rows affected by a bulk notification operation"""

    count: int
