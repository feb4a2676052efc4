"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional

from paydesk.domain.exceptions import LedgerInconsistencyError

# Installment status
STATUS_PENDING = "pending"
STATUS_PARTIAL = "partial"
STATUS_PAID = "paid"
STATUS_OVERDUE = "overdue"
STATUS_CANCELLED = "cancelled"

# Payment transaction status
TX_PENDING = "pending"
TX_COMPLETED = "completed"
TX_FAILED = "failed"
TX_CANCELLED = "cancelled"

PAYMENT_METHODS = ("cash", "credit_card", "debit_card", "bank_transfer", "check")
PAYMENT_TYPES = ("cash", "installments", "credit", "mixed")

# Installment plan cadence
PERIOD_MONTHLY = "monthly"
PERIOD_WEEKLY = "weekly"
PERIOD_TYPES = (PERIOD_MONTHLY, PERIOD_WEEKLY)

# Customer payment windows; due dates land on the last day of the window
WINDOW_EARLY = "1 to 10"
WINDOW_LATE = "20 to 30"
PAYMENT_WINDOWS = (WINDOW_EARLY, WINDOW_LATE)

# Notification types as stored
NOTIFICATION_ALERT = "alert"
NOTIFICATION_REMINDER = "reminder"
NOTIFICATION_INFO = "info"
NOTIFICATION_TYPES = (NOTIFICATION_ALERT, NOTIFICATION_REMINDER, NOTIFICATION_INFO)


@dataclass(frozen=True)
class Installment:
    """One scheduled obligation within a sale"""

    id: Optional[int]
    sale_id: int
    installment_number: int
    due_date: date
    amount_cents: int
    paid_amount_cents: int = 0
    balance_cents: int = 0
    status: str = STATUS_PENDING
    paid_date: Optional[datetime] = None
    days_overdue: int = 0
    late_fee_cents: int = 0
    late_fee_applied: bool = False
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if self.balance_cents != self.amount_cents - self.paid_amount_cents:
            raise LedgerInconsistencyError(
                f"Installment {self.id}: balance {self.balance_cents} != "
                f"amount {self.amount_cents} - paid {self.paid_amount_cents}"
            )
        if self.balance_cents < 0:
            raise LedgerInconsistencyError(f"Installment {self.id}: negative balance {self.balance_cents}")


@dataclass(frozen=True)
class ScheduledPayment:
    """Planned installment before it is persisted"""

    installment_number: int
    due_date: date
    amount_cents: int


@dataclass(frozen=True)
class PaymentTransaction:
    """Immutable record of money applied to (or reversed from) an installment"""

    id: Optional[int]
    sale_id: int
    installment_id: Optional[int]
    amount_cents: int
    payment_method: str
    payment_reference: Optional[str]
    transaction_date: datetime
    status: str = TX_COMPLETED


@dataclass(frozen=True)
class Sale:
    """Cash or financed sale"""

    id: int
    customer_id: Optional[int]
    sale_number: str
    total_cents: int
    payment_type: str
    payment_status: str
    number_of_installments: Optional[int] = None
    installment_amount_cents: Optional[int] = None
    advance_installments: int = 0
    period_type: Optional[str] = None


@dataclass(frozen=True)
class SaleLine:
    """Product line requested when recording a sale"""

    product_id: Optional[int]
    quantity: int
    unit_price_cents: int
    product_name: Optional[str] = None


@dataclass(frozen=True)
class Product:
    """Catalog product as seen by the low-stock hook"""

    id: int
    name: str
    price_cents: int
    category: Optional[str]
    stock: Optional[int]
    updated_at: Optional[datetime]


@dataclass(frozen=True)
class NotificationRecord:
    """Persisted operational alert"""

    id: int
    message: str
    type: str
    message_key: Optional[str]
    created_at: datetime
    read_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None


@dataclass(frozen=True)
class DueInstallment:
    """Installment row joined with its customer, as read by the scheduler scans"""

    installment_id: Optional[int]
    sale_id: int
    installment_number: int
    customer_name: Optional[str]
    due_date: date
    balance_cents: int


@dataclass
class NotificationEvent:
    """Payload pushed to the presentation layer when a notification is created"""

    id: int
    message: str
    type: str
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "message": self.message, "type": self.type, "meta": dict(self.meta)}
