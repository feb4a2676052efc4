"""Installment state transitions - pure calculations behind every ledger operation"""

from dataclasses import replace
from datetime import date, datetime
from typing import Iterable

from paydesk.domain.exceptions import (
    InstallmentCancelledError,
    InvalidAmountError,
    LedgerInconsistencyError,
)
from paydesk.domain.models import (
    Installment,
    PaymentTransaction,
    STATUS_CANCELLED,
    STATUS_PAID,
    STATUS_PARTIAL,
    STATUS_PENDING,
    TX_COMPLETED,
)
from paydesk.utils.date_utils import days_between


def derive_status(amount_cents: int, paid_amount_cents: int) -> str:
    """
    Payment-derived status.

    - balance <= 0 → paid
    - some money received → partial
    - nothing received → pending (lateness is read from due_date, not stored)
    """
    if amount_cents - paid_amount_cents <= 0:
        return STATUS_PAID
    if paid_amount_cents > 0:
        return STATUS_PARTIAL
    return STATUS_PENDING


def _ensure_open(installment: Installment) -> None:
    if installment.status == STATUS_CANCELLED:
        raise InstallmentCancelledError(f"Installment {installment.id} is cancelled")


def apply_payment(installment: Installment, amount_cents: int, now: datetime) -> Installment:
    """
    Apply a payment and return the updated installment.

    Raises:
        InvalidAmountError: amount is non-positive or larger than the balance
        InstallmentCancelledError: installment is cancelled
    """
    _ensure_open(installment)
    if amount_cents <= 0:
        raise InvalidAmountError(f"Payment amount must be positive, got {amount_cents}")
    if amount_cents > installment.balance_cents:
        raise InvalidAmountError(
            f"Payment of {amount_cents} exceeds remaining balance {installment.balance_cents}"
        )

    new_paid = installment.paid_amount_cents + amount_cents
    new_balance = installment.amount_cents - new_paid
    new_status = STATUS_PAID if new_balance <= 0 else STATUS_PARTIAL
    paid_date = installment.paid_date
    if new_status == STATUS_PAID and paid_date is None:
        paid_date = now

    return replace(
        installment,
        paid_amount_cents=new_paid,
        balance_cents=new_balance,
        status=new_status,
        paid_date=paid_date,
    )


def revert_payment(installment: Installment, transaction: PaymentTransaction) -> Installment:
    """
    Take a completed transaction's amount back out of the installment.

    Raises:
        InstallmentCancelledError: installment is cancelled
        LedgerInconsistencyError: the reversal would leave a negative paid amount
    """
    _ensure_open(installment)
    new_paid = installment.paid_amount_cents - transaction.amount_cents
    if new_paid < 0:
        raise LedgerInconsistencyError(
            f"Reverting transaction {transaction.id} would leave installment "
            f"{installment.id} with paid amount {new_paid}"
        )

    new_balance = installment.amount_cents - new_paid
    if new_balance <= 0:
        new_status = STATUS_PAID
    elif new_paid == 0:
        new_status = STATUS_PENDING
    else:
        new_status = STATUS_PARTIAL

    return replace(
        installment,
        paid_amount_cents=new_paid,
        balance_cents=new_balance,
        status=new_status,
        paid_date=installment.paid_date if new_status == STATUS_PAID else None,
    )


def mark_paid(installment: Installment, now: datetime) -> Installment:
    _ensure_open(installment)
    return replace(
        installment,
        paid_amount_cents=installment.amount_cents,
        balance_cents=0,
        status=STATUS_PAID,
        paid_date=installment.paid_date or now,
    )


def apply_late_fee(installment: Installment, fee_cents: int) -> Installment:
    """
    Add a late fee to what is owed.

    A fee on a settled installment reopens its balance; the status is
    re-derived from the payments, so a paid installment becomes partial.
    The original paid_date is kept.
    """
    _ensure_open(installment)
    if fee_cents <= 0:
        raise InvalidAmountError(f"Late fee must be positive, got {fee_cents}")

    new_amount = installment.amount_cents + fee_cents
    return replace(
        installment,
        amount_cents=new_amount,
        balance_cents=new_amount - installment.paid_amount_cents,
        status=derive_status(new_amount, installment.paid_amount_cents),
        late_fee_cents=installment.late_fee_cents + fee_cents,
        late_fee_applied=True,
    )


def with_days_overdue(installment: Installment, today: date) -> Installment:
    """Refresh days_overdue; settled installments are never late"""
    if installment.status in (STATUS_PAID, STATUS_CANCELLED):
        days = 0
    else:
        days = days_between(installment.due_date, today)
    return replace(installment, days_overdue=days)


def completed_total(transactions: Iterable[PaymentTransaction]) -> int:
    """Sum of completed transaction amounts - must equal the installment's paid amount"""
    return sum(t.amount_cents for t in transactions if t.status == TX_COMPLETED)


def sale_payment_status(installments: Iterable[Installment]) -> str:
    """Roll installment states up into the sale's payment_status"""
    open_items = [i for i in installments if i.status != STATUS_CANCELLED]
    if open_items and all(i.status == STATUS_PAID for i in open_items):
        return "paid"
    if any(i.paid_amount_cents > 0 for i in open_items):
        return "partial"
    return "unpaid"
