"""Installment plan generation and scheduling rules for financed sales"""

from datetime import date, timedelta
from typing import List, Optional, Sequence, Tuple

from paydesk.domain.models import (
    Installment,
    PERIOD_WEEKLY,
    ScheduledPayment,
    STATUS_PAID,
    WINDOW_EARLY,
    WINDOW_LATE,
)
from paydesk.utils.date_utils import add_months

# Spellings accepted from older records and the sale form
_WINDOW_ALIASES = {
    "1 to 10": WINDOW_EARLY,
    "1 a 10": WINDOW_EARLY,
    "1 al 10": WINDOW_EARLY,
    "10 to 20": WINDOW_EARLY,
    "10 a 20": WINDOW_EARLY,
    "10-20": WINDOW_EARLY,
    "20 to 30": WINDOW_LATE,
    "20 a 30": WINDOW_LATE,
    "20 al 30": WINDOW_LATE,
}

_WINDOW_ANCHOR_DAYS = {WINDOW_EARLY: 10, WINDOW_LATE: 30}


def normalize_payment_window(value: Optional[str]) -> Optional[str]:
    """Canonical window name, or None when the value is not a known window"""
    if not value:
        return None
    return _WINDOW_ALIASES.get(value.strip())


def anchor_day_for_window(window: Optional[str]) -> Optional[int]:
    """Last day of the payment window: '1 to 10' → 10, '20 to 30' → 30"""
    return _WINDOW_ANCHOR_DAYS.get(normalize_payment_window(window))


def generate_installment_plan(
    amount_cents: int,
    num_installments: int,
    first_due_date: date | None = None,
    anchor_day: int | None = None,
    today: date | None = None,
    period_type: str | None = None,
) -> List[ScheduledPayment]:
    """
    Generate equal installments for a financed sale.

    Requirements:
    - Monthly plans: one installment per calendar month starting at
      first_due_date, every due date on the anchor day, clamped to short months
    - Weekly plans: one installment every 7 days starting at first_due_date;
      the anchor day does not apply
    - Last installment absorbs rounding remainder so the plan sums to the sale total

    Args:
        amount_cents: Total amount to split into installments
        num_installments: Number of payments
        first_due_date: First due date (default: one period after today,
            on the anchor day for monthly plans)
        anchor_day: Day of month for monthly due dates (default: first_due_date's day)
        today: Reference date used when first_due_date is omitted
        period_type: "monthly" (default) or "weekly"

    Returns:
        List of ScheduledPayment numbered from 1

    Example:
        $1000.01 in 3 → [$333.33, $333.33, $333.35]
        100001 cents / 3 = 33333 base, remainder 2
        Last installment: 33333 + 2 = 33335
    """
    if amount_cents <= 0 or num_installments <= 0:
        return []

    weekly = period_type == PERIOD_WEEKLY
    if first_due_date is None:
        start = today or date.today()
        first_due_date = start + timedelta(weeks=1) if weekly else add_months(start, 1, anchor_day)
    if anchor_day is None:
        anchor_day = first_due_date.day

    base_amount = amount_cents // num_installments
    remainder = amount_cents % num_installments

    plan = []
    for i in range(num_installments):
        if i == 0:
            due_date = first_due_date
        elif weekly:
            due_date = first_due_date + timedelta(weeks=i)
        else:
            due_date = add_months(first_due_date, i, anchor_day)
        amount = base_amount + (remainder if i == num_installments - 1 else 0)
        plan.append(ScheduledPayment(installment_number=i + 1, due_date=due_date, amount_cents=amount))

    return plan


def validate_sequential_payment(sale_installments: Sequence[Installment], target_number: int) -> bool:
    """False when any earlier installment of the same sale is not paid (cancelled ones included)"""
    return not any(
        inst.status != STATUS_PAID and inst.installment_number < target_number
        for inst in sale_installments
    )


def schedule_next_pending_monthly(
    sale_installments: Sequence[Installment],
) -> Optional[Tuple[int, date]]:
    """
    Roll the next unpaid installment to one month after the latest payment.

    The installment keeps its original day of month (anchor), clamped to the
    length of the target month. Calculation only: persisting the new due date
    is the caller's job.

    Returns:
        (installment_id, new_due_date), or None when nothing has been paid
        yet or nothing is left to pay
    """
    paid_dates = [
        inst.paid_date
        for inst in sale_installments
        if inst.status == STATUS_PAID and inst.paid_date is not None
    ]
    if not paid_dates:
        return None

    pending = sorted(
        (inst for inst in sale_installments if inst.status != STATUS_PAID),
        key=lambda inst: inst.installment_number,
    )
    if not pending or pending[0].id is None:
        return None

    next_pending = pending[0]
    last_paid = max(paid_dates).date()
    new_due = add_months(last_paid, 1, next_pending.due_date.day)
    return next_pending.id, new_due
