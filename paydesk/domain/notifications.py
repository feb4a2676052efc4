"""Semantic keys, message text and presentation mapping for notifications"""

from datetime import date
from typing import Optional, Sequence

from paydesk.domain.models import NOTIFICATION_REMINDER, Product

OVERDUE_PREFIX = "overdue|"
UPCOMING_PREFIX = "upcoming|"
STOCK_LOW_PREFIX = "stock_low|"
WEEKLY_PRECHECK_PREFIX = "weekly_precheck|"

# Weekly plans are reviewed on these days of the month; the reminder goes out the day before
WEEKLY_CYCLE_DAYS = (1, 15)

CATEGORY_CLIENT = "client"
CATEGORY_STOCK = "stock"
CATEGORY_SYSTEM = "system"


def overdue_key(installment_id: int) -> str:
    return f"{OVERDUE_PREFIX}{installment_id}"


def upcoming_key(installment_id: int) -> str:
    return f"{UPCOMING_PREFIX}{installment_id}"


def stock_low_key(product_id: int) -> str:
    return f"{STOCK_LOW_PREFIX}{product_id}"


def weekly_precheck_key(cycle_date: date) -> str:
    return f"{WEEKLY_PRECHECK_PREFIX}summary|{cycle_date.isoformat()}"


def format_cents(amount_cents: int) -> str:
    """12345678 → '$ 123,456.78'"""
    sign = "-" if amount_cents < 0 else ""
    whole, cents = divmod(abs(amount_cents), 100)
    return f"{sign}$ {whole:,}.{cents:02d}"


def overdue_message(customer_name: str, due_date: date, balance_cents: int) -> str:
    return f"Overdue installment: {customer_name}, due {due_date.isoformat()}, balance {format_cents(balance_cents)}"


def upcoming_message(customer_name: str, due_date: date, balance_cents: int) -> str:
    return f"Installment due soon: {customer_name}, due {due_date.isoformat()}, balance {format_cents(balance_cents)}"


def stock_low_message(product: Product) -> str:
    units = product.stock or 0
    message = f"Low stock: {product.name}, {units} unit{'' if units == 1 else 's'} left, {format_cents(product.price_cents)}"
    if product.category:
        message += f", {product.category}"
    return message


def weekly_precheck_message(cycle_day: int, customer_names: Sequence[str]) -> str:
    """Summary naming the first three customers: '..., Ana, Luis, Marta and +2'"""
    label = "1st" if cycle_day == 1 else f"{cycle_day}th"
    message = f"Reminder (weekly): tomorrow is the {label} of the month, check payments: {', '.join(customer_names[:3])}"
    extras = len(customer_names) - 3
    if extras > 0:
        message += f" and +{extras}"
    return message


def derive_category(message_key: Optional[str]) -> str:
    """Category comes from the key namespace"""
    if message_key:
        if message_key.startswith((OVERDUE_PREFIX, UPCOMING_PREFIX, WEEKLY_PRECHECK_PREFIX)):
            return CATEGORY_CLIENT
        if message_key.startswith(STOCK_LOW_PREFIX):
            return CATEGORY_STOCK
    return CATEGORY_SYSTEM


def to_ui_type(db_type: str) -> str:
    # Reminders are rendered as "attention" by the presentation layer
    return "attention" if db_type == NOTIFICATION_REMINDER else db_type


def to_db_type(ui_type: str) -> str:
    return NOTIFICATION_REMINDER if ui_type == "attention" else ui_type
