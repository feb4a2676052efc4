"""Recording and deleting sales together with their installment plans"""

import logging
from datetime import date, datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from paydesk.domain.exceptions import (
    InvalidAmountError,
    LedgerInconsistencyError,
    NotFoundError,
    StoreUnavailableError,
)
from paydesk.domain.installments import anchor_day_for_window, generate_installment_plan, normalize_payment_window
from paydesk.domain.ledger import apply_payment
from paydesk.domain.models import PAYMENT_TYPES, PERIOD_MONTHLY, PERIOD_TYPES, Product, Sale, SaleLine, TX_COMPLETED
from paydesk.infrastructure.database.repositories import (
    InstallmentRepository,
    PaymentTransactionRepository,
    ProductRepository,
    SaleRepository,
    installment_to_domain,
    product_to_domain,
    sale_to_domain,
)
from paydesk.infrastructure.observability.metrics import record_ledger_operation
from paydesk.services.notification_scheduler import NotificationScheduler
from paydesk.utils.date_utils import utcnow


class SalesService:
    """Sale + items + installments are written as one unit"""

    def __init__(
        self,
        session_factory: sessionmaker,
        scheduler: Optional[NotificationScheduler] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.scheduler = scheduler
        self.clock = clock

    def record_sale(
        self,
        customer_id: Optional[int],
        items: Sequence[SaleLine],
        payment_type: str,
        number_of_installments: Optional[int] = None,
        advance_installments: int = 0,
        first_due_date: Optional[date] = None,
        notes: Optional[str] = None,
        period_type: Optional[str] = None,
        payment_period: Optional[str] = None,
    ) -> Sale:
        """
        Persist a sale, its lines and (for installment sales) its plan.

        Flow:
        1. Validate customer, lines and plan shape
        2. Insert sale and items, consume stock
        3. Generate the plan; the last installment absorbs rounding. Monthly
           due dates land on the customer's payment window day (10 or 30),
           falling back to payment_period, which is then saved on the customer
        4. Pre-pay the first advance_installments with completed transactions
        5. Commit, then run the low-stock hook for the sold products

        Raises:
            NotFoundError: customer does not exist
            InvalidAmountError: empty sale, non-positive quantities or prices,
                an inconsistent installment count, or an unknown period type
                or payment period
        """
        if payment_type not in PAYMENT_TYPES:
            raise InvalidAmountError(f"Unknown payment type {payment_type!r}")
        if not items:
            raise InvalidAmountError("A sale needs at least one item")
        for line in items:
            if line.quantity <= 0 or line.unit_price_cents < 0:
                raise InvalidAmountError(f"Invalid line for product {line.product_id}")

        financed = payment_type == "installments"
        if financed:
            period_type = period_type or PERIOD_MONTHLY
            if period_type not in PERIOD_TYPES:
                raise InvalidAmountError(f"Unknown period type {period_type!r}")
            if payment_period is not None and normalize_payment_window(payment_period) is None:
                raise InvalidAmountError(f"Unknown payment period {payment_period!r}")
            if not number_of_installments or number_of_installments <= 0:
                raise InvalidAmountError("Installment sales need a positive number_of_installments")
            if advance_installments < 0 or advance_installments > number_of_installments:
                raise InvalidAmountError("advance_installments must be between 0 and number_of_installments")

        total_cents = sum(line.quantity * line.unit_price_cents for line in items)
        if total_cents <= 0:
            raise InvalidAmountError("Sale total must be positive")
        if financed and total_cents < number_of_installments:
            raise InvalidAmountError("Sale total is too small to split into the requested installments")

        now = self.clock()
        db = self.session_factory()
        try:
            sales = SaleRepository(db)
            products = ProductRepository(db)
            customer = sales.get_customer(customer_id) if customer_id is not None else None
            if customer_id is not None and customer is None:
                raise NotFoundError(f"Customer {customer_id} not found")

            db_sale = sales.create_sale(
                customer_id=customer_id,
                total_cents=total_cents,
                payment_type=payment_type,
                payment_status="paid" if payment_type == "cash" else "unpaid",
                number_of_installments=number_of_installments if financed else None,
                installment_amount_cents=total_cents // number_of_installments if financed else None,
                advance_installments=advance_installments if financed else 0,
                now=now,
                notes=notes,
                period_type=period_type if financed else None,
            )

            sold_product_ids: List[int] = []
            for line in items:
                product_name = line.product_name
                if line.product_id is not None:
                    product = products.get(line.product_id)
                    if product is None:
                        raise NotFoundError(f"Product {line.product_id} not found")
                    product_name = product.name
                    products.decrement_stock(product, line.quantity)
                    sold_product_ids.append(product.id)
                sales.add_item(db_sale.id, line, product_name or "Uncatalogued product")

            if financed:
                window = normalize_payment_window(customer.payment_window) if customer is not None else None
                if window is None and payment_period is not None:
                    window = normalize_payment_window(payment_period)
                    if customer is not None:
                        customer.payment_window = window
                self._create_plan(
                    db,
                    db_sale.id,
                    total_cents,
                    number_of_installments,
                    advance_installments,
                    first_due_date,
                    now,
                    anchor_day=anchor_day_for_window(window),
                    period_type=period_type,
                )

            db.commit()
            sale = sale_to_domain(db_sale)
        except IntegrityError as e:
            db.rollback()
            raise LedgerInconsistencyError(f"Sale violates a store constraint: {e.orig}") from e
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailableError(f"Recording sale failed in the store: {e}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        record_ledger_operation("record_sale")
        logging.info(
            "Sale recorded",
            extra={"sale_id": sale.id, "payment_type": payment_type, "total_cents": total_cents},
        )

        if self.scheduler is not None and sold_product_ids:
            self.scheduler.check_low_stock(sold_product_ids)
        return sale

    def _create_plan(
        self,
        db: Session,
        sale_id: int,
        total_cents: int,
        number_of_installments: int,
        advance_installments: int,
        first_due_date: Optional[date],
        now: datetime,
        anchor_day: Optional[int] = None,
        period_type: Optional[str] = None,
    ) -> None:
        installments = InstallmentRepository(db)
        transactions = PaymentTransactionRepository(db)
        plan = generate_installment_plan(
            total_cents,
            number_of_installments,
            first_due_date=first_due_date,
            anchor_day=anchor_day,
            today=now.date(),
            period_type=period_type,
        )
        for scheduled in plan:
            row = installments.add(sale_id, scheduled.installment_number, scheduled.due_date, scheduled.amount_cents, now)
            if scheduled.installment_number <= advance_installments:
                state = apply_payment(installment_to_domain(row), scheduled.amount_cents, now)
                installments.save(row, state, now)
                transactions.create_transaction(
                    sale_id=sale_id,
                    installment_id=row.id,
                    amount_cents=scheduled.amount_cents,
                    payment_method="cash",
                    payment_reference="Advance installment",
                    transaction_date=now,
                    status=TX_COMPLETED,
                )

        if advance_installments:
            sale = SaleRepository(db).get(sale_id)
            sale.payment_status = "paid" if advance_installments == number_of_installments else "partial"

    def get_sale(self, sale_id: int) -> Sale:
        with self.session_factory() as db:
            row = SaleRepository(db).get(sale_id)
            if row is None:
                raise NotFoundError(f"Sale {sale_id} not found")
            return sale_to_domain(row)

    def delete_sale(self, sale_id: int) -> None:
        """Cascade delete: the sale's installments and payment transactions go too"""
        with self.session_factory() as db:
            sales = SaleRepository(db)
            row = sales.get(sale_id)
            if row is None:
                raise NotFoundError(f"Sale {sale_id} not found")
            try:
                sales.delete(row)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreUnavailableError(f"Deleting sale {sale_id} failed: {e}") from e
        record_ledger_operation("delete_sale")
        logging.info("Sale deleted", extra={"sale_id": sale_id})

    def restock(self, product_id: int, quantity: int) -> Product:
        """Add stock; bumps updated_at, which re-arms the low-stock alert"""
        if quantity <= 0:
            raise InvalidAmountError(f"Restock quantity must be positive, got {quantity}")
        with self.session_factory() as db:
            products = ProductRepository(db)
            row = products.get(product_id)
            if row is None:
                raise NotFoundError(f"Product {product_id} not found")
            products.restock(row, quantity, self.clock())
            db.commit()
            return product_to_domain(row)
