"""
Installment ledger: payments, reversals, late fees and rescheduling.

Every public operation is one unit of work: open a session, re-read the
rows it touches, compute the new state with the pure rules in
paydesk.domain.ledger, and commit once. The installment update and its
payment transaction are written in the same commit, so a failure leaves
nothing behind. No balances are cached between calls.
"""

from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Iterator, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from paydesk.domain import ledger as rules
from paydesk.domain.exceptions import (
    InvalidAmountError,
    InvalidPaymentMethodError,
    LedgerError,
    LedgerInconsistencyError,
    NotFoundError,
    StoreUnavailableError,
)
from paydesk.domain.installments import schedule_next_pending_monthly
from paydesk.domain.models import (
    Installment,
    PAYMENT_METHODS,
    PaymentTransaction,
    STATUS_CANCELLED,
    TX_CANCELLED,
    TX_COMPLETED,
)
from paydesk.infrastructure.database import models as orm
from paydesk.infrastructure.database.repositories import (
    InstallmentRepository,
    PaymentTransactionRepository,
    SaleRepository,
    installment_to_domain,
    transaction_to_domain,
)
from paydesk.infrastructure.observability.logging import log_ledger_operation
from paydesk.infrastructure.observability.metrics import record_ledger_error, record_ledger_operation
from paydesk.utils.date_utils import utcnow


class InstallmentLedger:
    """Applies money movements to installments while keeping balance == amount - paid"""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    @contextmanager
    def _unit_of_work(self, operation: str) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except LedgerError as e:
            db.rollback()
            record_ledger_error(operation, e)
            raise
        except IntegrityError as e:
            db.rollback()
            error = LedgerInconsistencyError(f"{operation} violates a store constraint: {e.orig}")
            record_ledger_error(operation, error)
            raise error from e
        except SQLAlchemyError as e:
            db.rollback()
            error = StoreUnavailableError(f"{operation} failed in the store: {e}")
            record_ledger_error(operation, error)
            raise error from e
        finally:
            db.close()

    def _load(self, db: Session, installment_id: int) -> orm.Installment:
        row = InstallmentRepository(db).get(installment_id, for_update=True)
        if row is None:
            raise NotFoundError(f"Installment {installment_id} not found")
        return row

    def _persist(self, db: Session, row: orm.Installment, state: Installment, now: datetime) -> Installment:
        state = rules.with_days_overdue(state, now.date())
        InstallmentRepository(db).save(row, state, now)
        db.flush()
        self._refresh_sale_status(db, row.sale_id, now)
        return state

    def _refresh_sale_status(self, db: Session, sale_id: int, now: datetime) -> None:
        sale = SaleRepository(db).get(sale_id)
        if sale is None or sale.payment_type == "cash":
            return
        installments = [installment_to_domain(r) for r in InstallmentRepository(db).list_by_sale(sale_id)]
        if not installments:
            return
        status = rules.sale_payment_status(installments)
        if sale.payment_status != status:
            sale.payment_status = status
            sale.updated_at = now

    # Reads

    def get_installment(self, installment_id: int) -> Installment:
        with self._unit_of_work("get_installment") as db:
            return installment_to_domain(self._load(db, installment_id))

    def list_by_sale(self, sale_id: int) -> List[Installment]:
        with self._unit_of_work("list_by_sale") as db:
            if SaleRepository(db).get(sale_id) is None:
                raise NotFoundError(f"Sale {sale_id} not found")
            return [installment_to_domain(r) for r in InstallmentRepository(db).list_by_sale(sale_id)]

    def list_transactions(self, installment_id: int) -> List[PaymentTransaction]:
        with self._unit_of_work("list_transactions") as db:
            self._load(db, installment_id)
            rows = PaymentTransactionRepository(db).list_by_installment(installment_id)
            return [transaction_to_domain(r) for r in rows]

    # Mutations

    def create_installment(self, sale_id: int, installment_number: int, due_date: date, amount_cents: int) -> Installment:
        if amount_cents <= 0:
            raise InvalidAmountError(f"Installment amount must be positive, got {amount_cents}")

        now = self.clock()
        with self._unit_of_work("create_installment") as db:
            if SaleRepository(db).get(sale_id) is None:
                raise NotFoundError(f"Sale {sale_id} not found")
            row = InstallmentRepository(db).add(sale_id, installment_number, due_date, amount_cents, now)
            self._refresh_sale_status(db, sale_id, now)
            created = installment_to_domain(row)

        record_ledger_operation("create_installment")
        log_ledger_operation("create_installment", created.id, created.status, created.balance_cents, amount_cents)
        return created

    def record_payment(
        self,
        installment_id: int,
        amount_cents: int,
        method: str = "cash",
        reference: Optional[str] = None,
    ) -> Tuple[Installment, PaymentTransaction]:
        """
        Apply a payment and append its completed transaction in one commit.

        Raises:
            NotFoundError: installment does not exist
            InvalidAmountError: amount <= 0 or larger than the remaining balance
            InvalidPaymentMethodError: unknown payment method
            InstallmentCancelledError: installment was cancelled
        """
        if method not in PAYMENT_METHODS:
            raise InvalidPaymentMethodError(f"Unsupported payment method {method!r}")

        now = self.clock()
        with self._unit_of_work("record_payment") as db:
            row = self._load(db, installment_id)
            state = rules.apply_payment(installment_to_domain(row), amount_cents, now)
            state = self._persist(db, row, state, now)
            tx_row = PaymentTransactionRepository(db).create_transaction(
                sale_id=row.sale_id,
                installment_id=row.id,
                amount_cents=amount_cents,
                payment_method=method,
                payment_reference=reference,
                transaction_date=now,
                status=TX_COMPLETED,
            )
            transaction = transaction_to_domain(tx_row)

        record_ledger_operation("record_payment", amount_cents)
        log_ledger_operation("record_payment", installment_id, state.status, state.balance_cents, amount_cents, transaction.id)
        return state, transaction

    def mark_as_paid(self, installment_id: int) -> Installment:
        """Manual reconciliation: settle the installment without a transaction record"""
        now = self.clock()
        with self._unit_of_work("mark_as_paid") as db:
            row = self._load(db, installment_id)
            state = self._persist(db, row, rules.mark_paid(installment_to_domain(row), now), now)

        record_ledger_operation("mark_as_paid")
        log_ledger_operation("mark_as_paid", installment_id, state.status, state.balance_cents)
        return state

    def revert_payment(self, installment_id: int, transaction_id: int) -> Tuple[Installment, PaymentTransaction]:
        """
        Reverse a completed payment of this installment; the transaction is
        kept and marked cancelled.

        Raises:
            NotFoundError: installment missing, or transaction missing, not
                completed, or belonging to another installment
            InstallmentCancelledError: installment is cancelled
            LedgerInconsistencyError: paid amount would go negative
        """
        now = self.clock()
        with self._unit_of_work("revert_payment") as db:
            row = self._load(db, installment_id)
            tx_row = PaymentTransactionRepository(db).get(transaction_id)
            if tx_row is None or tx_row.installment_id != installment_id or tx_row.status != TX_COMPLETED:
                raise NotFoundError(
                    f"No completed transaction {transaction_id} for installment {installment_id}"
                )

            state = rules.revert_payment(installment_to_domain(row), transaction_to_domain(tx_row))
            state = self._persist(db, row, state, now)
            tx_row.status = TX_CANCELLED
            transaction = transaction_to_domain(tx_row)

        record_ledger_operation("revert_payment")
        log_ledger_operation(
            "revert_payment", installment_id, state.status, state.balance_cents, transaction.amount_cents, transaction_id
        )
        return state, transaction

    def apply_late_fee(self, installment_id: int, fee_cents: int) -> Installment:
        now = self.clock()
        with self._unit_of_work("apply_late_fee") as db:
            row = self._load(db, installment_id)
            state = self._persist(db, row, rules.apply_late_fee(installment_to_domain(row), fee_cents), now)

        record_ledger_operation("apply_late_fee")
        log_ledger_operation("apply_late_fee", installment_id, state.status, state.balance_cents, fee_cents)
        return state

    def cancel_installment(self, installment_id: int) -> Installment:
        now = self.clock()
        with self._unit_of_work("cancel_installment") as db:
            row = self._load(db, installment_id)
            current = installment_to_domain(row)
            state = self._persist(db, row, replace(current, status=STATUS_CANCELLED), now)

        record_ledger_operation("cancel_installment")
        log_ledger_operation("cancel_installment", installment_id, state.status, state.balance_cents)
        return state

    def reschedule(self, installment_id: int, new_due_date: date) -> Installment:
        now = self.clock()
        with self._unit_of_work("reschedule") as db:
            row = self._load(db, installment_id)
            state = self._persist(db, row, replace(installment_to_domain(row), due_date=new_due_date), now)

        record_ledger_operation("reschedule")
        log_ledger_operation("reschedule", installment_id, state.status, state.balance_cents)
        return state

    def roll_forward_next_pending(self, sale_id: int) -> Optional[Installment]:
        """Move the next unpaid installment to one month after the latest payment"""
        now = self.clock()
        with self._unit_of_work("roll_forward_next_pending") as db:
            if SaleRepository(db).get(sale_id) is None:
                raise NotFoundError(f"Sale {sale_id} not found")
            installments = [installment_to_domain(r) for r in InstallmentRepository(db).list_by_sale(sale_id)]
            plan = schedule_next_pending_monthly(installments)
            if plan is None:
                return None
            installment_id, new_due = plan
            row = self._load(db, installment_id)
            state = self._persist(db, row, replace(installment_to_domain(row), due_date=new_due), now)

        record_ledger_operation("roll_forward_next_pending")
        log_ledger_operation("roll_forward_next_pending", installment_id, state.status, state.balance_cents)
        return state
