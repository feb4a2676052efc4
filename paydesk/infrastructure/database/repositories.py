"""Data access layer for ledger and notification entities"""

import uuid
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from paydesk.domain import models as domain
from paydesk.domain.exceptions import DuplicateNotificationError
from paydesk.infrastructure.database.models import (
    Customer,
    Installment,
    Notification,
    PaymentTransaction,
    Product,
    Sale,
    SaleItem,
)
from paydesk.utils.date_utils import day_bounds, utcnow

OPEN_STATUSES = (domain.STATUS_PENDING, domain.STATUS_PARTIAL)


# Mapping layer: ORM rows → typed domain records


def installment_to_domain(row: Installment) -> domain.Installment:
    return domain.Installment(
        id=row.id,
        sale_id=row.sale_id,
        installment_number=row.installment_number,
        due_date=row.due_date,
        amount_cents=row.amount_cents,
        paid_amount_cents=row.paid_amount_cents,
        balance_cents=row.balance_cents,
        status=row.status,
        paid_date=row.paid_date,
        days_overdue=row.days_overdue,
        late_fee_cents=row.late_fee_cents,
        late_fee_applied=bool(row.late_fee_applied),
        notes=row.notes,
    )


def transaction_to_domain(row: PaymentTransaction) -> domain.PaymentTransaction:
    return domain.PaymentTransaction(
        id=row.id,
        sale_id=row.sale_id,
        installment_id=row.installment_id,
        amount_cents=row.amount_cents,
        payment_method=row.payment_method,
        payment_reference=row.payment_reference,
        transaction_date=row.transaction_date,
        status=row.status,
    )


def sale_to_domain(row: Sale) -> domain.Sale:
    return domain.Sale(
        id=row.id,
        customer_id=row.customer_id,
        sale_number=row.sale_number,
        total_cents=row.total_cents,
        payment_type=row.payment_type,
        payment_status=row.payment_status,
        number_of_installments=row.number_of_installments,
        installment_amount_cents=row.installment_amount_cents,
        advance_installments=row.advance_installments or 0,
        period_type=row.period_type,
    )


def product_to_domain(row: Product) -> domain.Product:
    return domain.Product(
        id=row.id,
        name=row.name,
        price_cents=row.price_cents,
        category=row.category,
        stock=row.stock,
        updated_at=row.updated_at,
    )


def notification_to_domain(row: Notification) -> domain.NotificationRecord:
    return domain.NotificationRecord(
        id=row.id,
        message=row.message,
        type=row.type,
        message_key=row.message_key,
        created_at=row.created_at,
        read_at=row.read_at,
        deleted_at=row.deleted_at,
    )


class SaleRepository:
    """Repository for sales and their items"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, sale_id: int) -> Optional[Sale]:
        return self.db.query(Sale).filter(Sale.id == sale_id).first()

    def create_sale(
        self,
        customer_id: Optional[int],
        total_cents: int,
        payment_type: str,
        payment_status: str,
        number_of_installments: Optional[int],
        installment_amount_cents: Optional[int],
        advance_installments: int,
        now: datetime,
        notes: Optional[str] = None,
        period_type: Optional[str] = None,
    ) -> Sale:
        """Insert a sale row; the caller owns the transaction"""
        db_sale = Sale(
            customer_id=customer_id,
            sale_number=f"S-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}",
            total_cents=total_cents,
            payment_type=payment_type,
            payment_status=payment_status,
            number_of_installments=number_of_installments,
            installment_amount_cents=installment_amount_cents,
            advance_installments=advance_installments,
            notes=notes,
            period_type=period_type,
            created_at=now,
            updated_at=now,
        )
        self.db.add(db_sale)
        self.db.flush()  # Get ID without committing
        return db_sale

    def add_item(self, sale_id: int, line: domain.SaleLine, product_name: str) -> SaleItem:
        db_item = SaleItem(
            sale_id=sale_id,
            product_id=line.product_id,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_total_cents=line.quantity * line.unit_price_cents,
            product_name=product_name,
        )
        self.db.add(db_item)
        return db_item

    def delete(self, sale: Sale) -> None:
        """Cascade: items, installments and payment transactions go with the sale"""
        self.db.delete(sale)

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        return self.db.query(Customer).filter(Customer.id == customer_id).first()

    def weekly_customers_with_open_installments(self) -> List[str]:
        """Customer names of weekly plans that still have money owed, one per customer, oldest sale first"""
        rows = (
            self.db.query(Customer.name)
            .join(Sale, Sale.customer_id == Customer.id)
            .join(Installment, Installment.sale_id == Sale.id)
            .filter(
                Sale.payment_type == "installments",
                Sale.period_type == domain.PERIOD_WEEKLY,
                Installment.status.in_(OPEN_STATUSES),
                Installment.balance_cents > 0,
            )
            .order_by(Sale.id)
            .all()
        )
        return list(dict.fromkeys(name for (name,) in rows if name))


class InstallmentRepository:
    """Repository for installments"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, installment_id: int, for_update: bool = False) -> Optional[Installment]:
        query = self.db.query(Installment).filter(Installment.id == installment_id)
        if for_update:
            # SQLite ignores FOR UPDATE; other engines lock the row
            query = query.with_for_update()
        return query.first()

    def list_by_sale(self, sale_id: int) -> List[Installment]:
        return (
            self.db.query(Installment)
            .filter(Installment.sale_id == sale_id)
            .order_by(Installment.installment_number)
            .all()
        )

    def add(self, sale_id: int, installment_number: int, due_date: date, amount_cents: int, now: datetime) -> Installment:
        db_installment = Installment(
            sale_id=sale_id,
            installment_number=installment_number,
            due_date=due_date,
            amount_cents=amount_cents,
            paid_amount_cents=0,
            balance_cents=amount_cents,
            status=domain.STATUS_PENDING,
            days_overdue=0,
            late_fee_cents=0,
            late_fee_applied=False,
            created_at=now,
            updated_at=now,
        )
        self.db.add(db_installment)
        self.db.flush()
        return db_installment

    def save(self, row: Installment, state: domain.Installment, now: datetime) -> Installment:
        """Copy a computed domain state onto its row"""
        row.due_date = state.due_date
        row.amount_cents = state.amount_cents
        row.paid_amount_cents = state.paid_amount_cents
        row.balance_cents = state.balance_cents
        row.status = state.status
        row.paid_date = state.paid_date
        row.days_overdue = state.days_overdue
        row.late_fee_cents = state.late_fee_cents
        row.late_fee_applied = state.late_fee_applied
        row.notes = state.notes
        row.updated_at = now
        return row

    def _due_query(self):
        return (
            self.db.query(Installment, Customer.name)
            .join(Sale, Installment.sale_id == Sale.id)
            .outerjoin(Customer, Sale.customer_id == Customer.id)
            .filter(Installment.status.in_(OPEN_STATUSES), Installment.balance_cents > 0)
        )

    def get_overdue(self, today: date) -> List[domain.DueInstallment]:
        """Open installments whose due date is before today"""
        rows = self._due_query().filter(Installment.due_date < today).order_by(Installment.due_date).all()
        return [self._to_due(inst, name) for inst, name in rows]

    def get_upcoming(self, today: date, window_days: int, limit: int) -> List[domain.DueInstallment]:
        """Open installments due between today and today + window_days"""
        rows = (
            self._due_query()
            .filter(Installment.due_date >= today, Installment.due_date <= today + timedelta(days=window_days))
            .order_by(Installment.due_date.asc())
            .limit(limit)
            .all()
        )
        return [self._to_due(inst, name) for inst, name in rows]

    @staticmethod
    def _to_due(row: Installment, customer_name: Optional[str]) -> domain.DueInstallment:
        return domain.DueInstallment(
            installment_id=row.id,
            sale_id=row.sale_id,
            installment_number=row.installment_number,
            customer_name=customer_name,
            due_date=row.due_date,
            balance_cents=row.balance_cents,
        )


class PaymentTransactionRepository:
    """Repository for payment transactions (append-only)"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, transaction_id: int) -> Optional[PaymentTransaction]:
        return self.db.query(PaymentTransaction).filter(PaymentTransaction.id == transaction_id).first()

    def create_transaction(
        self,
        sale_id: int,
        installment_id: Optional[int],
        amount_cents: int,
        payment_method: str,
        payment_reference: Optional[str],
        transaction_date: datetime,
        status: str = domain.TX_COMPLETED,
        notes: Optional[str] = None,
    ) -> PaymentTransaction:
        db_tx = PaymentTransaction(
            sale_id=sale_id,
            installment_id=installment_id,
            amount_cents=amount_cents,
            payment_method=payment_method,
            payment_reference=payment_reference,
            transaction_date=transaction_date,
            status=status,
            notes=notes,
            created_at=transaction_date,
        )
        self.db.add(db_tx)
        self.db.flush()
        return db_tx

    def list_by_installment(self, installment_id: int) -> List[PaymentTransaction]:
        return (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.installment_id == installment_id)
            .order_by(PaymentTransaction.transaction_date.desc(), PaymentTransaction.id.desc())
            .all()
        )


class ProductRepository:
    """Read access plus the two stock movements the core needs"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, product_id: int) -> Optional[Product]:
        return self.db.query(Product).filter(Product.id == product_id).first()

    def decrement_stock(self, product: Product, quantity: int) -> None:
        """Sales consume stock without touching updated_at, which marks restocks"""
        if product.stock is not None:
            product.stock = max(0, product.stock - quantity)

    def restock(self, product: Product, quantity: int, now: datetime) -> Product:
        product.stock = (product.stock or 0) + quantity
        product.updated_at = now
        return product


class NotificationRepository:
    """
    Repository for notifications.

    Every mutating call commits on its own: the partial unique index on
    active message keys must be checked at commit time, racing writers
    included.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def create(self, message: str, type: str = domain.NOTIFICATION_INFO, message_key: Optional[str] = None) -> domain.NotificationRecord:
        """
        Insert an active notification.

        Raises:
            ValueError: type is not a stored notification type
            DuplicateNotificationError: an active row with the same key exists
        """
        if type not in domain.NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type {type!r}")
        db_notification = Notification(
            message=message,
            type=type,
            message_key=message_key,
            created_at=self.clock(),
        )
        self.db.add(db_notification)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateNotificationError(f"Active notification already exists for key {message_key!r}") from e
        return notification_to_domain(db_notification)

    def get_by_id(self, notification_id: int) -> Optional[domain.NotificationRecord]:
        row = self.db.query(Notification).filter(Notification.id == notification_id).first()
        return notification_to_domain(row) if row else None

    def exists_active_with_key(self, key: str) -> bool:
        return (
            self.db.query(Notification.id)
            .filter(Notification.message_key == key, Notification.deleted_at.is_(None))
            .first()
            is not None
        )

    def exists_active_with_message(self, message: str) -> bool:
        return (
            self.db.query(Notification.id)
            .filter(Notification.message == message, Notification.deleted_at.is_(None))
            .first()
            is not None
        )

    def _touched_today(self, now: Optional[datetime]):
        start, end = day_bounds(now or self.clock())
        return or_(
            and_(Notification.created_at >= start, Notification.created_at < end),
            and_(Notification.deleted_at >= start, Notification.deleted_at < end),
        )

    def exists_today_with_key(self, key: str, now: Optional[datetime] = None) -> bool:
        """Created today, or dismissed today - either way the event was already surfaced"""
        if not key:
            return False
        return (
            self.db.query(Notification.id)
            .filter(Notification.message_key == key, self._touched_today(now))
            .first()
            is not None
        )

    def exists_today_with_message(self, message: str, now: Optional[datetime] = None) -> bool:
        return (
            self.db.query(Notification.id)
            .filter(Notification.message == message, self._touched_today(now))
            .first()
            is not None
        )

    def get_latest_by_key(self, key: str) -> Optional[domain.NotificationRecord]:
        """Most recent record for the key, active or archived"""
        row = (
            self.db.query(Notification)
            .filter(Notification.message_key == key)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .first()
        )
        return notification_to_domain(row) if row else None

    def list_active(self, limit: int = 20) -> List[domain.NotificationRecord]:
        rows = (
            self.db.query(Notification)
            .filter(Notification.deleted_at.is_(None))
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )
        return [notification_to_domain(row) for row in rows]

    def list_archived(self, limit: int = 20) -> List[domain.NotificationRecord]:
        rows = (
            self.db.query(Notification)
            .filter(Notification.deleted_at.isnot(None))
            .order_by(Notification.deleted_at.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )
        return [notification_to_domain(row) for row in rows]

    def _update(self, criteria: list, values: dict) -> int:
        count = self.db.query(Notification).filter(*criteria).update(values, synchronize_session="fetch")
        self.db.commit()
        return count

    def mark_read(self, notification_id: int) -> int:
        return self._update(
            [Notification.id == notification_id, Notification.read_at.is_(None)],
            {Notification.read_at: self.clock()},
        )

    def mark_unread(self, notification_id: int) -> int:
        return self._update([Notification.id == notification_id], {Notification.read_at: None})

    def delete(self, notification_id: int) -> int:
        """Archive; the row stays for same-day dedup and audit"""
        return self._update(
            [Notification.id == notification_id, Notification.deleted_at.is_(None)],
            {Notification.deleted_at: self.clock()},
        )

    def _created_today(self):
        start, end = day_bounds(self.clock())
        return and_(Notification.created_at >= start, Notification.created_at < end)

    def delete_by_key_today(self, key: str) -> int:
        return self._update(
            [Notification.message_key == key, self._created_today(), Notification.deleted_at.is_(None)],
            {Notification.deleted_at: self.clock()},
        )

    def delete_by_message_today(self, message: str) -> int:
        return self._update(
            [Notification.message == message, self._created_today(), Notification.deleted_at.is_(None)],
            {Notification.deleted_at: self.clock()},
        )

    def clear_all(self) -> int:
        return self._update([Notification.deleted_at.is_(None)], {Notification.deleted_at: self.clock()})

    def purge_archived(self) -> int:
        """Permanent delete of archived rows - storage hygiene only"""
        count = (
            self.db.query(Notification)
            .filter(Notification.deleted_at.isnot(None))
            .delete(synchronize_session="fetch")
        )
        self.db.commit()
        return count

    def archive_duplicate_keys(self, scan_limit: int = 500) -> int:
        """Keep the newest active row per key among the last scan_limit, archive the rest"""
        seen = set()
        duplicate_ids = []
        for record in self.list_active(scan_limit):
            if not record.message_key:
                continue
            if record.message_key in seen:
                duplicate_ids.append(record.id)
            else:
                seen.add(record.message_key)

        if not duplicate_ids:
            return 0
        return self._update(
            [Notification.id.in_(duplicate_ids), Notification.deleted_at.is_(None)],
            {Notification.deleted_at: self.clock()},
        )
