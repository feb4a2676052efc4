"""SQLAlchemy ORM models for the ledger store"""

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Customer(Base):
    """Customer (owned by the CRM screens; name and payment window are read here)"""

    __tablename__ = "customers"
    __table_args__ = (
        CheckConstraint("payment_window IN ('1 to 10', '20 to 30')", name="ck_customers_payment_window"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    payment_window = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    sales = relationship("Sale", back_populates="customer")


class Product(Base):
    """Catalog product; stock and updated_at feed the low-stock hook"""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    price_cents = Column(BigInteger, nullable=False, default=0)
    category = Column(Text, nullable=True)
    stock = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=True)


class Sale(Base):
    """Cash or financed sale"""

    __tablename__ = "sales"
    __table_args__ = (
        CheckConstraint("payment_type IN ('cash', 'installments', 'credit', 'mixed')", name="ck_sales_payment_type"),
        CheckConstraint("payment_status IN ('paid', 'partial', 'unpaid', 'overdue')", name="ck_sales_payment_status"),
        CheckConstraint("period_type IN ('monthly', 'weekly')", name="ck_sales_period_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    sale_number = Column(Text, nullable=False, unique=True)
    total_cents = Column(BigInteger, nullable=False)
    payment_type = Column(Text, nullable=False)
    payment_status = Column(Text, nullable=False, default="unpaid")
    number_of_installments = Column(Integer, nullable=True)
    installment_amount_cents = Column(BigInteger, nullable=True)
    advance_installments = Column(Integer, nullable=False, default=0)
    period_type = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=True)

    customer = relationship("Customer", back_populates="sales")
    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan")
    installments = relationship(
        "Installment",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="Installment.installment_number",
    )
    transactions = relationship("PaymentTransaction", back_populates="sale", cascade="all, delete-orphan")


class SaleItem(Base):
    """Product line of a sale"""

    __tablename__ = "sale_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price_cents = Column(BigInteger, nullable=False)
    line_total_cents = Column(BigInteger, nullable=False)
    product_name = Column(Text, nullable=False)

    sale = relationship("Sale", back_populates="items")


class Installment(Base):
    """Scheduled obligation within a financed sale"""

    __tablename__ = "installments"
    __table_args__ = (
        UniqueConstraint("sale_id", "installment_number", name="uq_installments_sale_number"),
        CheckConstraint(
            "status IN ('pending', 'partial', 'paid', 'overdue', 'cancelled')", name="ck_installments_status"
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    amount_cents = Column(BigInteger, nullable=False)
    paid_amount_cents = Column(BigInteger, nullable=False, default=0)
    balance_cents = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    paid_date = Column(DateTime, nullable=True)
    days_overdue = Column(Integer, nullable=False, default=0)
    late_fee_cents = Column(BigInteger, nullable=False, default=0)
    late_fee_applied = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=True)

    sale = relationship("Sale", back_populates="installments")
    transactions = relationship("PaymentTransaction", back_populates="installment", passive_deletes=True)


class PaymentTransaction(Base):
    """Append-only record of money moved against a sale or installment"""

    __tablename__ = "payment_transactions"
    __table_args__ = (
        CheckConstraint(
            "payment_method IN ('cash', 'credit_card', 'debit_card', 'bank_transfer', 'check')",
            name="ck_payment_transactions_method",
        ),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'cancelled')", name="ck_payment_transactions_status"
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    installment_id = Column(Integer, ForeignKey("installments.id", ondelete="CASCADE"), nullable=True, index=True)
    amount_cents = Column(BigInteger, nullable=False)
    payment_method = Column(Text, nullable=False)
    payment_reference = Column(Text, nullable=True)
    transaction_date = Column(DateTime, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    sale = relationship("Sale", back_populates="transactions")
    installment = relationship("Installment", back_populates="transactions")


class Notification(Base):
    """Operational alert; archived by setting deleted_at, never hard-deleted by the scheduler"""

    __tablename__ = "notifications"
    __table_args__ = (
        CheckConstraint("type IN ('alert', 'reminder', 'info')", name="ck_notifications_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    message = Column(Text, nullable=False)
    type = Column(Text, nullable=False)
    message_key = Column(Text, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    read_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)


# At most one active (non-archived) notification per semantic key
Index(
    "uq_notifications_active_key",
    Notification.message_key,
    unique=True,
    sqlite_where=Notification.deleted_at.is_(None),
    postgresql_where=Notification.deleted_at.is_(None),
)
