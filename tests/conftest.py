"""Pytest fixtures for testing"""

import itertools
import pytest
from datetime import datetime, timedelta
from typing import Callable, Generator, List, Optional
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from paydesk.api.main import create_app
from paydesk.config import Settings
from paydesk.infrastructure.database import models as orm
from paydesk.infrastructure.database.session import build_engine, build_session_factory, init_db
from paydesk.services.event_channel import EventChannel
from paydesk.services.installment_ledger import InstallmentLedger
from paydesk.services.notification_scheduler import NotificationScheduler
from paydesk.services.sales_service import SalesService


class FixedClock:
    """Controllable clock; tests move it with set() or advance()"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


_sale_numbers = itertools.count(1)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 15, 10, 0, 0))


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        environment="development",
        scheduler_enabled=False,
        upcoming_window_days=30,
        upcoming_scan_limit=50,
        low_stock_threshold=1,
    )


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    """Fresh SQLite file per test so every session sees the same data"""
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Session for arranging and inspecting rows directly"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel(buffer_size=50)


@pytest.fixture
def ledger(session_factory: sessionmaker, clock: FixedClock) -> InstallmentLedger:
    return InstallmentLedger(session_factory, clock)


@pytest.fixture
def scheduler(session_factory, channel, test_settings, clock) -> NotificationScheduler:
    return NotificationScheduler(session_factory, channel, test_settings, clock)


@pytest.fixture
def sales_service(session_factory, scheduler, clock) -> SalesService:
    return SalesService(session_factory, scheduler, clock)


@pytest.fixture
def client(session_factory, test_settings, clock) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app(settings=test_settings, session_factory=session_factory, clock=clock)
    return TestClient(app)


@pytest.fixture
def make_customer(db: Session) -> Callable[..., int]:
    def _make(name: str = "Ana Lopez", payment_window: Optional[str] = None) -> int:
        customer = orm.Customer(name=name, payment_window=payment_window)
        db.add(customer)
        db.commit()
        return customer.id

    return _make


@pytest.fixture
def make_product(db: Session, clock: FixedClock) -> Callable[..., int]:
    def _make(name: str = "Blender", price_cents: int = 45000, stock: Optional[int] = 10, category: Optional[str] = "Kitchen") -> int:
        product = orm.Product(
            name=name,
            price_cents=price_cents,
            stock=stock,
            category=category,
            updated_at=clock(),
        )
        db.add(product)
        db.commit()
        return product.id

    return _make


@pytest.fixture
def make_sale(db: Session, clock: FixedClock) -> Callable[..., int]:
    """Insert an installment sale with the given (due_date, amount_cents) rows"""

    def _make(customer_id: Optional[int], installments: List[tuple], period_type: Optional[str] = None) -> int:
        now = clock()
        total = sum(amount for _, amount in installments)
        sale = orm.Sale(
            customer_id=customer_id,
            sale_number=f"T-{next(_sale_numbers)}",
            total_cents=total,
            payment_type="installments",
            payment_status="unpaid",
            number_of_installments=len(installments),
            period_type=period_type,
            created_at=now,
            updated_at=now,
        )
        db.add(sale)
        db.flush()
        for number, (due_date, amount) in enumerate(installments, start=1):
            db.add(
                orm.Installment(
                    sale_id=sale.id,
                    installment_number=number,
                    due_date=due_date,
                    amount_cents=amount,
                    paid_amount_cents=0,
                    balance_cents=amount,
                    status="pending",
                    created_at=now,
                    updated_at=now,
                )
            )
        db.commit()
        return sale.id

    return _make


def installment_ids(db: Session, sale_id: int) -> List[int]:
    rows = (
        db.query(orm.Installment.id)
        .filter(orm.Installment.sale_id == sale_id)
        .order_by(orm.Installment.installment_number)
        .all()
    )
    return [row.id for row in rows]


@pytest.fixture
def sale_installments(db: Session) -> Callable[[int], List[int]]:
    """Installment ids of a sale ordered by number"""
    return lambda sale_id: installment_ids(db, sale_id)
