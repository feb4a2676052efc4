"""Scheduler tests: one tick at a time against a real store, with a fixed clock"""

import asyncio
import pytest
from datetime import date, datetime
from sqlalchemy import text
from paydesk.config import Settings
from paydesk.infrastructure.database import models as orm
from paydesk.infrastructure.database.repositories import InstallmentRepository, NotificationRepository
from paydesk.services.notification_scheduler import NotificationScheduler


def _active(session_factory, clock):
    with session_factory() as db:
        return NotificationRepository(db, clock).list_active(100)


@pytest.fixture
def overdue_sale(make_customer, make_sale, sale_installments):
    """One installment of $100 five days overdue"""
    customer_id = make_customer("Ana Lopez")
    sale_id = make_sale(customer_id, [(date(2024, 3, 10), 10000)])
    return sale_installments(sale_id)[0]


def test_overdue_notified_once_per_day(scheduler, overdue_sale, session_factory, clock, channel):
    """First tick creates the alert; a second tick the same day adds nothing"""
    first = scheduler.tick()
    assert first.overdue_created == 1

    active = _active(session_factory, clock)
    assert len(active) == 1
    assert active[0].message_key == f"overdue|{overdue_sale}"
    assert active[0].type == "alert"
    assert "Ana Lopez" in active[0].message

    second = scheduler.tick()
    assert second.overdue_created == 0
    assert second.suppressed == 1
    assert len(_active(session_factory, clock)) == 1

    events = channel.recent()
    assert len(events) == 1
    assert events[0].type == "alert"
    assert events[0].meta["installmentId"] == overdue_sale
    assert events[0].meta["daysOverdue"] == 5
    assert events[0].meta["amount"] == 10000
    assert events[0].meta["category"] == "client"


def test_dismissed_alert_returns_next_day_only(scheduler, overdue_sale, session_factory, clock):
    scheduler.tick()
    with session_factory() as db:
        repo = NotificationRepository(db, clock)
        repo.delete(repo.list_active()[0].id)

    assert scheduler.tick().overdue_created == 0

    clock.advance(days=1)
    report = scheduler.tick()
    assert report.overdue_created == 1
    assert len(_active(session_factory, clock)) == 1


def test_active_alert_from_yesterday_still_suppresses(scheduler, overdue_sale, session_factory, clock):
    scheduler.tick()
    clock.advance(days=1)

    report = scheduler.tick()

    assert report.overdue_created == 0
    assert len(_active(session_factory, clock)) == 1


def test_upcoming_installments_get_reminders(scheduler, make_customer, make_sale, session_factory, clock, channel):
    customer_id = make_customer("Luis Perez")
    make_sale(customer_id, [(date(2024, 3, 20), 25000), (date(2024, 6, 20), 25000)])

    report = scheduler.tick()

    assert report.upcoming_created == 1
    active = _active(session_factory, clock)
    assert len(active) == 1
    assert active[0].type == "reminder"
    assert active[0].message_key.startswith("upcoming|")
    assert channel.recent()[0].type == "attention"
    assert "daysOverdue" not in channel.recent()[0].meta


def test_paid_and_anonymous_installments_skipped(scheduler, make_customer, make_sale, ledger, sale_installments, session_factory, clock):
    customer_id = make_customer("Ana Lopez")
    paid_sale = make_sale(customer_id, [(date(2024, 3, 1), 10000)])
    ledger.record_payment(sale_installments(paid_sale)[0], 10000)
    make_sale(None, [(date(2024, 3, 1), 10000)])

    report = scheduler.tick()

    assert report.overdue_created == 0
    assert report.skipped == 1
    assert _active(session_factory, clock) == []


def test_one_failing_item_does_not_stop_the_batch(scheduler, make_customer, make_sale, session_factory, clock, monkeypatch):
    customer_id = make_customer("Ana Lopez")
    make_sale(customer_id, [(date(2024, 3, 1), 10000)])
    make_sale(customer_id, [(date(2024, 3, 2), 20000)])

    original = NotificationRepository.create
    calls = {"n": 0}

    def flaky_create(self, message, type="info", message_key=None):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("boom")
        return original(self, message, type, message_key)

    monkeypatch.setattr(NotificationRepository, "create", flaky_create)

    report = scheduler.tick()

    assert report.failures == 1
    assert report.overdue_created == 1
    assert report.failed is False
    assert len(_active(session_factory, clock)) == 1


def test_tick_survives_store_failure(scheduler, monkeypatch):
    def broken(self, today):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(InstallmentRepository, "get_overdue", broken)

    report = scheduler.tick()

    assert report.failed is True


def test_cleanup_archives_duplicate_active_rows(scheduler, db, session_factory, clock):
    db.execute(text("DROP INDEX uq_notifications_active_key"))
    db.commit()
    repo = NotificationRepository(db, clock)
    repo.create("Overdue v1", "alert", "overdue|77")
    clock.advance(seconds=1)
    repo.create("Overdue v2", "alert", "overdue|77")

    report = scheduler.tick()

    assert report.duplicates_archived == 1
    active = _active(session_factory, clock)
    assert [r.message for r in active] == ["Overdue v2"]


def test_low_stock_alert_rearmed_only_by_restock(scheduler, sales_service, make_product, session_factory, clock):
    product_id = make_product(stock=1)

    clock.advance(minutes=1)
    assert scheduler.check_low_stock([product_id]) == 1
    # Active alert suppresses
    assert scheduler.check_low_stock([product_id]) == 0

    with session_factory() as db:
        repo = NotificationRepository(db, clock)
        repo.delete(repo.list_active()[0].id)

    # Archived and no restock since: still suppressed, even on later days
    clock.advance(days=3)
    assert scheduler.check_low_stock([product_id]) == 0

    clock.advance(minutes=1)
    sales_service.restock(product_id, 1)  # stock 2, above threshold
    clock.advance(minutes=1)
    assert scheduler.check_low_stock([product_id]) == 0

    with session_factory() as db:
        db.query(orm.Product).filter(orm.Product.id == product_id).update({orm.Product.stock: 1})
        db.commit()
    assert scheduler.check_low_stock([product_id]) == 1

    active = _active(session_factory, clock)
    assert len(active) == 1
    assert active[0].message_key == f"stock_low|{product_id}"


def test_low_stock_ignores_healthy_and_missing_products(scheduler, make_product):
    product_id = make_product(stock=25)

    assert scheduler.check_low_stock([product_id, 404]) == 0


def test_emit_deduplicates_same_day(scheduler, channel, clock):
    event = scheduler.emit("Backup finished", "info", "backup|daily")

    assert event is not None
    assert event.meta["category"] == "system"
    assert scheduler.emit("Backup finished", "info", "backup|daily") is None
    assert scheduler.emit("Backup finished", "info") is None

    clock.advance(days=1)
    assert scheduler.emit("Another note", "attention") is not None
    assert [e.type for e in channel.recent()] == ["info", "attention"]


def test_emit_rejects_bad_input(scheduler):
    with pytest.raises(ValueError):
        scheduler.emit("", "info")
    with pytest.raises(ValueError):
        scheduler.emit("Hello", "urgent")


def test_index_rejects_insert_when_prechecks_miss_the_active_row(scheduler, overdue_sale, session_factory, clock, channel, monkeypatch):
    """A concurrent writer got there first: the unique index turns the insert into a quiet no-op"""
    scheduler.tick()
    channel_before = len(channel.recent())

    monkeypatch.setattr(NotificationRepository, "exists_active_with_key", lambda self, key: False)
    monkeypatch.setattr(NotificationRepository, "exists_today_with_key", lambda self, key, now=None: False)

    report = scheduler.tick()

    assert report.failed is False
    assert report.failures == 0
    assert report.overdue_created == 0
    assert report.suppressed == 1
    assert len(channel.recent()) == channel_before
    active = _active(session_factory, clock)
    assert [r.message_key for r in active] == [f"overdue|{overdue_sale}"]


def test_weekly_precheck_the_day_before_the_15th(scheduler, make_customer, make_sale, ledger, sale_installments, session_factory, clock, channel):
    clock.set(datetime(2024, 3, 14, 9, 0))
    make_sale(make_customer("Ana Lopez"), [(date(2024, 3, 20), 5000), (date(2024, 3, 27), 5000)], period_type="weekly")
    make_sale(make_customer("Luis Perez"), [(date(2024, 3, 21), 5000)], period_type="weekly")
    settled = make_sale(make_customer("Marta Gomez"), [(date(2024, 3, 21), 5000)], period_type="weekly")
    ledger.record_payment(sale_installments(settled)[0], 5000)
    make_sale(make_customer("Pedro Ruiz"), [(date(2024, 3, 22), 5000)], period_type="monthly")

    report = scheduler.tick()

    assert report.weekly_precheck_created == 1
    key = "weekly_precheck|summary|2024-03-15"
    precheck = [r for r in _active(session_factory, clock) if r.message_key == key]
    assert len(precheck) == 1
    assert precheck[0].type == "reminder"
    assert precheck[0].message.endswith("check payments: Ana Lopez, Luis Perez")

    event = next(e for e in channel.recent() if e.meta["message_key"] == key)
    assert event.type == "attention"
    assert event.meta["category"] == "client"
    assert event.meta["customerCount"] == 2
    assert event.meta["due_at"] == "2024-03-15"

    # Same day, and the day after once dismissed: nothing new
    assert scheduler.tick().weekly_precheck_created == 0
    with session_factory() as db:
        NotificationRepository(db, clock).delete(precheck[0].id)
    clock.advance(hours=3)
    assert scheduler.tick().weekly_precheck_created == 0
    clock.advance(days=1)
    assert scheduler.tick().weekly_precheck_created == 0


def test_weekly_precheck_needs_open_weekly_plans(scheduler, make_customer, make_sale, clock):
    clock.set(datetime(2024, 3, 31, 9, 0))
    make_sale(make_customer("Pedro Ruiz"), [(date(2024, 4, 10), 5000)], period_type="monthly")

    assert scheduler.tick().weekly_precheck_created == 0


def test_run_loop_waits_full_interval_after_each_tick(session_factory, channel):
    """Fixed delay: every wait starts after the tick before it has returned"""
    settings = Settings(scheduler_interval_seconds=45, environment="development")
    scheduler = NotificationScheduler(session_factory, channel, settings)
    calls = []

    def tick():
        calls.append("tick started")
        calls.append("tick finished")

    async def fake_wait(stop_event, timeout):
        calls.append(("wait", timeout))
        if calls.count(("wait", timeout)) == 3:
            stop_event.set()

    scheduler.tick = tick

    asyncio.run(scheduler.run(asyncio.Event(), wait=fake_wait))

    assert calls == ["tick started", "tick finished", ("wait", 45)] * 3


def test_run_loop_stops_promptly(session_factory, channel):
    settings = Settings(scheduler_interval_seconds=60, environment="production")
    scheduler = NotificationScheduler(session_factory, channel, settings)
    ticks = []
    scheduler.tick = lambda: ticks.append(1)

    async def start_and_stop():
        stop_event = asyncio.Event()
        task = asyncio.create_task(scheduler.run(stop_event))
        await asyncio.sleep(0.05)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(start_and_stop())

    assert ticks == [1]
