"""
Recurring scan that turns overdue/upcoming installments, weekly-plan
check days and low stock into notifications, at most one active per
semantic key.

The scheduler keeps no state between ticks: each tick re-reads the store,
and each candidate notification is checked and written in its own session
so one bad row cannot sink the batch. The partial unique index on active
message keys is the final guard; losing that race is a silent no-op.

Loop policy is fixed delay: the next tick starts a full interval after the
previous one finished, so a slow scan pushes the schedule back instead of
overlapping.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Optional

from sqlalchemy.orm import sessionmaker

from paydesk.config import Settings, settings as default_settings
from paydesk.domain import notifications as rules
from paydesk.domain.exceptions import DuplicateNotificationError
from paydesk.domain.models import (
    DueInstallment,
    NOTIFICATION_ALERT,
    NOTIFICATION_REMINDER,
    NOTIFICATION_TYPES,
    NotificationEvent,
    NotificationRecord,
)
from paydesk.infrastructure.database.repositories import (
    InstallmentRepository,
    NotificationRepository,
    ProductRepository,
    SaleRepository,
    product_to_domain,
)
from paydesk.infrastructure.observability.logging import log_notification_created
from paydesk.infrastructure.observability.metrics import (
    notification_created_counter,
    notification_suppressed_counter,
    scheduler_item_failure_counter,
    scheduler_tick_counter,
    scheduler_tick_duration_histogram,
)
from paydesk.services.event_channel import EventChannel
from paydesk.utils.date_utils import days_between, utcnow

logger = logging.getLogger(__name__)


async def wait_for_stop(stop_event: asyncio.Event, timeout: float) -> None:
    """Sleep for timeout seconds, waking early when stop_event is set"""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        pass


@dataclass
class TickReport:
    """What one scheduler tick did"""

    duplicates_archived: int = 0
    overdue_created: int = 0
    upcoming_created: int = 0
    weekly_precheck_created: int = 0
    skipped: int = 0
    suppressed: int = 0
    failures: int = 0
    failed: bool = False


class NotificationScheduler:
    """Overdue/upcoming/weekly scans on a timer, plus the low-stock hook and manual emit"""

    def __init__(
        self,
        session_factory: sessionmaker,
        channel: EventChannel,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.channel = channel
        self.settings = settings or default_settings
        self.clock = clock

    # Timer

    async def run(
        self,
        stop_event: asyncio.Event,
        wait: Callable[[asyncio.Event, float], Awaitable[None]] = wait_for_stop,
    ) -> None:
        """Tick now, then once per interval after each tick ends, until stop_event is set"""
        interval = self.settings.effective_scheduler_interval
        logger.info("Notification scheduler started", extra={"interval_seconds": interval})
        while not stop_event.is_set():
            await asyncio.to_thread(self.tick)
            await wait(stop_event, interval)
        logger.info("Notification scheduler stopped")

    def tick(self) -> TickReport:
        """One full pass; never raises"""
        report = TickReport()
        started = time.perf_counter()
        try:
            self._cleanup(report)
            now = self.clock()
            today = now.date()

            with self.session_factory() as db:
                repo = InstallmentRepository(db)
                overdue = repo.get_overdue(today)
                upcoming = repo.get_upcoming(
                    today, self.settings.upcoming_window_days, self.settings.upcoming_scan_limit
                )

            for item in overdue:
                if self._notify_due("overdue", item, now, report):
                    report.overdue_created += 1
            for item in upcoming:
                if self._notify_due("upcoming", item, now, report):
                    report.upcoming_created += 1
            if self._weekly_precheck(now, report):
                report.weekly_precheck_created += 1

            scheduler_tick_counter.labels(outcome="ok").inc()
        except Exception:
            report.failed = True
            scheduler_tick_counter.labels(outcome="failed").inc()
            logger.exception("Scheduler tick failed")
        finally:
            scheduler_tick_duration_histogram.observe(time.perf_counter() - started)

        if (
            report.overdue_created
            or report.upcoming_created
            or report.weekly_precheck_created
            or report.duplicates_archived
            or report.failures
        ):
            logger.info(
                "Scheduler tick finished",
                extra={
                    "overdue_created": report.overdue_created,
                    "upcoming_created": report.upcoming_created,
                    "weekly_precheck_created": report.weekly_precheck_created,
                    "duplicates_archived": report.duplicates_archived,
                    "failures": report.failures,
                },
            )
        return report

    def _cleanup(self, report: TickReport) -> None:
        try:
            with self.session_factory() as db:
                archived = NotificationRepository(db, self.clock).archive_duplicate_keys(
                    self.settings.cleanup_scan_limit
                )
            report.duplicates_archived = archived
            if archived:
                logger.warning("Archived duplicate active notifications", extra={"count": archived})
        except Exception:
            report.failures += 1
            scheduler_item_failure_counter.labels(scan="cleanup").inc()
            logger.exception("Notification cleanup failed")

    # Installment scans

    def _notify_due(self, kind: str, item: DueInstallment, now: datetime, report: TickReport) -> bool:
        try:
            if item.installment_id is None or not item.customer_name or item.balance_cents <= 0:
                report.skipped += 1
                return False

            if kind == "overdue":
                key = rules.overdue_key(item.installment_id)
                message = rules.overdue_message(item.customer_name, item.due_date, item.balance_cents)
                db_type = NOTIFICATION_ALERT
            else:
                key = rules.upcoming_key(item.installment_id)
                message = rules.upcoming_message(item.customer_name, item.due_date, item.balance_cents)
                db_type = NOTIFICATION_REMINDER

            meta = {
                "customerName": item.customer_name,
                "due_at": item.due_date.isoformat(),
                "amount": item.balance_cents,
                "installmentId": item.installment_id,
                "saleId": item.sale_id,
                "installmentNumber": item.installment_number,
            }
            if kind == "overdue":
                meta["daysOverdue"] = days_between(item.due_date, now.date())

            return self._create_once(kind, key, message, db_type, meta, now, report) is not None
        except Exception:
            report.failures += 1
            scheduler_item_failure_counter.labels(scan=kind).inc()
            logger.exception("Error processing installment", extra={"scan": kind, "installment_id": item.installment_id})
            return False

    def _weekly_precheck(self, now: datetime, report: TickReport) -> bool:
        """
        The day before the 1st or the 15th, one summary reminder naming the
        customers on weekly plans with money still owed.
        """
        cycle_date = now.date() + timedelta(days=1)
        if cycle_date.day not in rules.WEEKLY_CYCLE_DAYS:
            return False
        try:
            with self.session_factory() as db:
                names = SaleRepository(db).weekly_customers_with_open_installments()
            if not names:
                return False

            meta = {
                "customerName": names[0],
                "customerNames": names[:3],
                "customerCount": len(names),
                "due_at": cycle_date.isoformat(),
            }
            return (
                self._create_once(
                    "weekly_precheck",
                    rules.weekly_precheck_key(cycle_date),
                    rules.weekly_precheck_message(cycle_date.day, names),
                    NOTIFICATION_REMINDER,
                    meta,
                    now,
                    report,
                )
                is not None
            )
        except Exception:
            report.failures += 1
            scheduler_item_failure_counter.labels(scan="weekly_precheck").inc()
            logger.exception("Error creating weekly precheck reminder")
            return False

    def _create_once(
        self,
        kind: str,
        key: str,
        message: str,
        db_type: str,
        meta: dict,
        now: datetime,
        report: Optional[TickReport] = None,
    ) -> Optional[NotificationEvent]:
        """Create unless an active or same-day record exists for the key"""
        with self.session_factory() as db:
            repo = NotificationRepository(db, self.clock)
            if repo.exists_active_with_key(key):
                return self._suppressed(kind, "active", report)
            if repo.exists_today_with_key(key, now):
                return self._suppressed(kind, "today", report)
            try:
                record = repo.create(message, db_type, key)
            except DuplicateNotificationError:
                return self._suppressed(kind, "constraint", report)
            latest = repo.get_latest_by_key(key) or record

        return self._publish(kind, record, latest, meta)

    def _suppressed(self, kind: str, reason: str, report: Optional[TickReport]) -> None:
        notification_suppressed_counter.labels(kind=kind, reason=reason).inc()
        if report is not None:
            report.suppressed += 1
        return None

    def _publish(self, kind: str, record: NotificationRecord, latest: NotificationRecord, meta: dict) -> NotificationEvent:
        notification_created_counter.labels(kind=kind).inc()
        log_notification_created(record.id, record.message_key, record.type)
        event = NotificationEvent(
            id=record.id,
            message=record.message,
            type=rules.to_ui_type(record.type),
            meta={
                "message_key": record.message_key,
                "category": rules.derive_category(record.message_key),
                "created_at": latest.created_at.isoformat(),
                **meta,
            },
        )
        self.channel.publish(event)
        return event

    # Hooks outside the timer

    def check_low_stock(self, product_ids: Iterable[int]) -> int:
        """
        Called after a sale commits. Alerts on products at or below the
        low-stock threshold.

        Unlike installment scans, an archived alert does not suppress a new
        one forever: a restock (product.updated_at newer than the last
        alert) re-arms it. An active alert always suppresses.
        """
        created = 0
        for product_id in dict.fromkeys(product_ids):
            try:
                if self._check_product(product_id) is not None:
                    created += 1
            except Exception:
                scheduler_item_failure_counter.labels(scan="stock_low").inc()
                logger.exception("Error checking product stock", extra={"product_id": product_id})
        return created

    def _check_product(self, product_id: int) -> Optional[NotificationEvent]:
        with self.session_factory() as db:
            row = ProductRepository(db).get(product_id)
            if row is None:
                return None
            product = product_to_domain(row)
            if product.stock is None or product.stock > self.settings.low_stock_threshold:
                return None

            key = rules.stock_low_key(product.id)
            repo = NotificationRepository(db, self.clock)
            if repo.exists_active_with_key(key):
                return self._suppressed("stock_low", "active", None)
            latest = repo.get_latest_by_key(key)
            restocked = (
                latest is not None
                and product.updated_at is not None
                and product.updated_at > latest.created_at
            )
            if latest is not None and not restocked:
                return self._suppressed("stock_low", "not_restocked", None)

            try:
                record = repo.create(rules.stock_low_message(product), NOTIFICATION_REMINDER, key)
            except DuplicateNotificationError:
                return self._suppressed("stock_low", "constraint", None)
            newest = repo.get_latest_by_key(key) or record

        meta = {
            "productId": product.id,
            "productName": product.name,
            "productPrice": product.price_cents,
            "productCategory": product.category,
            "currentStock": product.stock,
        }
        return self._publish("stock_low", record, newest, meta)

    def emit(self, message: str, type: str, message_key: Optional[str] = None) -> Optional[NotificationEvent]:
        """
        Manual emit path. Suppressed when the key or the exact message was
        already surfaced today.

        Returns:
            The published event, or None when deduplicated
        """
        db_type = rules.to_db_type(type)
        if not message or db_type not in NOTIFICATION_TYPES:
            raise ValueError(f"Cannot emit notification with message={message!r} type={type!r}")

        now = self.clock()
        with self.session_factory() as db:
            repo = NotificationRepository(db, self.clock)
            if (message_key and repo.exists_today_with_key(message_key, now)) or repo.exists_today_with_message(message, now):
                return self._suppressed("manual", "today", None)
            try:
                record = repo.create(message, db_type, message_key)
            except DuplicateNotificationError:
                return self._suppressed("manual", "constraint", None)
            latest = (repo.get_latest_by_key(message_key) if message_key else None) or record

        return self._publish("manual", record, latest, {})
