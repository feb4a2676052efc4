"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from paydesk.config import Settings
from paydesk.infrastructure.database.repositories import NotificationRepository
from paydesk.infrastructure.database.session import get_db
from paydesk.services.event_channel import EventChannel
from paydesk.services.installment_ledger import InstallmentLedger
from paydesk.services.notification_scheduler import NotificationScheduler
from paydesk.services.sales_service import SalesService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ledger(request: Request) -> InstallmentLedger:
    """Provide the installment ledger bound to the app's session factory"""
    return request.app.state.ledger


def get_sales_service(request: Request) -> SalesService:
    return request.app.state.sales_service


def get_scheduler(request: Request) -> NotificationScheduler:
    return request.app.state.scheduler


def get_event_channel(request: Request) -> EventChannel:
    return request.app.state.event_channel


def get_notification_repository(request: Request, db: Session = Depends(get_db)) -> NotificationRepository:
    """Notification repository sharing the app clock"""
    return NotificationRepository(db, request.app.state.clock)
