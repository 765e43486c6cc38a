"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session
from microfin_metrics.infrastructure.database.session import get_db
from microfin_metrics.infrastructure.notifications.bus import MetricsEventBus, metrics_bus
from microfin_metrics.services.daily_compute import DailyComputeJob
from microfin_metrics.services.increments import IncrementService
from microfin_metrics.services.recorder import MetricRecorder
from microfin_metrics.services.reporting import MetricsReporter


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_event_bus() -> MetricsEventBus:
    """Provide the process-wide metrics-changed bus"""
    return metrics_bus


def get_recorder(db: Session = Depends(get_db), bus: MetricsEventBus = Depends(get_event_bus)) -> MetricRecorder:
    return MetricRecorder(db, bus)


def get_increment_service(
    db: Session = Depends(get_db), bus: MetricsEventBus = Depends(get_event_bus)
) -> IncrementService:
    return IncrementService(db, bus)


def get_reporter(db: Session = Depends(get_db)) -> MetricsReporter:
    return MetricsReporter(db)


def get_daily_compute_job(db: Session = Depends(get_db)) -> DailyComputeJob:
    return DailyComputeJob(db)
