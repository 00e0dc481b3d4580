"""
Delivery Engine Package

Deadline calculation, overdue scanning, export building, the trigger guard
and the delivery dispatcher.
"""

from lastwish.engine.deadline import (
    classify,
    compute_deadline,
    days_overdue,
    hours_overdue,
    is_overdue,
    lapsed_amount,
    settings_deadline,
)
from lastwish.engine.dispatcher import (
    DeliveryDispatcher,
    DispatchError,
    NoRecipientsError,
)
from lastwish.engine.export import (
    ExportBuilder,
    ExportError,
    UserRecordUnavailableError,
    compute_analytics,
)
from lastwish.engine.guard import TriggerGuard
from lastwish.engine.rendering import EmailRenderer
from lastwish.engine.scanner import OverdueScanner, ScanError

__all__ = [
    # Deadline calculator
    "classify",
    "compute_deadline",
    "days_overdue",
    "hours_overdue",
    "is_overdue",
    "lapsed_amount",
    "settings_deadline",
    # Scanner
    "OverdueScanner",
    "ScanError",
    # Export
    "ExportBuilder",
    "ExportError",
    "UserRecordUnavailableError",
    "compute_analytics",
    # Guard
    "TriggerGuard",
    # Dispatch
    "DeliveryDispatcher",
    "DispatchError",
    "EmailRenderer",
    "NoRecipientsError",
]
