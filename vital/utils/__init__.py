"""Shared utilities: activity logging and the bounded-retry combinator."""

from vital.utils.audit import ActivityAction, AuditEvent, EntityType, log_audit_event
from vital.utils.retry import BoundedRetry, RetryExhaustedError

__all__ = [
    "ActivityAction",
    "AuditEvent",
    "BoundedRetry",
    "EntityType",
    "RetryExhaustedError",
    "log_audit_event",
]
