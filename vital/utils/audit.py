"""
Structured Activity Logging.

Every profile-level state change (auto-provisioning, completion edits,
sign-out resets) is logged as one schema-validated JSON object so the
activity trail can be replayed per user.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional, Union

from pydantic import BaseModel, Field

from vital.logger import StructuredLogger

__all__ = ["ActivityAction", "AuditEvent", "EntityType", "log_audit_event"]

# Flat scalars only; nested structures should be modelled explicitly.
DetailValue = Union[str, int, float, bool, None]


class ActivityAction(StrEnum):
    CREATE_PROFILE = "CREATE_PROFILE"
    UPDATE_PROFILE = "UPDATE_PROFILE"
    REGISTER_USER = "REGISTER_USER"
    SIGN_OUT = "SIGN_OUT"


class EntityType(StrEnum):
    PROFILES = "profiles"
    AUTH = "auth"


class AuditEvent(BaseModel):
    """Schema-validated representation of a single activity entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    action: ActivityAction
    entity_type: EntityType
    entity_id: str
    user_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    action: ActivityAction,
    entity_type: EntityType,
    entity_id: str,
    user_id: str,
    details: Optional[dict[str, DetailValue]] = None,
) -> AuditEvent:
    """Validate and log one activity event; returns the event.

    Args:
        logger: Destination; the event goes out as one ``AUDIT:`` line.
        action, entity_type, entity_id: What changed, and on which row.
        user_id: Whose profile the change belongs to.
        details: Optional flat context (e.g. changed field names).
    """
    event = AuditEvent(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        details=details or {},
    )
    logger.info("AUDIT: %s", json.dumps(event.model_dump(mode="json"), default=str))
    return event
