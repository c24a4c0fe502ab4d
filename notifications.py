# notifications.py
# -*- coding: utf-8 -*-
"""
System notifications raised for newly created exceptions.

A notification is written only after its exception was actually created;
duplicates never notify. Callers own the surrounding commit.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from models import (
    SEVERITY_URGENT,
    Notification,
    RuleException,
)

logger = logging.getLogger(__name__)


def notification_type_for(severity: str) -> str:
    return "error" if severity == SEVERITY_URGENT else "warning"


def create_system_notification(
    db: Session,
    *,
    title: str,
    message: str,
    type: str,
    organization_id: str,
    user_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Notification:
    notification = Notification(
        title=title,
        message=message,
        type=type,
        organization_id=organization_id,
        user_id=user_id,
        extra_metadata=metadata or {},
    )
    db.add(notification)
    db.flush()
    return notification


def link_exception_to_notification(
    db: Session,
    exception: RuleException,
    notification: Notification,
) -> None:
    """
    Tie a notification back to its exception.

    The exception keeps a pointer to the first notification linked to it;
    fan-out notifications all carry the exception id.
    """
    notification.exception_id = exception.id
    if exception.notification_id is None:
        exception.notification_id = notification.id
    db.flush()


def notify_exception(
    db: Session,
    exception: RuleException,
    user_ids: Iterable[Optional[str]],
    *,
    title: str,
    navigation_path: str,
) -> List[Notification]:
    """
    Create one notification per distinct recipient and link each one.

    Recipients without a linked user (None) are skipped.
    """
    created: List[Notification] = []
    seen = set()
    for user_id in user_ids:
        if not user_id or user_id in seen:
            continue
        seen.add(user_id)
        notification = create_system_notification(
            db,
            title=title,
            message=exception.message,
            type=notification_type_for(exception.severity),
            organization_id=exception.organization_id,
            user_id=user_id,
            metadata={
                "exceptionId": exception.id,
                "entityType": exception.entity_type,
                "entityId": exception.entity_id,
                "navigationPath": navigation_path,
            },
        )
        link_exception_to_notification(db, exception, notification)
        created.append(notification)

    if not created:
        logger.debug("No deliverable recipient for exception %s", exception.id)
    return created
