# tolerance_rules/rules/manager_span.py
# -*- coding: utf-8 -*-
"""Manager span rule: managers with more active direct reports than allowed."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, NamedTuple, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, aliased

from models import (
    ENTITY_PERSON,
    MANAGER_SPAN,
    SEVERITY_WARNING,
    Person,
    ToleranceRule,
)
from notifications import notify_exception
from tolerance_rules.base import (
    RuleModule,
    create_exception_safely,
    get_existing_exceptions,
)
from tolerance_rules.schemas import ManagerSpanConfig

logger = logging.getLogger(__name__)


class ManagerSpan(NamedTuple):
    manager_id: str
    manager_name: str
    user_id: Optional[str]
    direct_reports: int


def count_active_direct_reports(db: Session, organization_id: str) -> List[ManagerSpan]:
    """Active managers with at least one active report, with the report count."""
    report = aliased(Person)
    rows = db.execute(
        select(Person.id, Person.name, Person.user_id, func.count(report.id))
        .join(report, report.manager_id == Person.id)
        .where(
            Person.organization_id == organization_id,
            Person.status == "active",
            report.status == "active",
        )
        .group_by(Person.id, Person.name, Person.user_id)
        .order_by(Person.id)
    )
    return [ManagerSpan(*row) for row in rows]


def evaluate_manager_span(
    db: Session,
    rule: ToleranceRule,
    config: ManagerSpanConfig,
    now: datetime,
) -> int:
    managers = count_active_direct_reports(db, rule.organization_id)
    exceeding = [m for m in managers if m.direct_reports > config.max_direct_reports]
    if not exceeding:
        return 0

    existing = get_existing_exceptions(
        db,
        rule.id,
        rule.organization_id,
        ENTITY_PERSON,
        [m.manager_id for m in exceeding],
    )

    created = 0
    for manager in exceeding:
        if manager.manager_id in existing:
            continue

        name = manager.manager_name or "Unknown"
        message = f"{name} has {manager.direct_reports} direct reports (threshold: {config.max_direct_reports})"
        exception = create_exception_safely(
            db,
            rule,
            entity_type=ENTITY_PERSON,
            entity_id=manager.manager_id,
            severity=SEVERITY_WARNING,
            message=message,
            metadata={
                "managerId": manager.manager_id,
                "managerName": name,
                "maxDirectReports": config.max_direct_reports,
                "currentCount": manager.direct_reports,
            },
        )
        if exception is None:
            continue

        # the manager is notified about their own span
        notify_exception(
            db,
            exception,
            [manager.user_id],
            title="Warning: Manager Span of Control",
            navigation_path=f"/people/{manager.manager_id}",
        )
        db.commit()
        created += 1

    logger.info("Rule %s (%s): %d of %d managers flagged", rule.id, MANAGER_SPAN, created, len(managers))
    return created


manager_span_rule = RuleModule(
    rule_type=MANAGER_SPAN,
    config_schema=ManagerSpanConfig,
    evaluator=evaluate_manager_span,
)
