# tolerance_rules/rules/one_on_one_frequency.py
# -*- coding: utf-8 -*-
"""
One-on-one frequency rule.

Flags manager/report pairs whose last 1:1 is older than the warning or urgent
threshold. Pairs that never met count as infinitely overdue, so they are
always urgent.

A 1:1 may have been recorded with the roles swapped relative to today's org
chart, so meetings are looked up in both directions and the later of the two
dates wins.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, aliased

from models import (
    ENTITY_ONE_ON_ONE,
    FULL_TIME,
    ONE_ON_ONE_FREQUENCY,
    SEVERITY_URGENT,
    SEVERITY_WARNING,
    OneOnOne,
    Person,
    ToleranceRule,
)
from notifications import notify_exception
from settings import get_settings
from tolerance_rules.base import (
    PairKey,
    RuleModule,
    as_utc,
    chunked,
    create_exception_safely,
    days_since,
    finite_or_none,
    get_existing_exceptions,
    later,
)
from tolerance_rules.schemas import OneOnOneFrequencyConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManagerReportPair:
    key: PairKey
    manager_name: str
    report_name: str
    manager_user_id: Optional[str]


def load_manager_report_pairs(
    db: Session,
    organization_id: str,
    only_full_time: bool = False,
) -> List[ManagerReportPair]:
    """Active managers joined to their active (optionally full-time) reports."""
    report = aliased(Person)
    stmt = (
        select(Person.id, Person.name, Person.user_id, report.id, report.name)
        .join(report, report.manager_id == Person.id)
        .where(
            Person.organization_id == organization_id,
            Person.status == "active",
            report.status == "active",
        )
        .order_by(Person.id, report.id)
    )
    if only_full_time:
        stmt = stmt.where(report.employee_type == FULL_TIME)

    return [
        ManagerReportPair(
            key=PairKey(manager_id, report_id),
            manager_name=manager_name,
            report_name=report_name,
            manager_user_id=manager_user_id,
        )
        for manager_id, manager_name, manager_user_id, report_id, report_name in db.execute(stmt)
    ]


def load_last_one_on_ones(
    db: Session,
    keys: List[PairKey],
    batch_size: int,
) -> Dict[PairKey, datetime]:
    """
    Latest scheduled_at per stored (manager_id, report_id) direction.

    Each pair is queried in both directions. Batches bound the size of the
    OR clause; meetings without a date are ignored.
    """
    last: Dict[PairKey, datetime] = {}
    for batch in chunked(keys, batch_size):
        conditions = []
        for key in batch:
            conditions.append(and_(OneOnOne.manager_id == key.manager_id, OneOnOne.report_id == key.report_id))
            conditions.append(and_(OneOnOne.manager_id == key.report_id, OneOnOne.report_id == key.manager_id))

        rows = db.execute(
            select(OneOnOne.manager_id, OneOnOne.report_id, OneOnOne.scheduled_at)
            .where(or_(*conditions))
            .order_by(OneOnOne.scheduled_at.desc())
        )
        for manager_id, report_id, scheduled_at in rows:
            if scheduled_at is None:
                continue
            direction = PairKey(manager_id, report_id)
            existing = last.get(direction)
            if existing is None or as_utc(scheduled_at) > as_utc(existing):
                last[direction] = scheduled_at
    return last


def build_message(pair: ManagerReportPair, threshold_days: int, elapsed: float) -> str:
    if elapsed == math.inf:
        return (
            f"{pair.manager_name} has never had a one on one with {pair.report_name} "
            f"(threshold: {threshold_days} days)"
        )
    return (
        f"{pair.manager_name} has not had a 1:1 with {pair.report_name} in {int(elapsed)} days "
        f"(threshold: {threshold_days} days)"
    )


def classify(elapsed: float, config: OneOnOneFrequencyConfig) -> Optional[tuple]:
    """(severity, threshold) for an elapsed day count, urgent first."""
    if elapsed > config.urgent_threshold_days:
        return SEVERITY_URGENT, config.urgent_threshold_days
    if elapsed > config.warning_threshold_days:
        return SEVERITY_WARNING, config.warning_threshold_days
    return None


def evaluate_one_on_one_frequency(
    db: Session,
    rule: ToleranceRule,
    config: OneOnOneFrequencyConfig,
    now: datetime,
) -> int:
    pairs = load_manager_report_pairs(
        db,
        rule.organization_id,
        only_full_time=bool(config.only_full_time_employees),
    )
    if not pairs:
        return 0

    last_map = load_last_one_on_ones(db, [p.key for p in pairs], get_settings().query_batch_size)

    existing = get_existing_exceptions(
        db,
        rule.id,
        rule.organization_id,
        ENTITY_ONE_ON_ONE,
        [p.key.entity_id for p in pairs],
    )

    created = 0
    for pair in pairs:
        if pair.key.entity_id in existing:
            continue

        last_one_on_one = later(last_map.get(pair.key), last_map.get(pair.key.reversed()))
        elapsed = days_since(last_one_on_one, now)
        verdict = classify(elapsed, config)
        if verdict is None:
            continue
        severity, threshold = verdict

        message = build_message(pair, threshold, elapsed)
        exception = create_exception_safely(
            db,
            rule,
            entity_type=ENTITY_ONE_ON_ONE,
            entity_id=pair.key.entity_id,
            severity=severity,
            message=message,
            metadata={
                "managerId": pair.key.manager_id,
                "reportId": pair.key.report_id,
                "managerName": pair.manager_name,
                "reportName": pair.report_name,
                "thresholdDays": threshold,
                "daysSince": finite_or_none(elapsed),
            },
        )
        if exception is None:
            continue

        title = "Urgent: One-on-One Overdue" if severity == SEVERITY_URGENT else "Warning: One-on-One Overdue"
        notify_exception(
            db,
            exception,
            [pair.manager_user_id],
            title=title,
            navigation_path=f"/people/{pair.key.report_id}",
        )
        db.commit()
        created += 1

    logger.info("Rule %s (%s): %d of %d pairs flagged", rule.id, ONE_ON_ONE_FREQUENCY, created, len(pairs))
    return created


one_on_one_frequency_rule = RuleModule(
    rule_type=ONE_ON_ONE_FREQUENCY,
    config_schema=OneOnOneFrequencyConfig,
    evaluator=evaluate_one_on_one_frequency,
)
