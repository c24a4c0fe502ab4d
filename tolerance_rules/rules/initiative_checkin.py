# tolerance_rules/rules/initiative_checkin.py
# -*- coding: utf-8 -*-
"""
Initiative check-in rule: open initiatives (planned / in progress) whose last
check-in is older than the threshold. Every owner with a linked user gets
their own notification.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import (
    ENTITY_INITIATIVE,
    INITIATIVE_CHECKIN,
    SEVERITY_WARNING,
    CheckIn,
    Initiative,
    InitiativeOwner,
    Person,
    ToleranceRule,
)
from notifications import notify_exception
from settings import get_settings
from tolerance_rules.base import (
    RuleModule,
    chunked,
    create_exception_safely,
    days_since,
    finite_or_none,
    get_existing_exceptions,
)
from tolerance_rules.schemas import InitiativeCheckInConfig

logger = logging.getLogger(__name__)

OPEN_STATUSES = ("planned", "in_progress")


def load_last_check_ins(db: Session, initiative_ids: Sequence[str], batch_size: int) -> Dict[str, datetime]:
    last: Dict[str, datetime] = {}
    for batch in chunked(initiative_ids, batch_size):
        rows = db.execute(
            select(CheckIn.initiative_id, CheckIn.created_at)
            .where(CheckIn.initiative_id.in_(batch))
            .order_by(CheckIn.created_at.desc())
        )
        # newest first, so the first row per initiative wins
        for initiative_id, created_at in rows:
            last.setdefault(initiative_id, created_at)
    return last


def load_owner_user_ids(db: Session, initiative_ids: Sequence[str], batch_size: int) -> Dict[str, List[str]]:
    owners: Dict[str, List[str]] = defaultdict(list)
    for batch in chunked(initiative_ids, batch_size):
        rows = db.execute(
            select(InitiativeOwner.initiative_id, Person.user_id)
            .join(Person, Person.id == InitiativeOwner.person_id)
            .where(InitiativeOwner.initiative_id.in_(batch))
            .order_by(InitiativeOwner.initiative_id, Person.id)
        )
        for initiative_id, user_id in rows:
            if user_id:
                owners[initiative_id].append(user_id)
    return owners


def build_message(title: str, threshold_days: int, elapsed: float) -> str:
    if elapsed == math.inf:
        return f'Initiative "{title}" has no check-ins (threshold: {threshold_days} days)'
    return (
        f'Initiative "{title}" has not had a check-in in {int(elapsed)} days '
        f"(threshold: {threshold_days} days)"
    )


def evaluate_initiative_checkin(
    db: Session,
    rule: ToleranceRule,
    config: InitiativeCheckInConfig,
    now: datetime,
) -> int:
    initiatives = db.execute(
        select(Initiative.id, Initiative.title)
        .where(
            Initiative.organization_id == rule.organization_id,
            Initiative.status.in_(OPEN_STATUSES),
        )
        .order_by(Initiative.id)
    ).all()
    if not initiatives:
        return 0

    batch_size = get_settings().query_batch_size
    initiative_ids = [i.id for i in initiatives]
    last_check_ins = load_last_check_ins(db, initiative_ids, batch_size)
    existing = get_existing_exceptions(db, rule.id, rule.organization_id, ENTITY_INITIATIVE, initiative_ids)

    overdue = []
    for initiative_id, title in initiatives:
        if initiative_id in existing:
            continue
        elapsed = days_since(last_check_ins.get(initiative_id), now)
        if elapsed > config.warning_threshold_days:
            overdue.append((initiative_id, title or "Unknown Initiative", elapsed))
    if not overdue:
        return 0

    owners = load_owner_user_ids(db, [o[0] for o in overdue], batch_size)

    created = 0
    for initiative_id, title, elapsed in overdue:
        exception = create_exception_safely(
            db,
            rule,
            entity_type=ENTITY_INITIATIVE,
            entity_id=initiative_id,
            severity=SEVERITY_WARNING,
            message=build_message(title, config.warning_threshold_days, elapsed),
            metadata={
                "initiativeId": initiative_id,
                "initiativeName": title,
                "thresholdDays": config.warning_threshold_days,
                "daysSince": finite_or_none(elapsed),
            },
        )
        if exception is None:
            continue

        notify_exception(
            db,
            exception,
            owners.get(initiative_id, []),
            title="Warning: Initiative Check-In Overdue",
            navigation_path=f"/initiatives/{initiative_id}",
        )
        db.commit()
        created += 1

    logger.info("Rule %s (%s): %d of %d initiatives flagged", rule.id, INITIATIVE_CHECKIN, created, len(initiatives))
    return created


initiative_checkin_rule = RuleModule(
    rule_type=INITIATIVE_CHECKIN,
    config_schema=InitiativeCheckInConfig,
    evaluator=evaluate_initiative_checkin,
)
