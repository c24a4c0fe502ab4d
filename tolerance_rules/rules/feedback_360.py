# tolerance_rules/rules/feedback_360.py
# -*- coding: utf-8 -*-
"""
Feedback 360 rule: active people without a recent 360 feedback campaign.

Elapsed months are whole 30-day periods. The person's manager is notified
when the manager has a linked user; otherwise only the exception is raised.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Dict, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from models import (
    ENTITY_PERSON,
    FEEDBACK_360,
    SEVERITY_WARNING,
    FeedbackCampaign,
    Person,
    ToleranceRule,
)
from notifications import notify_exception
from settings import get_settings
from tolerance_rules.base import (
    RuleModule,
    chunked,
    create_exception_safely,
    finite_or_none,
    get_existing_exceptions,
    months_since,
)
from tolerance_rules.schemas import Feedback360Config

logger = logging.getLogger(__name__)


def load_last_campaigns(db: Session, person_ids: Sequence[str], batch_size: int) -> Dict[str, datetime]:
    last: Dict[str, datetime] = {}
    for batch in chunked(person_ids, batch_size):
        rows = db.execute(
            select(FeedbackCampaign.target_person_id, FeedbackCampaign.created_at)
            .where(FeedbackCampaign.target_person_id.in_(batch))
            .order_by(FeedbackCampaign.created_at.desc())
        )
        for person_id, created_at in rows:
            last.setdefault(person_id, created_at)
    return last


def build_message(person_name: str, threshold_months: int, elapsed: float) -> str:
    if elapsed == math.inf:
        return f"{person_name} has not had a 360 feedback campaign (threshold: {threshold_months} months)"
    return (
        f"{person_name} has not had a 360 feedback campaign in {int(elapsed)} months "
        f"(threshold: {threshold_months} months)"
    )


def evaluate_feedback_360(
    db: Session,
    rule: ToleranceRule,
    config: Feedback360Config,
    now: datetime,
) -> int:
    manager = aliased(Person)
    people = db.execute(
        select(Person.id, Person.name, manager.user_id)
        .outerjoin(manager, manager.id == Person.manager_id)
        .where(
            Person.organization_id == rule.organization_id,
            Person.status == "active",
        )
        .order_by(Person.id)
    ).all()
    if not people:
        return 0

    person_ids = [p[0] for p in people]
    last_campaigns = load_last_campaigns(db, person_ids, get_settings().query_batch_size)
    existing = get_existing_exceptions(db, rule.id, rule.organization_id, ENTITY_PERSON, person_ids)

    threshold = config.warning_threshold_months
    created = 0
    for person_id, person_name, manager_user_id in people:
        if person_id in existing:
            continue

        elapsed = months_since(last_campaigns.get(person_id), now)
        if not elapsed > threshold:
            continue

        name = person_name or "Unknown"
        exception = create_exception_safely(
            db,
            rule,
            entity_type=ENTITY_PERSON,
            entity_id=person_id,
            severity=SEVERITY_WARNING,
            message=build_message(name, threshold, elapsed),
            metadata={
                "personId": person_id,
                "personName": name,
                "thresholdMonths": threshold,
                "monthsSince": finite_or_none(elapsed),
            },
        )
        if exception is None:
            continue

        notify_exception(
            db,
            exception,
            [manager_user_id],
            title="Warning: 360 Feedback Overdue",
            navigation_path=f"/people/{person_id}",
        )
        db.commit()
        created += 1

    logger.info("Rule %s (%s): %d of %d people flagged", rule.id, FEEDBACK_360, created, len(people))
    return created


feedback_360_rule = RuleModule(
    rule_type=FEEDBACK_360,
    config_schema=Feedback360Config,
    evaluator=evaluate_feedback_360,
)
