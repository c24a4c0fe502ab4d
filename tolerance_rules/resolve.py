# tolerance_rules/resolve.py
# -*- coding: utf-8 -*-
"""
Resolve active exceptions once the underlying problem is fixed.

Called from write paths: a 1:1 was held, an initiative got a check-in, a
360 campaign was launched, a manager's team shrank. Each helper marks the
matching active exceptions resolved and returns how many it touched.
DO NOT commit here. The caller owns the transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from errors import InvalidRuleConfigError
from models import (
    ENTITY_INITIATIVE,
    ENTITY_ONE_ON_ONE,
    ENTITY_PERSON,
    FEEDBACK_360,
    MANAGER_SPAN,
    STATUS_ACTIVE,
    STATUS_RESOLVED,
    Person,
    RuleException,
    ToleranceRule,
)
from tolerance_rules.base import PairKey, utcnow
from tolerance_rules.registry import parse_rule_config

logger = logging.getLogger(__name__)


def _mark_resolved(db: Session, exception_ids: List[str], now: Optional[datetime]) -> int:
    if not exception_ids:
        return 0
    stamp = now or utcnow()
    db.execute(
        update(RuleException)
        .where(RuleException.id.in_(exception_ids))
        .values(status=STATUS_RESOLVED, resolved_at=stamp, updated_at=stamp)
        .execution_options(synchronize_session="fetch")
    )
    logger.info("Resolved %d exception(s)", len(exception_ids))
    return len(exception_ids)


def _active_exception_ids(db: Session, organization_id: str, entity_type: str, *conditions) -> List[str]:
    return list(
        db.execute(
            select(RuleException.id).where(
                RuleException.organization_id == organization_id,
                RuleException.entity_type == entity_type,
                RuleException.status == STATUS_ACTIVE,
                *conditions,
            )
        ).scalars()
    )


def resolve_one_on_one_exceptions(
    db: Session,
    organization_id: str,
    manager_id: str,
    report_id: str,
    now: Optional[datetime] = None,
) -> int:
    """A 1:1 was created; the pair may be stored in either direction."""
    key = PairKey(manager_id, report_id)
    ids = _active_exception_ids(
        db,
        organization_id,
        ENTITY_ONE_ON_ONE,
        RuleException.entity_id.in_([key.entity_id, key.reversed().entity_id]),
    )
    return _mark_resolved(db, ids, now)


def resolve_initiative_exceptions(
    db: Session,
    organization_id: str,
    initiative_id: str,
    now: Optional[datetime] = None,
) -> int:
    ids = _active_exception_ids(
        db,
        organization_id,
        ENTITY_INITIATIVE,
        RuleException.entity_id == initiative_id,
    )
    return _mark_resolved(db, ids, now)


def resolve_feedback_360_exceptions(
    db: Session,
    organization_id: str,
    person_id: str,
    now: Optional[datetime] = None,
) -> int:
    """Only exceptions raised by feedback_360 rules; other Person exceptions stay."""
    ids = _active_exception_ids(
        db,
        organization_id,
        ENTITY_PERSON,
        RuleException.entity_id == person_id,
        RuleException.rule_id.in_(
            select(ToleranceRule.id).where(ToleranceRule.rule_type == FEEDBACK_360)
        ),
    )
    return _mark_resolved(db, ids, now)


def resolve_manager_span_exceptions(
    db: Session,
    organization_id: str,
    manager_id: str,
    now: Optional[datetime] = None,
) -> int:
    """
    Resolve the manager's span exceptions for every enabled manager_span rule
    whose threshold the current active report count no longer exceeds.
    Rules with a malformed config are logged and skipped.
    """
    if db.get(Person, manager_id) is None:
        return 0

    direct_reports = db.execute(
        select(func.count(Person.id)).where(
            Person.manager_id == manager_id,
            Person.status == "active",
        )
    ).scalar_one()

    rules = db.execute(
        select(ToleranceRule).where(
            ToleranceRule.organization_id == organization_id,
            ToleranceRule.rule_type == MANAGER_SPAN,
            ToleranceRule.is_enabled.is_(True),
        )
    ).scalars()

    ids: List[str] = []
    for rule in rules:
        try:
            config = parse_rule_config(rule.rule_type, rule.config, rule_id=rule.id)
        except InvalidRuleConfigError as e:
            logger.warning("Skipping rule %s while resolving span exceptions: %s", rule.id, e)
            continue
        if direct_reports <= config.max_direct_reports:
            ids.extend(
                _active_exception_ids(
                    db,
                    organization_id,
                    ENTITY_PERSON,
                    RuleException.rule_id == rule.id,
                    RuleException.entity_id == manager_id,
                )
            )
    return _mark_resolved(db, ids, now)
