# orchestrator/orchestrate.py
# -*- coding: utf-8 -*-
"""
Run every enabled tolerance rule of an organization.

Rules run one after another. A failing rule (bad config, database error) is
rolled back and reported in `errors`; the remaining rules still run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import ToleranceRule
from tolerance_rules.base import as_utc, utcnow
from tolerance_rules.registry import get_rule_module

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    exceptions_created: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"exceptionsCreated": self.exceptions_created, "errors": list(self.errors)}


def load_enabled_rules(db: Session, organization_id: str) -> List[ToleranceRule]:
    return list(
        db.execute(
            select(ToleranceRule)
            .where(
                ToleranceRule.organization_id == organization_id,
                ToleranceRule.is_enabled.is_(True),
            )
            .order_by(ToleranceRule.created_at, ToleranceRule.id)
        ).scalars()
    )


def evaluate_rule(db: Session, rule: ToleranceRule, now: Optional[datetime] = None) -> int:
    """Dispatch one rule to its module. Errors propagate."""
    return get_rule_module(rule.rule_type).evaluate(db, rule, now=now)


def evaluate_all_rules(
    db: Session,
    organization_id: str,
    now: Optional[datetime] = None,
) -> EvaluationResult:
    now = as_utc(now) if now else utcnow()
    result = EvaluationResult()

    for rule in load_enabled_rules(db, organization_id):
        rule_id, rule_name, rule_type = rule.id, rule.name, rule.rule_type
        try:
            created = evaluate_rule(db, rule, now=now)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.exception("Rule %s (%s, %s) failed", rule_id, rule_name, rule_type)
            result.errors.append(f"Error evaluating rule {rule_id} ({rule_name}): {e}")
            continue

        result.exceptions_created += created

    logger.info(
        "Organization %s: %d exception(s) created, %d rule error(s)",
        organization_id,
        result.exceptions_created,
        len(result.errors),
    )
    return result


def organizations_with_enabled_rules(db: Session) -> List[str]:
    return list(
        db.execute(
            select(ToleranceRule.organization_id)
            .where(ToleranceRule.is_enabled.is_(True))
            .distinct()
            .order_by(ToleranceRule.organization_id)
        ).scalars()
    )


def evaluate_all_organizations(
    db: Session,
    now: Optional[datetime] = None,
) -> Dict[str, EvaluationResult]:
    now = as_utc(now) if now else utcnow()
    return {
        organization_id: evaluate_all_rules(db, organization_id, now=now)
        for organization_id in organizations_with_enabled_rules(db)
    }


def summarize(results: Dict[str, EvaluationResult]) -> Dict[str, Any]:
    """Per-organization results plus totals, as rendered by the CLI and API."""
    return {
        "organizations": {org: res.to_dict() for org, res in results.items()},
        "exceptionsCreated": sum(r.exceptions_created for r in results.values()),
        "errors": [e for r in results.values() for e in r.errors],
    }
