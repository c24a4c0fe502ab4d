# tolerance_rules/base.py
# -*- coding: utf-8 -*-
"""
Shared plumbing for tolerance rule modules.

Every rule follows the same shape:

1. bulk-load candidates and their last-activity timestamps
2. drop candidates that already have an active exception (bulk pre-check)
3. create each remaining exception with `create_exception_safely`
4. notify only when the exception was actually created

The bulk pre-check only saves work. The serializable recheck inside
`create_exception_safely` is what keeps one active exception per
(rule, entity_type, entity_id) when runs overlap.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    NamedTuple,
    Optional,
    Protocol,
    Sequence,
    Set,
    Type,
    TypeVar,
)

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from db import serializable_transaction
from errors import InvalidRuleConfigError
from models import STATUS_ACTIVE, RuleException, ToleranceRule

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 100
ONE_DAY = timedelta(days=1)
# Months are approximated as 30 days, not calendar months.
ONE_MONTH = timedelta(days=30)

# Separator used when a pair key is stored in exceptions.entity_id.
# Keys stay unique only while person ids have a fixed length (uuid4).
ENTITY_KEY_SEPARATOR = "-"

# SQLSTATEs (PostgreSQL) that mean another run got there first
_UNIQUE_VIOLATION = "23505"
_SERIALIZATION_FAILURE = "40001"
# sqlite3 reports constraint failures by message only
_SQLITE_UNIQUE_PREFIX = "UNIQUE constraint failed"


# ---------------------------------------------------------------------------
# Rule module contract
# ---------------------------------------------------------------------------


class RuleEvaluator(Protocol):
    def __call__(
        self,
        db: Session,
        rule: ToleranceRule,
        config: Any,
        now: datetime,
    ) -> int: ...


@dataclass(frozen=True)
class RuleModule:
    rule_type: str
    config_schema: Type[BaseModel]
    evaluator: RuleEvaluator

    def parse_config(self, raw: Any, rule_id: Optional[str] = None) -> Any:
        try:
            return self.config_schema.model_validate(raw if raw is not None else {})
        except ValidationError as e:
            raise InvalidRuleConfigError(self.rule_type, _summarize(e), rule_id=rule_id) from e

    def evaluate(self, db: Session, rule: ToleranceRule, now: Optional[datetime] = None) -> int:
        """Validate the stored config and run the rule. Returns exceptions created."""
        config = self.parse_config(rule.config, rule_id=rule.id)
        return self.evaluator(db, rule, config, as_utc(now) if now else utcnow())


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "config"
        parts.append(f"{loc}: {item.get('msg')}")
    return "; ".join(parts)


# ---------------------------------------------------------------------------
# Entity keys
# ---------------------------------------------------------------------------


class PairKey(NamedTuple):
    """Identity of a manager/report pair. Serialized only for storage."""

    manager_id: str
    report_id: str

    @property
    def entity_id(self) -> str:
        return f"{self.manager_id}{ENTITY_KEY_SEPARATOR}{self.report_id}"

    def reversed(self) -> "PairKey":
        return PairKey(self.report_id, self.manager_id)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; those are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _elapsed(then: Optional[datetime], now: datetime, unit: timedelta) -> float:
    if then is None:
        return math.inf
    return (as_utc(now) - as_utc(then)) // unit


def days_since(then: Optional[datetime], now: datetime) -> float:
    """Whole days elapsed, or infinity when there is no previous activity."""
    return _elapsed(then, now, ONE_DAY)


def months_since(then: Optional[datetime], now: datetime) -> float:
    return _elapsed(then, now, ONE_MONTH)


def finite_or_none(value: float) -> Optional[int]:
    return None if value == math.inf else int(value)


def later(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return a if as_utc(a) >= as_utc(b) else b


def chunked(items: Sequence[T], size: int = DEFAULT_BATCH_SIZE) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


def get_existing_exceptions(
    db: Session,
    rule_id: str,
    organization_id: str,
    entity_type: str,
    entity_ids: Iterable[str],
) -> Set[str]:
    """
    Entity ids among `entity_ids` that already have an active exception for
    this rule. One query; best effort only.
    """
    ids = list(dict.fromkeys(entity_ids))
    if not ids:
        return set()

    rows = db.execute(
        select(RuleException.entity_id).where(
            RuleException.rule_id == rule_id,
            RuleException.organization_id == organization_id,
            RuleException.entity_type == entity_type,
            RuleException.entity_id.in_(ids),
            RuleException.status == STATUS_ACTIVE,
        )
    ).scalars()
    return set(rows)


def _is_duplicate_race(error: DBAPIError) -> bool:
    """Only unique and serialization conflicts; a foreign key or NOT NULL failure is a real error."""
    orig = getattr(error, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in (_UNIQUE_VIOLATION, _SERIALIZATION_FAILURE):
        return True
    return isinstance(error, IntegrityError) and str(orig).startswith(_SQLITE_UNIQUE_PREFIX)


def find_active_exception(
    db: Session,
    rule: ToleranceRule,
    entity_type: str,
    entity_id: str,
) -> Optional[str]:
    return db.execute(
        select(RuleException.id)
        .where(
            RuleException.rule_id == rule.id,
            RuleException.organization_id == rule.organization_id,
            RuleException.entity_type == entity_type,
            RuleException.entity_id == entity_id,
            RuleException.status == STATUS_ACTIVE,
        )
        .limit(1)
    ).scalar_one_or_none()


def create_exception_safely(
    db: Session,
    rule: ToleranceRule,
    *,
    entity_type: str,
    entity_id: str,
    severity: str,
    message: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[RuleException]:
    """
    Check-then-create inside one SERIALIZABLE transaction.

    Returns the new exception, or None when an active one already exists
    (found by the recheck, or reported by the database as a unique or
    serialization conflict). Any other database error propagates.
    """
    try:
        with serializable_transaction(db):
            if find_active_exception(db, rule, entity_type, entity_id) is not None:
                logger.debug("Active exception already exists for %s %s", entity_type, entity_id)
                return None

            exception = RuleException(
                rule_id=rule.id,
                organization_id=rule.organization_id,
                severity=severity,
                entity_type=entity_type,
                entity_id=entity_id,
                message=message,
                extra_metadata=metadata or {},
                status=STATUS_ACTIVE,
            )
            db.add(exception)
            db.flush()
    except DBAPIError as e:
        if not _is_duplicate_race(e):
            raise
        logger.info(
            "Concurrent run already created %s exception for %s %s",
            rule.rule_type,
            entity_type,
            entity_id,
        )
        return None

    return exception
