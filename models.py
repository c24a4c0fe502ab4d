# models.py
# -*- coding: utf-8 -*-
"""
ORM models read and written by the tolerance rule evaluator.

People, meetings, initiatives, check-ins and feedback campaigns are owned by
the main application; the evaluator only reads them. Tolerance rules are
configured by organization admins. Exceptions and notifications are written
here and consumed by the UI.

- exceptions(
    id TEXT PK,
    rule_id TEXT NOT NULL -> organization_tolerance_rules.id,
    organization_id TEXT NOT NULL,
    severity TEXT NOT NULL,          -- 'warning' | 'urgent'
    entity_type TEXT NOT NULL,       -- 'OneOnOne' | 'Initiative' | 'Person'
    entity_id TEXT NOT NULL,
    message TEXT NOT NULL,
    metadata JSONB,
    status TEXT NOT NULL DEFAULT 'active',
    notification_id TEXT,
    resolved_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
  )
  UNIQUE (rule_id, entity_type, entity_id) WHERE status = 'active'

NOTE: columns named "metadata" are mapped as `extra_metadata`; SQLAlchemy
reserves `metadata` on declarative classes.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    String,
    Text,
    TIMESTAMP,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")

# Rule types
ONE_ON_ONE_FREQUENCY = "one_on_one_frequency"
INITIATIVE_CHECKIN = "initiative_checkin"
FEEDBACK_360 = "feedback_360"
MANAGER_SPAN = "manager_span"

# Exception entity types
ENTITY_ONE_ON_ONE = "OneOnOne"
ENTITY_INITIATIVE = "Initiative"
ENTITY_PERSON = "Person"

# Exception severities / statuses
SEVERITY_WARNING = "warning"
SEVERITY_URGENT = "urgent"
STATUS_ACTIVE = "active"
STATUS_RESOLVED = "resolved"

FULL_TIME = "FULL_TIME"


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Read-only organizational data
# ---------------------------------------------------------------------------


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=_new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(Text, nullable=True)


class Person(Base):
    __tablename__ = "people"

    id = Column(String(64), primary_key=True, default=_new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    name = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, default="active")
    employee_type = Column(String(32), nullable=True)
    manager_id = Column(String(64), ForeignKey("people.id"), nullable=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=True, unique=True)

    manager = relationship("Person", remote_side=[id], back_populates="reports")
    reports = relationship("Person", back_populates="manager")
    user = relationship("User")


class OneOnOne(Base):
    __tablename__ = "one_on_ones"

    id = Column(String(64), primary_key=True, default=_new_id)
    manager_id = Column(String(64), ForeignKey("people.id"), nullable=False, index=True)
    report_id = Column(String(64), ForeignKey("people.id"), nullable=False, index=True)
    scheduled_at = Column(TIMESTAMP(timezone=True), nullable=True)


class Initiative(Base):
    __tablename__ = "initiatives"

    id = Column(String(64), primary_key=True, default=_new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    title = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, default="planned")

    owners = relationship("InitiativeOwner", back_populates="initiative")


class InitiativeOwner(Base):
    __tablename__ = "initiative_owners"

    initiative_id = Column(String(64), ForeignKey("initiatives.id"), primary_key=True)
    person_id = Column(String(64), ForeignKey("people.id"), primary_key=True)
    role = Column(String(32), nullable=False, default="owner")

    initiative = relationship("Initiative", back_populates="owners")
    person = relationship("Person")


class CheckIn(Base):
    __tablename__ = "check_ins"

    id = Column(String(64), primary_key=True, default=_new_id)
    initiative_id = Column(String(64), ForeignKey("initiatives.id"), nullable=False, index=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())


class FeedbackCampaign(Base):
    __tablename__ = "feedback_campaigns"

    id = Column(String(64), primary_key=True, default=_new_id)
    target_person_id = Column(String(64), ForeignKey("people.id"), nullable=False, index=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Rules, exceptions, notifications
# ---------------------------------------------------------------------------


class ToleranceRule(Base):
    __tablename__ = "organization_tolerance_rules"

    id = Column(String(64), primary_key=True, default=_new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    rule_type = Column(String(64), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    is_enabled = Column(Boolean, nullable=False, default=True)
    config = Column(JSONType, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now())


class RuleException(Base):
    __tablename__ = "exceptions"
    __table_args__ = (
        Index(
            "uq_exceptions_active_entity",
            "rule_id",
            "entity_type",
            "entity_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index("ix_exceptions_org_status", "organization_id", "status"),
    )

    id = Column(String(64), primary_key=True, default=_new_id)
    rule_id = Column(String(64), ForeignKey("organization_tolerance_rules.id"), nullable=False)
    organization_id = Column(String(64), nullable=False)
    severity = Column(String(16), nullable=False)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    extra_metadata = Column("metadata", JSONType, nullable=True, default=dict)
    status = Column(String(16), nullable=False, default=STATUS_ACTIVE)
    notification_id = Column(String(64), nullable=True)
    resolved_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    rule = relationship("ToleranceRule")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(64), primary_key=True, default=_new_id)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(16), nullable=False, default="info")  # 'info','warning','error'
    organization_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    exception_id = Column(String(64), ForeignKey("exceptions.id"), nullable=True, index=True)
    extra_metadata = Column("metadata", JSONType, nullable=True, default=dict)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
