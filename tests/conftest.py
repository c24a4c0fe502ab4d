from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from db import Base, make_session_factory
from models import (
    CheckIn,
    FeedbackCampaign,
    Initiative,
    InitiativeOwner,
    Notification,
    OneOnOne,
    Person,
    RuleException,
    ToleranceRule,
    User,
)

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = make_session_factory(engine)()
    yield session
    session.close()


class OrgBuilder:
    """Seeds one organization's people, meetings, initiatives and rules."""

    def __init__(self, db, organization_id: str = "org-1") -> None:
        self.db = db
        self.organization_id = organization_id

    def person(
        self,
        person_id: str,
        *,
        manager: Optional[Person] = None,
        with_user: bool = True,
        status: str = "active",
        employee_type: str = "FULL_TIME",
    ) -> Person:
        user = None
        if with_user:
            user = User(id=f"user-{person_id}", email=f"{person_id}@example.com", name=person_id.title())
            self.db.add(user)
        person = Person(
            id=person_id,
            organization_id=self.organization_id,
            name=person_id.title(),
            status=status,
            employee_type=employee_type,
            manager_id=manager.id if manager else None,
            user_id=user.id if user else None,
        )
        self.db.add(person)
        self.db.commit()
        return person

    def one_on_one(self, manager: Person, report: Person, scheduled_at: Optional[datetime]) -> OneOnOne:
        meeting = OneOnOne(manager_id=manager.id, report_id=report.id, scheduled_at=scheduled_at)
        self.db.add(meeting)
        self.db.commit()
        return meeting

    def initiative(self, initiative_id: str, *, status: str = "in_progress", owners=()) -> Initiative:
        initiative = Initiative(
            id=initiative_id,
            organization_id=self.organization_id,
            title=initiative_id.replace("-", " ").title(),
            status=status,
        )
        self.db.add(initiative)
        for owner in owners:
            self.db.add(InitiativeOwner(initiative_id=initiative_id, person_id=owner.id))
        self.db.commit()
        return initiative

    def check_in(self, initiative: Initiative, created_at: datetime) -> CheckIn:
        check_in = CheckIn(initiative_id=initiative.id, created_at=created_at)
        self.db.add(check_in)
        self.db.commit()
        return check_in

    def campaign(self, person: Person, created_at: datetime) -> FeedbackCampaign:
        campaign = FeedbackCampaign(target_person_id=person.id, created_at=created_at)
        self.db.add(campaign)
        self.db.commit()
        return campaign

    def rule(self, rule_type: str, config: dict, *, rule_id: Optional[str] = None, name: Optional[str] = None,
             enabled: bool = True) -> ToleranceRule:
        rule = ToleranceRule(
            id=rule_id or f"rule-{rule_type}",
            organization_id=self.organization_id,
            rule_type=rule_type,
            name=name or rule_type.replace("_", " ").title(),
            is_enabled=enabled,
            config=config,
        )
        self.db.add(rule)
        self.db.commit()
        return rule

    # --- assertions helpers ---

    def exceptions(self, **filters):
        stmt = select(RuleException).where(RuleException.organization_id == self.organization_id)
        for column, value in filters.items():
            stmt = stmt.where(getattr(RuleException, column) == value)
        return list(self.db.execute(stmt.order_by(RuleException.entity_id)).scalars())

    def notifications(self, **filters):
        stmt = select(Notification).where(Notification.organization_id == self.organization_id)
        for column, value in filters.items():
            stmt = stmt.where(getattr(Notification, column) == value)
        return list(self.db.execute(stmt.order_by(Notification.user_id)).scalars())


@pytest.fixture
def org(db):
    return OrgBuilder(db)
