import threading

import pytest
from sqlalchemy import create_engine, event, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.pool import StaticPool

import orchestrator.orchestrate as orchestrate
import tolerance_rules.base as base
from conftest import NOW, OrgBuilder, days_ago
from db import Base, make_session_factory
from models import (
    ENTITY_PERSON,
    FEEDBACK_360,
    INITIATIVE_CHECKIN,
    MANAGER_SPAN,
    ONE_ON_ONE_FREQUENCY,
    STATUS_RESOLVED,
    RuleException,
    ToleranceRule,
)
from orchestrator import evaluate_all_rules
from tolerance_rules.base import create_exception_safely, get_existing_exceptions
from tolerance_rules.registry import get_rule_module
from tolerance_rules.rules import one_on_one_frequency


def _seed_everything(org):
    manager = org.person("manager")
    for i in range(6):
        org.person(f"report{i}", manager=manager)
    org.initiative("launch", owners=[manager])
    return {
        ONE_ON_ONE_FREQUENCY: org.rule(ONE_ON_ONE_FREQUENCY, {"warningThresholdDays": 7, "urgentThresholdDays": 14}),
        INITIATIVE_CHECKIN: org.rule(INITIATIVE_CHECKIN, {"warningThresholdDays": 14}),
        FEEDBACK_360: org.rule(FEEDBACK_360, {"warningThresholdMonths": 6}),
        MANAGER_SPAN: org.rule(MANAGER_SPAN, {"maxDirectReports": 5}),
    }


@pytest.mark.parametrize(
    "rule_type, expected",
    [
        (ONE_ON_ONE_FREQUENCY, 6),
        (INITIATIVE_CHECKIN, 1),
        (FEEDBACK_360, 7),
        (MANAGER_SPAN, 1),
    ],
)
def test_second_run_creates_nothing(db, org, rule_type, expected):
    rule = _seed_everything(org)[rule_type]
    module = get_rule_module(rule_type)

    assert module.evaluate(db, rule, now=NOW) == expected
    notifications_after_first = len(org.notifications())

    assert module.evaluate(db, rule, now=NOW) == 0
    assert len(org.exceptions(rule_id=rule.id)) == expected
    assert len(org.notifications()) == notifications_after_first


def test_stale_pre_check_is_caught_by_transactional_recheck(db, org, monkeypatch):
    manager = org.person("manager")
    org.person("report", manager=manager)
    rule = org.rule(ONE_ON_ONE_FREQUENCY, {"warningThresholdDays": 7, "urgentThresholdDays": 14})
    assert one_on_one_frequency.one_on_one_frequency_rule.evaluate(db, rule, now=NOW) == 1

    # another run's exception is invisible to the bulk pre-check
    monkeypatch.setattr(one_on_one_frequency, "get_existing_exceptions", lambda *a, **kw: set())

    assert one_on_one_frequency.one_on_one_frequency_rule.evaluate(db, rule, now=NOW) == 0
    assert len(org.exceptions()) == 1
    assert len(org.notifications()) == 1


def test_unique_violation_is_treated_as_existing(db, org, monkeypatch):
    manager = org.person("manager")
    org.person("report", manager=manager)
    rule = org.rule(ONE_ON_ONE_FREQUENCY, {"warningThresholdDays": 7, "urgentThresholdDays": 14})
    assert one_on_one_frequency.one_on_one_frequency_rule.evaluate(db, rule, now=NOW) == 1

    # both checks miss the concurrent insert; the unique index still holds
    monkeypatch.setattr(one_on_one_frequency, "get_existing_exceptions", lambda *a, **kw: set())
    monkeypatch.setattr(base, "find_active_exception", lambda *a, **kw: None)

    assert one_on_one_frequency.one_on_one_frequency_rule.evaluate(db, rule, now=NOW) == 0
    assert len(org.exceptions()) == 1
    assert len(org.notifications()) == 1


class _SerializationFailure(Exception):
    pgcode = "40001"


class _DiskFull(Exception):
    pgcode = "53100"


def test_serialization_failure_counts_as_duplicate(db, org, monkeypatch):
    org.person("ceo")
    rule = org.rule(FEEDBACK_360, {"warningThresholdMonths": 6})

    def conflict(*args, **kwargs):
        raise OperationalError("SELECT ...", {}, _SerializationFailure())

    monkeypatch.setattr(base, "find_active_exception", conflict)

    result = create_exception_safely(
        db, rule, entity_type=ENTITY_PERSON, entity_id="ceo", severity="warning", message="m"
    )

    assert result is None
    assert org.exceptions() == []


def test_other_database_errors_propagate(db, org, monkeypatch):
    org.person("ceo")
    rule = org.rule(FEEDBACK_360, {"warningThresholdMonths": 6})

    def broken(*args, **kwargs):
        raise OperationalError("SELECT ...", {}, _DiskFull())

    monkeypatch.setattr(base, "find_active_exception", broken)

    with pytest.raises(OperationalError):
        create_exception_safely(
            db, rule, entity_type=ENTITY_PERSON, entity_id="ceo", severity="warning", message="m"
        )


class _UniqueViolation(Exception):
    pgcode = "23505"


class _ForeignKeyViolation(Exception):
    pgcode = "23503"


def test_postgres_unique_violation_counts_as_duplicate(db, org, monkeypatch):
    org.person("ceo")
    rule = org.rule(FEEDBACK_360, {"warningThresholdMonths": 6})

    def conflict(*args, **kwargs):
        raise IntegrityError("INSERT ...", {}, _UniqueViolation())

    monkeypatch.setattr(base, "find_active_exception", conflict)

    assert create_exception_safely(
        db, rule, entity_type=ENTITY_PERSON, entity_id="ceo", severity="warning", message="m"
    ) is None


def test_postgres_foreign_key_violation_propagates(db, org, monkeypatch):
    org.person("ceo")
    rule = org.rule(FEEDBACK_360, {"warningThresholdMonths": 6})

    def dangling(*args, **kwargs):
        raise IntegrityError("INSERT ...", {}, _ForeignKeyViolation())

    monkeypatch.setattr(base, "find_active_exception", dangling)

    with pytest.raises(IntegrityError):
        create_exception_safely(
            db, rule, entity_type=ENTITY_PERSON, entity_id="ceo", severity="warning", message="m"
        )


@pytest.fixture
def fk_db():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    session = make_session_factory(engine)()
    yield session
    session.close()
    engine.dispose()


def test_exception_for_deleted_rule_is_an_error(fk_db):
    OrgBuilder(fk_db).person("ceo")
    # loaded before an admin deleted it; no row backs it any more
    deleted = ToleranceRule(
        id="deleted-rule",
        organization_id="org-1",
        rule_type=FEEDBACK_360,
        name="Deleted",
        config={"warningThresholdMonths": 6},
    )

    with pytest.raises(IntegrityError):
        create_exception_safely(
            fk_db, deleted, entity_type=ENTITY_PERSON, entity_id="ceo", severity="warning", message="m"
        )

    assert fk_db.execute(select(RuleException)).first() is None


def test_rule_deleted_mid_run_is_reported_by_orchestrator(fk_db, monkeypatch):
    org = OrgBuilder(fk_db)
    org.person("ceo")
    org.rule(FEEDBACK_360, {"warningThresholdMonths": 6}, rule_id="doomed", name="Doomed")
    real_evaluate_rule = orchestrate.evaluate_rule

    def deleted_after_loading(db, rule, now=None):
        db.execute(ToleranceRule.__table__.delete().where(ToleranceRule.__table__.c.id == rule.id))
        db.commit()
        return real_evaluate_rule(db, rule, now=now)

    monkeypatch.setattr(orchestrate, "evaluate_rule", deleted_after_loading)

    result = evaluate_all_rules(fk_db, "org-1", now=NOW)

    assert result.exceptions_created == 0
    (error,) = result.errors
    assert error.startswith("Error evaluating rule doomed (Doomed): ")
    assert fk_db.execute(select(RuleException)).first() is None


def test_resolved_exception_does_not_block_a_new_one(db, org):
    org.person("ceo")
    rule = org.rule(FEEDBACK_360, {"warningThresholdMonths": 6})
    first = create_exception_safely(
        db, rule, entity_type=ENTITY_PERSON, entity_id="ceo", severity="warning", message="first"
    )
    first.status = STATUS_RESOLVED
    db.commit()

    second = create_exception_safely(
        db, rule, entity_type=ENTITY_PERSON, entity_id="ceo", severity="warning", message="second"
    )

    assert second is not None
    assert second.id != first.id
    assert [e.message for e in org.exceptions(status="active")] == ["second"]


def test_same_entity_under_different_rules_is_allowed(db, org):
    org.person("ceo")
    lenient = org.rule(FEEDBACK_360, {"warningThresholdMonths": 12}, rule_id="lenient")
    strict = org.rule(FEEDBACK_360, {"warningThresholdMonths": 3}, rule_id="strict")

    for rule in (lenient, strict):
        assert get_rule_module(FEEDBACK_360).evaluate(db, rule, now=NOW) == 1

    assert sorted(e.rule_id for e in org.exceptions()) == ["lenient", "strict"]


def test_get_existing_exceptions(db, org):
    org.person("ceo")
    org.person("cto")
    rule = org.rule(FEEDBACK_360, {"warningThresholdMonths": 6})
    create_exception_safely(db, rule, entity_type=ENTITY_PERSON, entity_id="ceo", severity="warning", message="m")

    assert get_existing_exceptions(db, rule.id, "org-1", ENTITY_PERSON, ["ceo", "cto", "ceo"]) == {"ceo"}
    assert get_existing_exceptions(db, rule.id, "org-1", "Initiative", ["ceo"]) == set()
    assert get_existing_exceptions(db, rule.id, "org-2", ENTITY_PERSON, ["ceo"]) == set()
    assert get_existing_exceptions(db, rule.id, "org-1", ENTITY_PERSON, []) == set()


def test_recent_activity_after_resolution_is_not_reflagged(db, org):
    manager = org.person("manager")
    report = org.person("report", manager=manager)
    rule = org.rule(ONE_ON_ONE_FREQUENCY, {"warningThresholdDays": 7, "urgentThresholdDays": 14})
    assert get_rule_module(ONE_ON_ONE_FREQUENCY).evaluate(db, rule, now=NOW) == 1

    (exception,) = org.exceptions()
    exception.status = STATUS_RESOLVED
    db.commit()
    org.one_on_one(manager, report, days_ago(1))

    assert get_rule_module(ONE_ON_ONE_FREQUENCY).evaluate(db, rule, now=NOW) == 0


def test_concurrent_runs_leave_one_active_exception(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    factory = make_session_factory(engine)
    with factory() as session:
        org = OrgBuilder(session)
        manager = org.person("manager")
        org.person("report", manager=manager)
        org.rule(ONE_ON_ONE_FREQUENCY, {"warningThresholdDays": 7, "urgentThresholdDays": 14}, rule_id="cadence")

    workers = 4
    barrier = threading.Barrier(workers)
    counts, errors = [], []

    def run():
        with factory() as session:
            rule = session.get(ToleranceRule, "cadence")
            barrier.wait()
            try:
                counts.append(one_on_one_frequency.one_on_one_frequency_rule.evaluate(session, rule, now=NOW))
            except Exception as e:  # surfaced by the assertions below
                errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    assert len(counts) == workers
    assert sum(counts) == 1
    with factory() as session:
        rows = session.execute(select(RuleException).where(RuleException.status == "active")).scalars().all()
    assert [r.entity_id for r in rows] == ["manager-report"]
    engine.dispose()
