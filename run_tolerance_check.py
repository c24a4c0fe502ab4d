# -*- coding: utf-8 -*-
import argparse
import json
import logging
from pathlib import Path

import models  # noqa: F401  (registers tables on Base.metadata)
from db import Base, SessionLocal, make_engine, make_session_factory
from orchestrator import evaluate_all_organizations, evaluate_all_rules, summarize
from settings import configure_logging

logger = logging.getLogger("run_tolerance_check")


def _session_factory(database_url):
    if not database_url:
        return SessionLocal
    return make_session_factory(make_engine(database_url))


def main(argv=None):
    ap = argparse.ArgumentParser(description="Evaluate tolerance rules and raise exceptions")
    target = ap.add_mutually_exclusive_group(required=True)
    target.add_argument("--org", help="Organization id to evaluate")
    target.add_argument("--all-orgs", action="store_true", help="Evaluate every organization with enabled rules")
    ap.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    ap.add_argument("--create-tables", action="store_true", help="Create missing tables before running")
    ap.add_argument("--output", default=None, help="Optional JSON output path")
    ap.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = ap.parse_args(argv)

    configure_logging(args.log_level)
    factory = _session_factory(args.database_url)

    if args.create_tables:
        Base.metadata.create_all(factory.kw["bind"])

    with factory() as db:
        if args.all_orgs:
            payload = summarize(evaluate_all_organizations(db))
        else:
            payload = evaluate_all_rules(db, args.org).to_dict()
        logger.debug("Tolerance check finished: %s", payload)

    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
    print(text)
    return 1 if payload["errors"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
