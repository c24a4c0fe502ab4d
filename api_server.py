# api_server.py
# -*- coding: utf-8 -*-
"""
HTTP trigger for scheduled tolerance checks.

A cron scheduler calls POST (or GET) /cron/tolerance-rules with
`Authorization: Bearer $CRON_SECRET`, optionally `?org=<id>` to limit the run
to one organization.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from sqlalchemy.orm import Session

from db import get_db
from orchestrator import evaluate_all_organizations, evaluate_all_rules, summarize
from settings import configure_logging, get_settings

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Tolerance Rule Monitor", version="1.0.0")


# -----------------------------
# Cron secret verification
# -----------------------------
def get_cron_secret() -> Optional[str]:
    return get_settings().cron_secret


def verify_cron_secret(
    authorization: Optional[str] = Header(default=None),
    secret: Optional[str] = Depends(get_cron_secret),
) -> None:
    if not secret:
        # fail safe
        logger.error("CRON_SECRET is not set; refusing to run tolerance checks")
        raise HTTPException(status_code=500, detail="Cron secret not configured")

    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(expected.encode("utf-8"), authorization.encode("utf-8")):
        logger.warning("Invalid cron secret provided")
        raise HTTPException(status_code=401, detail="Unauthorized")


# -----------------------------
# Endpoints
# -----------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.api_route("/cron/tolerance-rules", methods=["GET", "POST"], dependencies=[Depends(verify_cron_secret)])
def run_tolerance_rules(
    org: Optional[str] = Query(default=None, description="Limit the run to one organization"),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    logger.info("Starting tolerance check via API (org=%s)", org or "all")

    if org:
        return summarize({org: evaluate_all_rules(db, org)})
    return summarize(evaluate_all_organizations(db))
