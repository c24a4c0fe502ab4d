# settings.py
# -*- coding: utf-8 -*-
"""
Central runtime configuration for the tolerance rule monitor.

Values come from the environment (a project-root .env is loaded first) and
can be overridden by a YAML file named in TOLERANCE_CONFIG:

    database_url: postgresql+psycopg://...
    query_batch_size: 100
    log_level: DEBUG
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

# Load .env from the project root
load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///./tolerance.db"
DEFAULT_QUERY_BATCH_SIZE = 100
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    query_batch_size: int = DEFAULT_QUERY_BATCH_SIZE
    cron_secret: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        source = os.environ if env is None else env
        settings = cls(
            database_url=source.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
            query_batch_size=int(source.get("QUERY_BATCH_SIZE", DEFAULT_QUERY_BATCH_SIZE)),
            cron_secret=source.get("CRON_SECRET") or None,
            log_level=source.get("LOG_LEVEL", "INFO").upper(),
        )
        config_path = source.get("TOLERANCE_CONFIG")
        if config_path:
            settings = settings.with_overrides(load_yaml_overrides(config_path))
        return settings

    def with_overrides(self, overrides: Dict[str, Any]) -> "Settings":
        known = {k: v for k, v in overrides.items() if k in self.__dataclass_fields__}
        if "query_batch_size" in known:
            known["query_batch_size"] = int(known["query_batch_size"])
        if "log_level" in known:
            known["log_level"] = str(known["log_level"]).upper()
        return replace(self, **known)


def load_yaml_overrides(path: str | Path) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"[tolerance] config file not found at {p}")
    with p.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"[tolerance] config file {p} must contain a mapping")
    return raw


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(level: Optional[str] = None) -> None:
    """Set up root logging once for the CLI and HTTP entry points."""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format=LOG_FORMAT,
    )
