# tolerance_rules/registry.py
# -*- coding: utf-8 -*-
"""
Single entry-point mapping a stored `rule_type` to its rule module.

The set of rule types is closed; adding one means adding a module under
tolerance_rules/rules and an entry here.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Type

from pydantic import BaseModel

from errors import UnknownRuleTypeError
from tolerance_rules.base import RuleModule
from tolerance_rules.rules import (
    feedback_360_rule,
    initiative_checkin_rule,
    manager_span_rule,
    one_on_one_frequency_rule,
)
from tolerance_rules.schemas import RuleConfig

RULE_REGISTRY: Dict[str, RuleModule] = {
    module.rule_type: module
    for module in (
        one_on_one_frequency_rule,
        initiative_checkin_rule,
        feedback_360_rule,
        manager_span_rule,
    )
}

RULE_TYPES = tuple(RULE_REGISTRY)


def get_rule_module(rule_type: str) -> RuleModule:
    module = RULE_REGISTRY.get(rule_type)
    if module is None:
        raise UnknownRuleTypeError(rule_type)
    return module


def get_rule_config_schema(rule_type: str) -> Type[BaseModel]:
    return get_rule_module(rule_type).config_schema


def parse_rule_config(rule_type: str, raw: Any, rule_id: Optional[str] = None) -> RuleConfig:
    """Narrow a stored JSON config to its typed model. Raises InvalidRuleConfigError."""
    return get_rule_module(rule_type).parse_config(raw, rule_id=rule_id)


def validate_config_for_rule_type(rule_type: str, raw: Any) -> Dict[str, Any]:
    """
    Validate a config before it is stored on a rule; returns the normalized
    JSON payload (camelCase keys, unknown keys dropped).
    """
    return parse_rule_config(rule_type, raw).to_json()
