# errors.py
from __future__ import annotations

from typing import Optional


class ToleranceRuleError(Exception):
    """Base class for errors raised while configuring or evaluating rules."""


class UnknownRuleTypeError(ToleranceRuleError):
    def __init__(self, rule_type: str) -> None:
        super().__init__(f"No evaluator registered for rule type '{rule_type}'")
        self.rule_type = rule_type


class InvalidRuleConfigError(ToleranceRuleError):
    def __init__(self, rule_type: str, detail: str, rule_id: Optional[str] = None) -> None:
        where = f" for rule {rule_id}" if rule_id else ""
        super().__init__(f"Invalid {rule_type} config{where}: {detail}")
        self.rule_type = rule_type
        self.detail = detail
        self.rule_id = rule_id
