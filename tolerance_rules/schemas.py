# tolerance_rules/schemas.py
# -*- coding: utf-8 -*-
"""
Per-type config payloads stored in organization_tolerance_rules.config.

Stored keys are camelCase; attributes are snake_case. Thresholds must be
strictly positive integers (no floats, no numeric strings). Unknown keys are
ignored.
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt


class _RuleConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class OneOnOneFrequencyConfig(_RuleConfig):
    warning_threshold_days: StrictInt = Field(alias="warningThresholdDays", gt=0)
    urgent_threshold_days: StrictInt = Field(alias="urgentThresholdDays", gt=0)
    only_full_time_employees: Optional[StrictBool] = Field(default=None, alias="onlyFullTimeEmployees")


class InitiativeCheckInConfig(_RuleConfig):
    warning_threshold_days: StrictInt = Field(alias="warningThresholdDays", gt=0)


class Feedback360Config(_RuleConfig):
    warning_threshold_months: StrictInt = Field(alias="warningThresholdMonths", gt=0)


class ManagerSpanConfig(_RuleConfig):
    max_direct_reports: StrictInt = Field(alias="maxDirectReports", gt=0)


RuleConfig = Union[
    OneOnOneFrequencyConfig,
    InitiativeCheckInConfig,
    Feedback360Config,
    ManagerSpanConfig,
]
