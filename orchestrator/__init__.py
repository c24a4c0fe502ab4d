from .orchestrate import (
    EvaluationResult,
    evaluate_all_organizations,
    evaluate_all_rules,
    evaluate_rule,
    load_enabled_rules,
    organizations_with_enabled_rules,
    summarize,
)

__all__ = [
    "EvaluationResult",
    "evaluate_all_organizations",
    "evaluate_all_rules",
    "evaluate_rule",
    "load_enabled_rules",
    "organizations_with_enabled_rules",
    "summarize",
]
