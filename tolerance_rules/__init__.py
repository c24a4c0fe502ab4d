from .base import RuleModule, PairKey, create_exception_safely, get_existing_exceptions
from .registry import (
    RULE_REGISTRY,
    RULE_TYPES,
    get_rule_module,
    get_rule_config_schema,
    parse_rule_config,
    validate_config_for_rule_type,
)

__all__ = [
    "RuleModule",
    "PairKey",
    "create_exception_safely",
    "get_existing_exceptions",
    "RULE_REGISTRY",
    "RULE_TYPES",
    "get_rule_module",
    "get_rule_config_schema",
    "parse_rule_config",
    "validate_config_for_rule_type",
]
