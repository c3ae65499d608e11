"""Declarative validation rules and the rule engine."""

from .engine import RuleEngine, default_ruleset, evaluate, evaluate_all, load_ruleset, parse_ruleset
from .models import (
    DateNotFutureRule,
    IdentifierFormatRule,
    RequiredFieldsRule,
    RequiresFieldRule,
    Rule,
    RuleOutcome,
    RuleSet,
    RuleSeverity,
    RuleStatus,
    TotalMathRule,
)

__all__ = [
    "DateNotFutureRule",
    "IdentifierFormatRule",
    "RequiredFieldsRule",
    "RequiresFieldRule",
    "Rule",
    "RuleEngine",
    "RuleOutcome",
    "RuleSet",
    "RuleSeverity",
    "RuleStatus",
    "TotalMathRule",
    "default_ruleset",
    "evaluate",
    "evaluate_all",
    "load_ruleset",
    "parse_ruleset",
]
