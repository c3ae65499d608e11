# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Pure rule evaluation and the hot-reloadable active rule set.

``evaluate`` dispatches over the closed rule variants through an explicit
table that is checked for completeness at import time. The engine never
mutates a rule set: a reload parses and validates the new file first and then
replaces the reference in one assignment, so an evaluation always sees one
consistent set.
"""
from __future__ import annotations

import json
import re
import threading
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Tuple, Type, Union

import yaml
from pydantic import ValidationError

from ..errors import RuleConfigError
from ..logging_utils import get_logger, log_event
from ..resources import defaults
from .models import (
    RULE_TYPES,
    DateNotFutureRule,
    IdentifierFormatRule,
    RequiredFieldsRule,
    RequiresFieldRule,
    Rule,
    RuleOutcome,
    RuleSet,
    RuleStatus,
    TotalMathRule,
)

logger = get_logger("rules")

Values = Mapping[str, Optional[str]]


def _present(values: Values, name: str) -> bool:
    value = values.get(name)
    return value is not None and str(value).strip() != ""


def _decimal(values: Values, name: str) -> Optional[Decimal]:
    if not _present(values, name):
        return None
    try:
        return Decimal(str(values[name]))
    except InvalidOperation:
        return None


def _outcome(rule: Rule, status: RuleStatus, fields: Tuple[str, ...], message: str) -> RuleOutcome:
    if status is RuleStatus.FAIL:
        penalty = rule.penalty
    elif status is RuleStatus.WARN:
        penalty = rule.warning_penalty
    else:
        penalty = 0.0
    return RuleOutcome(
        rule_id=rule.id,
        kind=rule.kind,
        severity=rule.severity,
        status=status,
        fields=fields,
        penalty=penalty,
        message=message,
    )


def _total_math(rule: TotalMathRule, values: Values, now: datetime) -> RuleOutcome:
    total, subtotal, tax = (_decimal(values, name) for name in rule.fields)
    if total is None or subtotal is None or tax is None:
        return _outcome(rule, RuleStatus.SKIPPED, rule.fields, "total, subtotal or tax unavailable")
    diff = abs(total - (subtotal + tax))
    if diff == 0:
        return _outcome(rule, RuleStatus.PASS, rule.fields, "total equals subtotal + tax")
    message = f"total {total} differs from subtotal + tax {subtotal + tax} by {diff}"
    if diff <= Decimal(str(rule.tolerance)):
        return _outcome(rule, RuleStatus.WARN, rule.fields, f"{message} (within tolerance {rule.tolerance:.2f})")
    return _outcome(rule, RuleStatus.FAIL, rule.fields, message)


def _date_not_future(rule: DateNotFutureRule, values: Values, now: datetime) -> RuleOutcome:
    if not _present(values, rule.field):
        return _outcome(rule, RuleStatus.SKIPPED, rule.fields, f"{rule.field} unavailable")
    try:
        value = date.fromisoformat(str(values[rule.field]))
    except ValueError:
        return _outcome(rule, RuleStatus.FAIL, rule.fields, f"{rule.field} is not a date")
    today = now.astimezone(timezone.utc).date()
    if value <= today:
        return _outcome(rule, RuleStatus.PASS, rule.fields, f"{rule.field} {value} is not in the future")
    latest = (now + timedelta(hours=rule.tolerance_hours)).astimezone(timezone.utc).date()
    if value <= latest:
        return _outcome(
            rule,
            RuleStatus.WARN,
            rule.fields,
            f"{rule.field} {value} is ahead of {today} within the {rule.tolerance_hours:g}h timezone tolerance",
        )
    return _outcome(rule, RuleStatus.FAIL, rule.fields, f"{rule.field} {value} is in the future")


def _required_fields(rule: RequiredFieldsRule, values: Values, now: datetime) -> RuleOutcome:
    missing = tuple(name for name in rule.required if not _present(values, name))
    if missing:
        return _outcome(rule, RuleStatus.FAIL, missing, f"missing required fields: {', '.join(missing)}")
    return _outcome(rule, RuleStatus.PASS, rule.required, "all required fields present")


def _identifier_format(rule: IdentifierFormatRule, values: Values, now: datetime) -> RuleOutcome:
    if not _present(values, rule.field):
        return _outcome(rule, RuleStatus.SKIPPED, rule.fields, f"{rule.field} unavailable")
    value = str(values[rule.field])
    if re.fullmatch(rule.pattern, value):
        return _outcome(rule, RuleStatus.PASS, rule.fields, f"{rule.field} matches the expected format")
    return _outcome(rule, RuleStatus.FAIL, rule.fields, f"{rule.field} {value!r} does not match {rule.pattern}")


def _requires_field(rule: RequiresFieldRule, values: Values, now: datetime) -> RuleOutcome:
    if not _present(values, rule.field):
        return _outcome(rule, RuleStatus.SKIPPED, rule.fields, f"{rule.field} unavailable")
    if _present(values, rule.requires):
        return _outcome(rule, RuleStatus.PASS, rule.fields, f"{rule.requires} present with {rule.field}")
    return _outcome(rule, RuleStatus.FAIL, rule.fields, f"{rule.field} present without {rule.requires}")


_EVALUATORS: Dict[Type, Callable[..., RuleOutcome]] = {
    TotalMathRule: _total_math,
    DateNotFutureRule: _date_not_future,
    RequiredFieldsRule: _required_fields,
    IdentifierFormatRule: _identifier_format,
    RequiresFieldRule: _requires_field,
}

_unhandled = [rule_type.__name__ for rule_type in RULE_TYPES if rule_type not in _EVALUATORS]
if _unhandled:
    raise RuntimeError(f"rule variants without an evaluator: {_unhandled}")


def evaluate(rule: Rule, values: Values, now: Optional[datetime] = None) -> RuleOutcome:
    """Evaluate one rule over normalized field values. Pure and side-effect free."""

    when = now or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return _EVALUATORS[type(rule)](rule, values, when)


def evaluate_all(ruleset: RuleSet, values: Values, now: Optional[datetime] = None) -> Tuple[RuleOutcome, ...]:
    return tuple(evaluate(rule, values, now) for rule in ruleset.active)


def parse_ruleset(data: Mapping) -> RuleSet:
    try:
        return RuleSet.model_validate(data)
    except ValidationError as exc:
        raise RuleConfigError(str(exc)) from exc


def load_ruleset(path: Union[str, Path]) -> RuleSet:
    source = Path(path)
    try:
        text = source.read_text(encoding="utf-8")
        data = json.loads(text) if source.suffix.lower() == ".json" else yaml.safe_load(text)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise RuleConfigError(f"{source}: {exc}") from exc
    if not isinstance(data, dict):
        raise RuleConfigError(f"{source}: expected a mapping with a 'rules' list")
    return parse_ruleset(data)


def default_ruleset() -> RuleSet:
    return parse_ruleset(defaults.rules())


class RuleEngine:
    def __init__(self, ruleset: Optional[RuleSet] = None, *, path: Union[str, Path, None] = None) -> None:
        self._lock = threading.Lock()
        self._path: Optional[Path] = Path(path) if path else None
        self._mtime: Optional[float] = None
        if ruleset is None and self._path is not None:
            ruleset = load_ruleset(self._path)
            self._mtime = self._path.stat().st_mtime
        self._ruleset: RuleSet = ruleset if ruleset is not None else default_ruleset()

    @property
    def ruleset(self) -> RuleSet:
        return self._ruleset

    def replace(self, ruleset: RuleSet) -> RuleSet:
        with self._lock:
            previous = self._ruleset
            self._ruleset = ruleset
        log_event(
            logger,
            "ruleset_replaced",
            {"from_version": previous.version, "to_version": ruleset.version, "rules": [r.id for r in ruleset.rules]},
        )
        return previous

    def reload(self, path: Union[str, Path, None] = None) -> RuleSet:
        """Load ``path`` (or the configured file) and swap it in.

        A file that fails to parse raises :class:`RuleConfigError` and leaves
        the active rule set untouched.
        """

        target = Path(path) if path else self._path
        if target is None:
            raise RuleConfigError("no rule file configured")
        try:
            ruleset = load_ruleset(target)
        except RuleConfigError as exc:
            log_event(logger, "ruleset_reload_failed", {"path": str(target), "error": str(exc)}, level="error")
            raise
        self._path = target
        self._mtime = target.stat().st_mtime
        self.replace(ruleset)
        return ruleset

    def check_for_update(self) -> bool:
        """Reload when the configured file changed on disk."""

        if self._path is None:
            return False
        try:
            mtime = self._path.stat().st_mtime
        except OSError:
            return False
        if self._mtime is not None and mtime == self._mtime:
            return False
        self.reload(self._path)
        return True

    def evaluate(self, values: Values, now: Optional[datetime] = None) -> Tuple[RuleOutcome, ...]:
        return evaluate_all(self._ruleset, values, now)

    def rule(self, rule_id: str) -> Optional[Rule]:
        for rule in self._ruleset.rules:
            if rule.id == rule_id:
                return rule
        return None


__all__ = [
    "RuleEngine",
    "default_ruleset",
    "evaluate",
    "evaluate_all",
    "load_ruleset",
    "parse_ruleset",
]
