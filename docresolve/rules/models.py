# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Declarative validation rules as a closed, tagged set of variants."""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RuleSeverity(str, Enum):
    HARD = "hard"
    SOFT = "soft"


class RuleStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    SKIPPED = "skipped"


class _RuleBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    severity: RuleSeverity
    penalty: float = Field(15.0, ge=0.0, le=100.0)
    warning_penalty: float = Field(5.0, ge=0.0, le=100.0)
    enabled: bool = True
    description: str = ""


class TotalMathRule(_RuleBase):
    kind: Literal["total_math"] = "total_math"
    total: str = "total"
    subtotal: str = "subtotal"
    tax: str = "tax"
    tolerance: float = Field(0.05, ge=0.0)

    @property
    def fields(self) -> Tuple[str, ...]:
        return (self.total, self.subtotal, self.tax)


class DateNotFutureRule(_RuleBase):
    kind: Literal["date_not_future"] = "date_not_future"
    field: str = "invoice_date"
    tolerance_hours: float = Field(24.0, ge=0.0)

    @property
    def fields(self) -> Tuple[str, ...]:
        return (self.field,)


class RequiredFieldsRule(_RuleBase):
    kind: Literal["required_fields"] = "required_fields"
    required: Tuple[str, ...] = Field(..., min_length=1, alias="fields")

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @property
    def fields(self) -> Tuple[str, ...]:
        return self.required


class IdentifierFormatRule(_RuleBase):
    kind: Literal["identifier_format"] = "identifier_format"
    field: str = "invoice_number"
    pattern: str = r"^[A-Za-z0-9][A-Za-z0-9\-_/.]{2,49}$"

    @property
    def fields(self) -> Tuple[str, ...]:
        return (self.field,)


class RequiresFieldRule(_RuleBase):
    """When ``field`` is present, ``requires`` must be present too."""

    kind: Literal["requires_field"] = "requires_field"
    field: str
    requires: str

    @property
    def fields(self) -> Tuple[str, ...]:
        return (self.field, self.requires)


Rule = Annotated[
    Union[TotalMathRule, DateNotFutureRule, RequiredFieldsRule, IdentifierFormatRule, RequiresFieldRule],
    Field(discriminator="kind"),
]

RULE_TYPES = (TotalMathRule, DateNotFutureRule, RequiredFieldsRule, IdentifierFormatRule, RequiresFieldRule)


class RuleOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule_id: str
    kind: str
    severity: RuleSeverity
    status: RuleStatus
    fields: Tuple[str, ...] = ()
    penalty: float = 0.0
    message: str = ""

    @property
    def failed(self) -> bool:
        return self.status in (RuleStatus.FAIL, RuleStatus.WARN)


class RuleSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str = "1"
    rules: Tuple[Rule, ...] = ()

    @model_validator(mode="after")
    def _unique_ids(self) -> "RuleSet":
        ids = [rule.id for rule in self.rules]
        duplicates = sorted({rule_id for rule_id in ids if ids.count(rule_id) > 1})
        if duplicates:
            raise ValueError(f"duplicate rule ids: {duplicates}")
        return self

    @property
    def active(self) -> Tuple[Rule, ...]:
        return tuple(rule for rule in self.rules if rule.enabled)


__all__ = [
    "DateNotFutureRule",
    "IdentifierFormatRule",
    "RULE_TYPES",
    "RequiredFieldsRule",
    "RequiresFieldRule",
    "Rule",
    "RuleOutcome",
    "RuleSet",
    "RuleSeverity",
    "RuleStatus",
    "TotalMathRule",
]
