# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Document schema: which fields exist, their kind, and where they live."""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..artifacts.models import ZoneType
from ..config import read_yaml_mapping
from ..resources import defaults


class FieldKind(str, Enum):
    AMOUNT = "amount"
    DATE = "date"
    IDENTIFIER = "identifier"
    TEXT = "text"


class FieldSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    kind: FieldKind
    required: bool = False
    critical: bool = False
    zones: Tuple[ZoneType, ...] = ()


class DocumentSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_type: str
    fields: Tuple[FieldSpec, ...]

    @model_validator(mode="after")
    def _unique_names(self) -> "DocumentSchema":
        names = [spec.name for spec in self.fields]
        if len(names) != len(set(names)):
            raise ValueError("field names must be unique")
        return self

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    def field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(name)

    @property
    def required_fields(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields if spec.required)

    @property
    def critical_fields(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields if spec.critical)

    def gated_fields(self) -> Tuple[str, ...]:
        """Fields whose confidence the approval gate checks."""

        return tuple(spec.name for spec in self.fields if spec.required or spec.critical)


def default_schema() -> DocumentSchema:
    return DocumentSchema.model_validate(defaults.vendor_bill_schema())


def load_schema(path: Union[str, Path]) -> DocumentSchema:
    return DocumentSchema.model_validate(read_yaml_mapping(path))


__all__ = ["DocumentSchema", "FieldKind", "FieldSpec", "default_schema", "load_schema"]
