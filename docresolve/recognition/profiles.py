# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Named recognition profiles and the zone/originator routing table."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..artifacts.models import ZoneType
from ..config import read_yaml_mapping
from ..errors import ProfileConfigError
from ..resources import defaults

REDUCED_SUFFIX = "@reduced"


class RecognitionProfile(BaseModel):
    """Engine settings for one pass: layout mode, resolution and language."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    psm: int = Field(3, ge=0, le=13)
    oem: int = Field(3, ge=0, le=3)
    dpi: int = Field(300, ge=72)
    language: str = "eng"
    whitelist: Optional[str] = None
    timeout_seconds: float = Field(30.0, gt=0)
    reduced_fidelity: bool = False

    def tesseract_config(self) -> str:
        config = f"--oem {self.oem} --psm {self.psm} --dpi {self.dpi}"
        if self.whitelist:
            config += f" -c tessedit_char_whitelist={self.whitelist}"
        return config

    def reduced(self) -> "RecognitionProfile":
        """Cheaper retry profile: half resolution, generic block layout, no whitelist."""

        if self.reduced_fidelity:
            return self
        return self.model_copy(
            update={
                "name": f"{self.name}{REDUCED_SUFFIX}",
                "dpi": max(72, self.dpi // 2),
                "psm": 6,
                "whitelist": None,
                "reduced_fidelity": True,
            }
        )


class ProfileRegistry:
    def __init__(
        self,
        profiles: Mapping[str, RecognitionProfile],
        zone_defaults: Mapping[ZoneType, List[str]],
        originator_overrides: Optional[Mapping[str, Mapping[ZoneType, List[str]]]] = None,
    ) -> None:
        self._profiles = dict(profiles)
        self._zone_defaults = {ZoneType(k): list(v) for k, v in zone_defaults.items()}
        self._overrides = {
            originator: {ZoneType(k): list(v) for k, v in table.items()}
            for originator, table in (originator_overrides or {}).items()
        }
        self.validate()

    @classmethod
    def from_config(cls, data: Mapping[str, Any]) -> "ProfileRegistry":
        try:
            profiles: Dict[str, RecognitionProfile] = {}
            for raw in data.get("profiles") or []:
                profile = RecognitionProfile.model_validate(raw)
                if profile.name in profiles:
                    raise ProfileConfigError(f"duplicate profile name: {profile.name}")
                profiles[profile.name] = profile
            zone_defaults = {ZoneType(k): list(v) for k, v in (data.get("zone_defaults") or {}).items()}
            overrides = {
                str(originator): {ZoneType(k): list(v) for k, v in (table or {}).items()}
                for originator, table in (data.get("originator_overrides") or {}).items()
            }
        except (ValidationError, ValueError) as exc:
            raise ProfileConfigError(str(exc)) from exc
        return cls(profiles, zone_defaults, overrides)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ProfileRegistry":
        return cls.from_config(read_yaml_mapping(path))

    def validate(self) -> None:
        tables = [self._zone_defaults, *self._overrides.values()]
        for table in tables:
            for zone_type, names in table.items():
                for name in names:
                    if name not in self._profiles:
                        raise ProfileConfigError(f"zone {zone_type.value} references unknown profile {name!r}")

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._profiles)

    def get(self, name: str) -> RecognitionProfile:
        base = name[: -len(REDUCED_SUFFIX)] if name.endswith(REDUCED_SUFFIX) else name
        try:
            profile = self._profiles[base]
        except KeyError:
            raise ProfileConfigError(f"unknown recognition profile: {name!r}") from None
        return profile.reduced() if base != name else profile

    def profiles_for(self, zone_type: ZoneType, originator_id: Optional[str] = None) -> List[RecognitionProfile]:
        """Profiles to run on ``zone_type``; originator overrides replace the defaults."""

        zone_type = ZoneType(zone_type)
        if originator_id and zone_type in self._overrides.get(originator_id, {}):
            names = self._overrides[originator_id][zone_type]
        else:
            names = self._zone_defaults.get(zone_type, [])
        return [self._profiles[name] for name in names]


def default_registry() -> ProfileRegistry:
    return ProfileRegistry.from_config(defaults.recognition_profiles())


__all__ = ["ProfileRegistry", "RecognitionProfile", "REDUCED_SUFFIX", "default_registry"]
