# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

import pytest
import yaml

from docresolve.artifacts.models import ZoneType
from docresolve.errors import ProfileConfigError
from docresolve.recognition.profiles import ProfileRegistry, RecognitionProfile, default_registry


def test_default_registry_routes_zones():
    registry = default_registry()

    assert [p.name for p in registry.profiles_for(ZoneType.HEADER)] == ["header-fields"]
    assert [p.name for p in registry.profiles_for("totals")] == ["totals-block"]
    assert "numbers-only-totals" in registry.names


def test_originator_override_replaces_zone_defaults():
    registry = ProfileRegistry.from_config(
        {
            "profiles": [
                {"name": "block", "psm": 6},
                {"name": "digits", "psm": 7, "whitelist": "0123456789."},
            ],
            "zone_defaults": {"totals": ["block"]},
            "originator_overrides": {"acme": {"totals": ["digits", "block"]}},
        }
    )

    assert [p.name for p in registry.profiles_for(ZoneType.TOTALS)] == ["block"]
    assert [p.name for p in registry.profiles_for(ZoneType.TOTALS, "acme")] == ["digits", "block"]
    assert [p.name for p in registry.profiles_for(ZoneType.TOTALS, "other")] == ["block"]
    assert registry.profiles_for(ZoneType.HEADER, "acme") == []


def test_unknown_profile_reference_is_rejected():
    with pytest.raises(ProfileConfigError):
        ProfileRegistry.from_config(
            {"profiles": [{"name": "block"}], "zone_defaults": {"header": ["missing"]}}
        )


def test_duplicate_profile_and_bad_values_are_rejected():
    with pytest.raises(ProfileConfigError):
        ProfileRegistry.from_config({"profiles": [{"name": "a"}, {"name": "a"}]})
    with pytest.raises(ProfileConfigError):
        ProfileRegistry.from_config({"profiles": [{"name": "a", "psm": 42}]})
    with pytest.raises(ProfileConfigError):
        default_registry().get("nope")


def test_reduced_profile():
    profile = RecognitionProfile(name="digits", psm=7, dpi=300, whitelist="0123456789")

    reduced = profile.reduced()

    assert reduced.name == "digits@reduced"
    assert reduced.reduced_fidelity is True
    assert reduced.dpi == 150
    assert reduced.psm == 6
    assert reduced.whitelist is None
    assert reduced.reduced() is reduced
    assert default_registry().get("header-fields@reduced").reduced_fidelity is True


def test_tesseract_config_string():
    profile = RecognitionProfile(name="digits", psm=7, oem=1, dpi=200, whitelist="0123456789.")
    config = profile.tesseract_config()
    assert "--oem 1" in config
    assert "--psm 7" in config
    assert "--dpi 200" in config
    assert "tessedit_char_whitelist=0123456789." in config


def test_registry_loads_from_yaml(tmp_path):
    path = tmp_path / "profiles.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "profiles": [{"name": "sparse", "psm": 11, "timeout_seconds": 2.5}],
                "zone_defaults": {"header": ["sparse"], "footer": ["sparse"]},
            }
        ),
        encoding="utf-8",
    )

    registry = ProfileRegistry.load(path)

    assert registry.get("sparse").timeout_seconds == 2.5
    assert [p.name for p in registry.profiles_for(ZoneType.FOOTER)] == ["sparse"]
