# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Built-in vendor-bill schema, lexicon, recognition profiles and rules.

These are plain mappings so the same shapes can be supplied as YAML files at
deploy time (see ``DOCRESOLVE_CONFIG`` and the ``*_path`` settings).
"""
from __future__ import annotations

from copy import deepcopy
from typing import Any, Dict

VENDOR_BILL_SCHEMA: Dict[str, Any] = {
    "document_type": "vendor_bill",
    "fields": [
        {"name": "invoice_number", "kind": "identifier", "required": True, "critical": True, "zones": ["header"]},
        {"name": "invoice_date", "kind": "date", "required": True, "critical": True, "zones": ["header"]},
        {"name": "vendor_name", "kind": "text", "required": True, "critical": False, "zones": ["header"]},
        {"name": "due_date", "kind": "date", "zones": ["header"]},
        {"name": "po_number", "kind": "identifier", "zones": ["header"]},
        {"name": "subtotal", "kind": "amount", "zones": ["totals"]},
        {"name": "tax", "kind": "amount", "zones": ["totals"]},
        {"name": "total", "kind": "amount", "required": True, "critical": True, "zones": ["totals"]},
    ],
}

LEXICON: Dict[str, Any] = {
    "fuzzy_threshold": 85.0,
    "label_threshold": 80.0,
    "fields": {
        "invoice_number": {
            "synonyms": ["invoice number", "invoice no", "invoice #", "invoice", "inv no", "inv #", "bill number", "bill no"],
        },
        "invoice_date": {
            "synonyms": ["invoice date", "date", "bill date", "date of issue", "issued"],
        },
        "due_date": {
            "synonyms": ["due date", "payment due", "due"],
        },
        "po_number": {
            "synonyms": ["po number", "po no", "po #", "purchase order"],
        },
        "vendor_name": {
            "synonyms": ["vendor", "from", "supplier", "bill from", "sold by"],
            "known_values": [],
        },
        "subtotal": {
            "synonyms": ["subtotal", "sub total", "net amount", "amount before tax"],
        },
        "tax": {
            "synonyms": ["tax", "sales tax", "vat", "gst", "tax amount"],
        },
        "total": {
            "synonyms": ["total", "total due", "amount due", "balance due", "grand total", "total amount"],
        },
    },
    "originator_overrides": {},
}

RECOGNITION_PROFILES: Dict[str, Any] = {
    "profiles": [
        {"name": "full-page-default", "psm": 3, "oem": 3, "dpi": 300, "timeout_seconds": 30.0},
        {"name": "header-fields", "psm": 11, "oem": 3, "dpi": 300, "timeout_seconds": 10.0},
        {
            "name": "numbers-only-totals",
            "psm": 7,
            "oem": 3,
            "dpi": 300,
            "whitelist": "0123456789.$,",
            "timeout_seconds": 5.0,
        },
        {"name": "totals-block", "psm": 6, "oem": 3, "dpi": 300, "timeout_seconds": 10.0},
        {"name": "table-dense", "psm": 6, "oem": 3, "dpi": 300, "timeout_seconds": 20.0},
        {"name": "single-word", "psm": 8, "oem": 3, "dpi": 300, "timeout_seconds": 3.0},
    ],
    "zone_defaults": {
        "header": ["header-fields"],
        "totals": ["totals-block"],
        "line_items": ["table-dense"],
        "footer": ["full-page-default"],
        "full_page": ["full-page-default"],
    },
    "originator_overrides": {},
}

RULES: Dict[str, Any] = {
    "version": "1",
    "rules": [
        {
            "id": "total_equals_subtotal_plus_tax",
            "kind": "total_math",
            "severity": "hard",
            "tolerance": 0.05,
            "penalty": 15.0,
            "warning_penalty": 5.0,
            "description": "Total must equal subtotal plus tax",
        },
        {
            "id": "invoice_date_not_future",
            "kind": "date_not_future",
            "severity": "hard",
            "field": "invoice_date",
            "tolerance_hours": 24.0,
            "penalty": 15.0,
            "description": "Invoice date cannot be in the future",
        },
        {
            "id": "required_fields_present",
            "kind": "required_fields",
            "severity": "hard",
            "fields": ["invoice_number", "invoice_date", "vendor_name", "total"],
            "penalty": 0.0,
            "description": "Required fields must be present",
        },
        {
            "id": "invoice_number_format",
            "kind": "identifier_format",
            "severity": "soft",
            "field": "invoice_number",
            "penalty": 10.0,
            "description": "Invoice number should be alphanumeric with - _ / separators",
        },
        {
            "id": "vendor_with_invoice_number",
            "kind": "requires_field",
            "severity": "soft",
            "field": "invoice_number",
            "requires": "vendor_name",
            "penalty": 15.0,
            "description": "An invoice number needs a vendor to be meaningful",
        },
    ],
}


def vendor_bill_schema() -> Dict[str, Any]:
    return deepcopy(VENDOR_BILL_SCHEMA)


def lexicon() -> Dict[str, Any]:
    return deepcopy(LEXICON)


def recognition_profiles() -> Dict[str, Any]:
    return deepcopy(RECOGNITION_PROFILES)


def rules() -> Dict[str, Any]:
    return deepcopy(RULES)


__all__ = [
    "LEXICON",
    "RECOGNITION_PROFILES",
    "RULES",
    "VENDOR_BILL_SCHEMA",
    "lexicon",
    "recognition_profiles",
    "rules",
    "vendor_bill_schema",
]
