"""Canonical forms for field values.

Two candidates agree when their normalized values are equal, so every
normalizer must be deterministic and return ``None`` for text that is not a
plausible value of its kind.
"""
from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional

from .schema import FieldKind

_CURRENCY_CHARS = "$€£¥"
_AMOUNT_RE = re.compile(
    r"^\(?-?[" + _CURRENCY_CHARS + r"]?-?(?:\d{1,3}(?:[,.\s]\d{3})+|\d+)(?:[.,]\d{1,2})?\)?$"
)
_IDENTIFIER_RE = re.compile(r"^[A-Z0-9][A-Z0-9\-_/.]{2,49}$")

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%m-%d-%Y",
    "%d.%m.%Y",
    "%m/%d/%y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
)


def looks_like_amount(text: str) -> bool:
    """Amount-shaped: carries a currency sign or a decimal part."""

    compact = text.strip().replace(" ", "")
    if not compact or not _AMOUNT_RE.match(compact):
        return False
    return any(ch in compact for ch in _CURRENCY_CHARS) or bool(re.search(r"[.,]\d{2}\)?$", compact))


def normalize_amount(text: str) -> Optional[str]:
    compact = (text or "").strip().replace(" ", "")
    if not compact or not _AMOUNT_RE.match(compact):
        return None
    negative = compact.startswith("(") and compact.endswith(")") or "-" in compact
    digits = compact.strip("()").replace("-", "")
    for ch in _CURRENCY_CHARS:
        digits = digits.replace(ch, "")
    # 1.234,56 -> decimal comma; 1,234.56 / 1234.56 -> decimal point
    if re.search(r",\d{1,2}$", digits) and ("." in digits or digits.count(",") == 1):
        digits = digits.replace(".", "").replace(",", ".")
    else:
        digits = digits.replace(",", "")
        if digits.count(".") > 1:
            head, _, tail = digits.rpartition(".")
            digits = head.replace(".", "") + "." + tail
    try:
        value = Decimal(digits)
    except InvalidOperation:
        return None
    if negative:
        value = -value
    return f"{value:.2f}"


def normalize_date(text: str) -> Optional[str]:
    cleaned = re.sub(r"\s+", " ", (text or "").strip().strip(".,;:"))
    if not cleaned:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def normalize_identifier(text: str) -> Optional[str]:
    cleaned = (text or "").strip().strip(":;,#").lstrip("#").upper()
    if not cleaned or not any(ch.isdigit() for ch in cleaned):
        return None
    if not _IDENTIFIER_RE.match(cleaned):
        return None
    return cleaned


def normalize_text(text: str) -> Optional[str]:
    cleaned = re.sub(r"\s+", " ", (text or "").strip()).strip(":;,")
    return cleaned or None


NORMALIZERS: Dict[FieldKind, Callable[[str], Optional[str]]] = {
    FieldKind.AMOUNT: normalize_amount,
    FieldKind.DATE: normalize_date,
    FieldKind.IDENTIFIER: normalize_identifier,
    FieldKind.TEXT: normalize_text,
}


def normalize(kind: FieldKind, text: str) -> Optional[str]:
    return NORMALIZERS[FieldKind(kind)](text)


__all__ = [
    "DATE_FORMATS",
    "NORMALIZERS",
    "looks_like_amount",
    "normalize",
    "normalize_amount",
    "normalize_date",
    "normalize_identifier",
    "normalize_text",
]
