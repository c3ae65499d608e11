import pytest

from docresolve.extraction.normalize import (
    looks_like_amount,
    normalize,
    normalize_amount,
    normalize_date,
    normalize_identifier,
    normalize_text,
)
from docresolve.extraction.schema import FieldKind


@pytest.mark.parametrize(
    "text, expected",
    [
        ("$1,234.50", "1234.50"),
        ("1.234,50", "1234.50"),
        ("108", "108.00"),
        ("(42.10)", "-42.10"),
        ("€ 99,5", "99.50"),
        ("-7.25", "-7.25"),
    ],
)
def test_normalize_amount(text, expected):
    assert normalize_amount(text) == expected


@pytest.mark.parametrize("text", ["", "abc", "12.345.6x", "$"])
def test_normalize_amount_rejects_non_amounts(text):
    assert normalize_amount(text) is None


def test_looks_like_amount_needs_currency_or_cents():
    assert looks_like_amount("$100")
    assert looks_like_amount("100.00")
    assert not looks_like_amount("2024")
    assert not looks_like_amount("INV-1001")


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2024-03-05", "2024-03-05"),
        ("03/05/2024", "2024-03-05"),
        ("March 5, 2024", "2024-03-05"),
        ("5 Mar 2024", "2024-03-05"),
        ("05.03.2024", "2024-03-05"),
        ("2024-03-05.", "2024-03-05"),
    ],
)
def test_normalize_date(text, expected):
    assert normalize_date(text) == expected


def test_normalize_date_rejects_garbage():
    assert normalize_date("Date:") is None
    assert normalize_date("2024-13-40") is None


def test_normalize_identifier():
    assert normalize_identifier("inv-1001") == "INV-1001"
    assert normalize_identifier("#00123") == "00123"
    assert normalize_identifier("INVOICE") is None
    assert normalize_identifier("A1") is None


def test_normalize_text_collapses_whitespace():
    assert normalize_text("  Acme   Corporation: ") == "Acme Corporation"
    assert normalize_text("   ") is None


def test_normalize_dispatches_by_kind():
    assert normalize(FieldKind.AMOUNT, "$5") == "5.00"
    assert normalize("date", "2024-01-31") == "2024-01-31"
    assert normalize(FieldKind.IDENTIFIER, "po-77") == "PO-77"
