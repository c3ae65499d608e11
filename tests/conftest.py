# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Pytest configuration shared across the suite."""

from __future__ import annotations

import io
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from PIL import Image, ImageDraw


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


HEADER_TEXT = "Vendor: Acme Corporation\nInvoice No: INV-1001\nDate: 2024-03-05"
TOTALS_TEXT = "Subtotal: $100.00\nTax: $8.00\nTotal: $108.00"


def render_page(width: int = 400, height: int = 560) -> bytes:
    """A white page with a few dark bars standing in for printed lines."""

    image = Image.new("RGB", (width, height), "white")
    draw = ImageDraw.Draw(image)
    for top in range(20, height - 20, 40):
        draw.rectangle([30, top, width - 60, top + 8], fill="black")
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def page_png() -> bytes:
    return render_page()


@pytest.fixture
def bill_script() -> dict:
    """Engine script for a consistent bill, keyed by zone type."""

    return {"header": HEADER_TEXT, "totals": TOTALS_TEXT}


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc)
