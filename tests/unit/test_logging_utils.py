"""Unit tests for logging helpers."""

import pytest

from brokerlink.utils import mask_amount, mask_secret


@pytest.mark.parametrize("amount,expected", [
    (12.5, "~$12.50"),
    (5000, "~$5.00k"),
    (2_500_000, "~$2.50M"),
    (-1000, "-~$1.00k"),
])
def test_mask_amount(amount, expected):
    assert mask_amount(amount) == expected


def test_mask_amount_redacted():
    assert mask_amount(123.0, show_relative=False) == "[REDACTED]"


def test_mask_secret():
    assert mask_secret(None) == "<empty>"
    assert mask_secret("") == "<empty>"
    assert mask_secret("abc") == "***(3 chars)"
    assert mask_secret("sessionid=abc123") == "sess***(16 chars)"
    assert mask_secret("sessionid=abc123", visible=0) == "***(16 chars)"
