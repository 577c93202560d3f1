# tests/unit/test_quotes.py

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from fannu.domain.exceptions import ValidationError
from fannu.domain.quotes import (
    NON_REFUNDABLE_TERMS,
    REFUNDABLE_TERMS,
    QuoteStatus,
    compute_deposit_amount,
    compute_expires_at,
    is_quote_usable,
    render_terms_text,
    validate_quote_input,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------
# DEPOSIT AMOUNT
# ---------------------

@pytest.mark.parametrize(
    "total, percent, expected",
    [
        (30000, 30, 9000),
        (100, 100, 100),
        (1000, 10, 100),
        (1005, 10, 101),   # 100.5 rounds up
        (1004, 10, 100),   # 100.4 rounds down
        (333, 33, 110),    # 109.89
    ],
)
def test_compute_deposit_amount(total, percent, expected):
    assert compute_deposit_amount(total, percent) == expected


# ---------------------
# VALIDATION
# ---------------------

def test_valid_quote_input_passes():
    validate_quote_input(30000, 30, 48, None)


@pytest.mark.parametrize("percent", [9, 101, 0])
def test_deposit_percent_out_of_range(percent):
    with pytest.raises(ValidationError) as exc_info:
        validate_quote_input(30000, percent, 48, None)

    assert "deposit_percent" in exc_info.value.details


@pytest.mark.parametrize("hours", [0, 12, 36, 96, 200])
def test_expiry_hours_must_be_allowed_value(hours):
    with pytest.raises(ValidationError) as exc_info:
        validate_quote_input(30000, 30, hours, None)

    assert "expiry_hours" in exc_info.value.details


def test_total_must_be_positive_integer():
    with pytest.raises(ValidationError) as exc_info:
        validate_quote_input(0, 30, 48, None)

    assert "total_amount" in exc_info.value.details


def test_reports_every_bad_field():
    with pytest.raises(ValidationError) as exc_info:
        validate_quote_input(-1, 5, 1, None)

    assert set(exc_info.value.details) == {"total_amount", "deposit_percent", "expiry_hours"}


# ---------------------
# EXPIRY
# ---------------------

@pytest.mark.parametrize("hours", [24, 48, 72, 168])
def test_compute_expires_at(hours):
    assert compute_expires_at(hours, NOW) == NOW + timedelta(hours=hours)


def test_active_quote_past_expiry_is_not_usable():
    quote = SimpleNamespace(status=QuoteStatus.ACTIVE, expires_at=NOW - timedelta(seconds=1))
    assert not is_quote_usable(quote, NOW)


def test_expiry_boundary_is_exclusive():
    quote = SimpleNamespace(status=QuoteStatus.ACTIVE, expires_at=NOW)
    assert not is_quote_usable(quote, NOW)


def test_naive_timestamps_are_treated_as_utc():
    quote = SimpleNamespace(
        status=QuoteStatus.ACTIVE,
        expires_at=(NOW + timedelta(hours=1)).replace(tzinfo=None),
    )
    assert is_quote_usable(quote, NOW)


def test_non_active_quote_is_not_usable():
    for status in (QuoteStatus.SUPERSEDED, QuoteStatus.ACCEPTED, QuoteStatus.DECLINED):
        quote = SimpleNamespace(status=status, expires_at=NOW + timedelta(days=1))
        assert not is_quote_usable(quote, NOW)


# ---------------------
# TERMS
# ---------------------

def test_terms_text_refundable():
    assert render_terms_text(True) == REFUNDABLE_TERMS


def test_terms_text_non_refundable_with_creator_terms():
    text = render_terms_text(False, "  Sound system provided by the venue.  ")
    assert text == f"{NON_REFUNDABLE_TERMS}\n\nSound system provided by the venue."


def test_terms_text_meets_minimum_length():
    assert len(render_terms_text(True)) >= 20
    assert len(render_terms_text(False)) >= 20
