# fannu/domain/quotes.py

from datetime import datetime, timedelta
from enum import Enum
from typing import FrozenSet, Optional

from fannu.domain.clock import ensure_utc, utc_now
from fannu.domain.exceptions import ValidationError


class QuoteStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    SUPERSEDED = "SUPERSEDED"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"


ALLOWED_EXPIRY_HOURS: FrozenSet[int] = frozenset({24, 48, 72, 168})
MIN_DEPOSIT_PERCENT = 10
MAX_DEPOSIT_PERCENT = 100
MIN_TERMS_LENGTH = 20
MAX_ADDITIONAL_TERMS_LENGTH = 5000

REFUNDABLE_TERMS = (
    "The deposit is refundable if the booking is cancelled at least "
    "24 hours before the event start time."
)
NON_REFUNDABLE_TERMS = "The deposit is non-refundable once paid."


def validate_quote_input(
    total_amount: int,
    deposit_percent: int,
    expiry_hours: int,
    additional_terms: Optional[str],
) -> None:
    errors: dict[str, str] = {}

    if isinstance(total_amount, bool) or not isinstance(total_amount, int) or total_amount <= 0:
        errors["total_amount"] = "Amount must be a positive integer"
    if (
        isinstance(deposit_percent, bool)
        or not isinstance(deposit_percent, int)
        or not MIN_DEPOSIT_PERCENT <= deposit_percent <= MAX_DEPOSIT_PERCENT
    ):
        errors["deposit_percent"] = (
            f"Deposit percent must be between {MIN_DEPOSIT_PERCENT} "
            f"and {MAX_DEPOSIT_PERCENT}"
        )
    if expiry_hours not in ALLOWED_EXPIRY_HOURS:
        errors["expiry_hours"] = (
            f"Expiry must be one of {sorted(ALLOWED_EXPIRY_HOURS)} hours"
        )
    if additional_terms and len(additional_terms) > MAX_ADDITIONAL_TERMS_LENGTH:
        errors["additional_terms"] = (
            f"Additional terms must be at most {MAX_ADDITIONAL_TERMS_LENGTH} characters"
        )

    if errors:
        raise ValidationError("Invalid quote", details=errors)


def compute_deposit_amount(total_amount: int, deposit_percent: int) -> int:
    """
    round(total * percent / 100), halves rounded up.

    Integer arithmetic only; amounts are minor currency units.
    """
    return (total_amount * deposit_percent + 50) // 100


def compute_expires_at(expiry_hours: int, now: Optional[datetime] = None) -> datetime:
    return (now or utc_now()) + timedelta(hours=expiry_hours)


def render_terms_text(deposit_refundable: bool, additional_terms: Optional[str] = None) -> str:
    policy = REFUNDABLE_TERMS if deposit_refundable else NON_REFUNDABLE_TERMS
    extra = (additional_terms or "").strip()
    if not extra:
        return policy
    return f"{policy}\n\n{extra}"


def is_expired(expires_at: datetime, now: Optional[datetime] = None) -> bool:
    return ensure_utc(now or utc_now()) >= ensure_utc(expires_at)


def is_quote_usable(quote, now: Optional[datetime] = None) -> bool:
    """
    True iff the quote is ACTIVE and not yet past expires_at.

    A stored ACTIVE status is not enough: the expiry sweep is optional, so
    the timestamp is what decides.
    """
    return quote.status == QuoteStatus.ACTIVE and not is_expired(quote.expires_at, now)
