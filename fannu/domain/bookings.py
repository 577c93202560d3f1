# fannu/domain/bookings.py

from datetime import datetime
from typing import Optional, Sequence

from fannu.domain.clock import ensure_utc, utc_now
from fannu.domain.exceptions import ValidationError

MIN_NOTES_LENGTH = 20
MAX_NOTES_LENGTH = 2000
MAX_ATTACHMENTS = 3
MIN_CANCELLATION_REASON_LENGTH = 10


def validate_booking_request(
    start_at: datetime,
    end_at: datetime,
    budget_min: int,
    budget_max: int,
    notes: str,
    attachments: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Cross-field checks for a new booking request.

    Raises ValidationError with one message per offending field, before
    anything is written.
    """
    errors: dict[str, str] = {}
    now = ensure_utc(now or utc_now())
    start_at = ensure_utc(start_at)
    end_at = ensure_utc(end_at)

    if start_at <= now:
        errors["start_at"] = "Event date must be in the future"
    if end_at <= start_at:
        errors["end_at"] = "End time must be after start time"

    if budget_min <= 0:
        errors["budget_min"] = "Budget must be positive"
    if budget_max <= 0:
        errors["budget_max"] = "Budget must be positive"
    elif budget_max < budget_min:
        errors["budget_max"] = "Maximum budget must be >= minimum"

    if len((notes or "").strip()) < MIN_NOTES_LENGTH:
        errors["notes"] = f"Please provide at least {MIN_NOTES_LENGTH} characters"
    elif len(notes) > MAX_NOTES_LENGTH:
        errors["notes"] = f"Notes must be at most {MAX_NOTES_LENGTH} characters"

    if attachments and len(attachments) > MAX_ATTACHMENTS:
        errors["attachments"] = f"At most {MAX_ATTACHMENTS} attachments are allowed"

    if errors:
        raise ValidationError("Invalid booking request", details=errors)


def validate_cancellation_reason(reason: Optional[str]) -> str:
    reason = (reason or "").strip()
    if len(reason) < MIN_CANCELLATION_REASON_LENGTH:
        raise ValidationError(
            "Please provide a reason",
            details={"reason": f"Reason must be at least {MIN_CANCELLATION_REASON_LENGTH} characters"},
        )
    return reason
