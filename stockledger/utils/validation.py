"""Field checks shared by the ledger, the audit trail and the repositories."""
from datetime import datetime, timezone
from typing import Any, Tuple

from pydantic import ValidationError as PydanticValidationError

from stockledger.exceptions import ValidationError

MAX_TABLE_NAME_LENGTH = 100
# Integer primary keys
MAX_ID = 2**31 - 1


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def require_positive_id(field: str, value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(field, f"must be a positive integer, got {value!r}")
    if value > MAX_ID:
        raise ValidationError(field, f"must not exceed {MAX_ID}, got {value}")
    return value


def require_table_name(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("table_name", "is required")
    if len(value) > MAX_TABLE_NAME_LENGTH:
        raise ValidationError("table_name", f"cannot exceed {MAX_TABLE_NAME_LENGTH} characters")
    return value


def require_date_range(start: Any, end: Any) -> Tuple[datetime, datetime]:
    if not isinstance(start, datetime):
        raise ValidationError("start", f"must be a datetime, got {start!r}")
    if not isinstance(end, datetime):
        raise ValidationError("end", f"must be a datetime, got {end!r}")
    start, end = as_utc(start), as_utc(end)
    if start > end:
        raise ValidationError("start", "must not be after end")
    return start, end


def from_pydantic_error(error: PydanticValidationError) -> ValidationError:
    """First field error of a pydantic failure, as a domain ValidationError."""
    errors = error.errors()
    if not errors:
        return ValidationError("input", str(error))
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "input"
    return ValidationError(field, first.get("msg", "invalid value"))
