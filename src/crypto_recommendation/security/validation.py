"""Input validation helpers shared across request boundaries."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

from crypto_recommendation.errors import InvalidDateFormatError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$", re.ASCII)


def sanitize_date(raw: Any) -> date:
    """Return ``raw`` parsed as a ``yyyy-MM-dd`` calendar date.

    Plain :class:`~datetime.date` objects pass through unchanged.  Strings must
    match the pattern exactly; surrounding whitespace is rejected.

    Raises
    ------
    InvalidDateFormatError
        If ``raw`` is a ``datetime``, is not a string in that exact shape, or
        names no real day.
    """

    if isinstance(raw, date) and not isinstance(raw, datetime):
        return raw
    if not isinstance(raw, str) or not DATE_PATTERN.fullmatch(raw):
        raise InvalidDateFormatError(raw)
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise InvalidDateFormatError(raw) from None
