"""Security utilities for the recommendation service."""

from .validation import DATE_PATTERN, sanitize_date

__all__ = ["DATE_PATTERN", "sanitize_date"]
