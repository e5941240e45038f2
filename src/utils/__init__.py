"""Shared utility functions."""

from .date_utils import ensure_utc, format_hmrc_timestamp, utc_now

__all__ = ["ensure_utc", "format_hmrc_timestamp", "utc_now"]
