"""
UK tax year helpers.

A tax year runs from 6 April to 5 April and is written ``YYYY-YY``
(e.g. ``2025-26``). From 2025-26 onwards quarterly updates are cumulative
year-to-date summaries rather than discrete period summaries.
"""

import re
from datetime import date
from typing import List, Optional, Tuple

TAX_YEAR_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")

CUMULATIVE_FROM_START_YEAR = 2025


def parse_tax_year(tax_year: str) -> int:
    """
    Validate a ``YYYY-YY`` tax year and return its start year.

    Raises:
        ValueError: If the format is wrong or the years are not consecutive
    """
    match = TAX_YEAR_PATTERN.match(tax_year or "")
    if not match:
        raise ValueError(f"Invalid tax year {tax_year!r}, expected YYYY-YY (e.g. 2025-26)")
    start_year = int(match.group(1))
    if (start_year + 1) % 100 != int(match.group(2)):
        raise ValueError(f"Invalid tax year {tax_year!r}, years must be consecutive")
    return start_year


def is_valid_tax_year(tax_year: str) -> bool:
    try:
        parse_tax_year(tax_year)
    except ValueError:
        return False
    return True


def format_tax_year(start_year: int) -> str:
    return f"{start_year}-{(start_year + 1) % 100:02d}"


def tax_year_dates(tax_year: str) -> Tuple[date, date]:
    """First and last day of a tax year (6 April to 5 April)."""
    start_year = parse_tax_year(tax_year)
    return date(start_year, 4, 6), date(start_year + 1, 4, 5)


def tax_year_for_date(value: date) -> str:
    """The tax year a date falls in."""
    if (value.month, value.day) < (4, 6):
        return format_tax_year(value.year - 1)
    return format_tax_year(value.year)


def current_tax_year(today: Optional[date] = None) -> str:
    return tax_year_for_date(today or date.today())


def uses_cumulative_summaries(tax_year: str) -> bool:
    """Whether quarterly updates for this year go to the cumulative endpoints."""
    return parse_tax_year(tax_year) >= CUMULATIVE_FROM_START_YEAR


def standard_quarters(tax_year: str) -> List[Tuple[date, date]]:
    """The four standard quarterly update periods of a tax year."""
    start_year = parse_tax_year(tax_year)
    return [
        (date(start_year, 4, 6), date(start_year, 7, 5)),
        (date(start_year, 7, 6), date(start_year, 10, 5)),
        (date(start_year, 10, 6), date(start_year + 1, 1, 5)),
        (date(start_year + 1, 1, 6), date(start_year + 1, 4, 5)),
    ]


def period_within_tax_year(tax_year: str, period_from: date, period_to: date) -> bool:
    start, end = tax_year_dates(tax_year)
    return start <= period_from <= period_to <= end
