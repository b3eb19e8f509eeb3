"""Expiration date formatting and status helpers.

Extraction returns dates exactly as printed; these helpers turn them into
ISO dates and a freshness status for display and storage.
"""

import re
from datetime import date
from enum import Enum
from typing import Optional
from dataclasses import dataclass


class ExpirationState(str, Enum):
    EXPIRED = "expired"
    CRITICAL = "critical"  # 7 days or less
    WARNING = "warning"  # 30 days or less
    GOOD = "good"
    UNKNOWN = "unknown"


@dataclass
class ExpirationStatus:
    state: ExpirationState
    days_left: Optional[int] = None

    @property
    def label(self) -> str:
        if self.state == ExpirationState.UNKNOWN:
            return "Unknown"
        if self.state == ExpirationState.EXPIRED:
            return "Expired"
        if self.state == ExpirationState.GOOD:
            return "Good"
        plural = "" if self.days_left == 1 else "s"
        return f"{self.days_left} day{plural} left"


ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
SEPARATED_DATE = re.compile(r"^(\d{1,2})([/.-])(\d{1,2})\2(\d{2}|\d{4})$")
COMPACT_DATE = re.compile(r"^(\d{2})(\d{2})(\d{2}|\d{4})$")


def _full_year(year: str) -> int:
    # Two-digit years on labels are always this century
    return 2000 + int(year) if len(year) == 2 else int(year)


def parse_expiration_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a printed expiration date.

    Slash dates are month-first (US labels), dash and dot dates are
    day-first, ISO dates are year-first, and compact digit runs are
    MMDDYY or MMDDYYYY. Returns None when the value is not a real date.
    """
    text = (value or "").strip()
    if not text:
        return None

    try:
        iso = ISO_DATE.match(text)
        if iso:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))

        separated = SEPARATED_DATE.match(text)
        if separated:
            first, separator, second, year = separated.groups()
            if separator == "/":
                month, day = first, second
            else:
                day, month = first, second
            return date(_full_year(year), int(month), int(day))

        compact = COMPACT_DATE.match(text)
        if compact:
            month, day, year = compact.groups()
            return date(_full_year(year), int(month), int(day))
    except ValueError:
        return None

    return None


def format_expiration_date(value: Optional[str]) -> str:
    """Format a printed date as YYYY-MM-DD, leaving unparseable text unchanged."""
    parsed = parse_expiration_date(value)
    if parsed is None:
        return (value or "").strip()
    return parsed.isoformat()


def expiration_status(value: Optional[str], today: Optional[date] = None) -> ExpirationStatus:
    """Classify how close a bottle is to its expiration date."""
    parsed = parse_expiration_date(value)
    if parsed is None:
        return ExpirationStatus(state=ExpirationState.UNKNOWN)

    days_left = (parsed - (today or date.today())).days
    if days_left < 0:
        state = ExpirationState.EXPIRED
    elif days_left <= 7:
        state = ExpirationState.CRITICAL
    elif days_left <= 30:
        state = ExpirationState.WARNING
    else:
        state = ExpirationState.GOOD
    return ExpirationStatus(state=state, days_left=days_left)
