"""
=============================================================================
Value Normalization for Identity Matching
=============================================================================

The remote sheet and the local form disagree on formatting: names and
schools differ in case and spacing, and dates arrive as date objects, ISO
strings or already formatted DD/MM/YYYY text. These helpers bring every
variant to one canonical form before comparison or storage.

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Optional
from zoneinfo import ZoneInfo

_WHITESPACE = re.compile(r'\s+')
_DMY = re.compile(r'^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})(?:[ T](\d{1,2}):(\d{2})(?::(\d{2}))?)?$')
_YMD = re.compile(r'^(\d{4})[/-](\d{1,2})[/-](\d{1,2})$')
_OFFSET = re.compile(r'^(?:UTC|GMT)?\s*([+-])(\d{1,2})(?::?(\d{2}))?$', re.IGNORECASE)

# Zone in which zoned birth dates are read; None means the device's local zone
_reference_zone: Optional[tzinfo] = None


def utcnow() -> datetime:
    """Current time as naive UTC, the form every stored timestamp uses"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timezone(value: Optional[str]) -> Optional[tzinfo]:
    """
    Read a zone setting.

    Args:
        value: '+08:00', 'UTC+8', 'UTC', an IANA name such as
               'Asia/Manila', or empty for the device's local zone

    Returns:
        tzinfo, or None for the local zone

    Raises:
        ValueError: If the zone cannot be read
    """
    text = (value or '').strip()
    if not text:
        return None
    if text.upper() in ('UTC', 'GMT', 'Z'):
        return timezone.utc

    match = _OFFSET.match(text)
    if match:
        sign = -1 if match.group(1) == '-' else 1
        offset = timedelta(hours=int(match.group(2)), minutes=int(match.group(3) or 0))
        return timezone(sign * offset)

    try:
        return ZoneInfo(text)
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown time zone: {text}") from e


def set_reference_timezone(zone: Optional[tzinfo]) -> None:
    """
    Set the zone in which the remote sheet's dates are meant.

    The sheet sends date cells as UTC instants of local midnight, so a birth
    date has to be read back in the sheet's own zone to keep its day.
    """
    global _reference_zone
    _reference_zone = zone


def get_reference_timezone() -> Optional[tzinfo]:
    return _reference_zone


def _calendar_date(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(_reference_zone)
    return value.strftime('%d/%m/%Y')


def normalize_key(value: Any) -> str:
    """
    Case- and whitespace-insensitive key for names and schools.

    Args:
        value: Raw text (None becomes empty)

    Returns:
        Casefolded text with runs of whitespace collapsed
    """
    if value is None:
        return ''
    return _WHITESPACE.sub(' ', str(value)).strip().casefold()


def clean_text(value: Any) -> str:
    """Display form: trimmed, whitespace collapsed, case preserved"""
    if value is None:
        return ''
    return _WHITESPACE.sub(' ', str(value)).strip()


def normalize_dob(value: Any) -> str:
    """
    Canonical DD/MM/YYYY form of a date of birth.

    Accepts date/datetime objects, ISO dates and datetimes (with or without
    a trailing Z), YYYY/MM/DD and D/M/YYYY strings. Values carrying a zone
    are read in the reference zone (see set_reference_timezone); values
    without one keep their date. Anything else is returned trimmed so that
    identical odd inputs still match each other.

    Args:
        value: Date of birth in any supported form

    Returns:
        "DD/MM/YYYY" string, or '' for missing values
    """
    if value is None:
        return ''
    if isinstance(value, datetime):
        return _calendar_date(value)
    if isinstance(value, date):
        return value.strftime('%d/%m/%Y')

    text = str(value).strip()
    if not text:
        return ''

    match = _DMY.match(text)
    if match:
        day, month, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
        try:
            return date(year, month, day).strftime('%d/%m/%Y')
        except ValueError:
            return text

    match = _YMD.match(text)
    if match:
        year, month, day = int(match.group(1)), int(match.group(2)), int(match.group(3))
        try:
            return date(year, month, day).strftime('%d/%m/%Y')
        except ValueError:
            return text

    parsed = _parse_iso(text)
    if parsed:
        return _calendar_date(parsed)
    return text


def normalize_timestamp(value: Any) -> Optional[datetime]:
    """
    Visit timestamp as naive UTC datetime truncated to whole seconds.

    Local and remote copies of the same visit must compare equal, so the
    precision is fixed at seconds and any timezone is converted to UTC.

    Args:
        value: datetime, date, ISO string or "DD/MM/YYYY HH:MM[:SS]" string

    Returns:
        datetime or None if the value cannot be read
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if not text:
            return None
        parsed = _parse_iso(text)
        if parsed is None:
            match = _DMY.match(text)
            if not match:
                return None
            try:
                parsed = datetime(
                    int(match.group(3)), int(match.group(2)), int(match.group(1)),
                    int(match.group(4) or 0), int(match.group(5) or 0), int(match.group(6) or 0),
                )
            except ValueError:
                return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed.replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    """ISO text sent to the remote sheet for a visit timestamp"""
    return value.replace(microsecond=0).isoformat() + 'Z'


def _parse_iso(text: str) -> Optional[datetime]:
    candidate = text[:-1] + '+00:00' if text.endswith('Z') else text
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None
