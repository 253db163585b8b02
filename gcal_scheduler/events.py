"""
Event normalization: turn a partially filled request into a complete
Google Calendar event payload.

This module is deterministic and testable:
- normalize: applies the defaulting rules (start, end, summary, description,
  time zone, recurrence) in a fixed order
- parse_date_range: turns YYYY-MM-DD query params into an inclusive UTC window

Instants are always sent to Google in UTC (`...Z`). The event's timeZone is
passed alongside so Google can render/expand recurrence in the user's zone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from gcal_scheduler.errors import InvalidDateError

_UTC_DESIGNATOR = re.compile(r"[zZ]$")

DEFAULT_SUMMARY = "This is a test event"
DEFAULT_DESCRIPTION = "Some event which is very very important"
DAILY_RECURRENCE = "RRULE:FREQ=DAILY"

DEFAULT_DURATION = timedelta(hours=1)
DEFAULT_START_OFFSET = timedelta(days=1)
DEFAULT_START_MINUTE = 10


@dataclass(frozen=True)
class EventRequest:
    """
    User input for a new event. Every field is optional.
    """
    start: Optional[str] = None
    end: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    repeat: Optional[str] = None
    time_zone: Optional[str] = None


@dataclass(frozen=True)
class DateRange:
    """
    Inclusive range of calendar days, interpreted in UTC.
    """
    start: date
    end: date

    @property
    def time_min(self) -> str:
        return f"{self.start.isoformat()}T00:00:00.000Z"

    @property
    def time_max(self) -> str:
        return f"{self.end.isoformat()}T23:59:59.999Z"


def resolve_time_zone(name: str) -> tzinfo:
    """
    Look up an IANA zone name, raising InvalidDateError for unknown names.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidDateError(name, reason="Unknown time zone") from e


def parse_instant(value: str, tz: tzinfo) -> datetime:
    """
    Parse an ISO-8601 string into an aware UTC datetime.

    Notes:
    - A trailing 'Z' or 'z' is converted to '+00:00'; other offsets (including
      compact ones like +0000) are handled by fromisoformat.
    - Values without an offset are read as wall-clock time in `tz`.
    """
    try:
        dt = datetime.fromisoformat(_UTC_DESIGNATOR.sub("+00:00", value.strip()))
    except (ValueError, AttributeError) as e:
        raise InvalidDateError(value) from e

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(timezone.utc)


def to_rfc3339(dt: datetime) -> str:
    """
    Render an aware datetime as a UTC RFC3339 string (milliseconds only when present).
    """
    dt = dt.astimezone(timezone.utc)
    if dt.microsecond:
        return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def default_start(now: datetime) -> datetime:
    """
    Tomorrow at the top of the current hour, plus 10 minutes.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    tomorrow = now.astimezone(timezone.utc) + DEFAULT_START_OFFSET
    return tomorrow.replace(minute=0, second=0, microsecond=0) + timedelta(minutes=DEFAULT_START_MINUTE)


def normalize(
    request: EventRequest,
    default_time_zone: str = "UTC",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build the events.insert body for `request`.

    Rules (each only fires when its input is absent or empty):
    1) start defaults to default_start(now)
    2) end defaults to start + 1 hour
    3) summary / description get fixed placeholder text
    4) timeZone defaults to `default_time_zone` and is applied to both ends
    5) recurrence is daily only for repeat == "daily" (exact match)

    Malformed start/end values raise InvalidDateError before any defaulting.
    """
    tz_name = request.time_zone or default_time_zone
    tz = resolve_time_zone(tz_name)

    start = parse_instant(request.start, tz) if request.start else None
    end = parse_instant(request.end, tz) if request.end else None

    if start is None:
        start = default_start(now or datetime.now(timezone.utc))
    if end is None:
        end = start + DEFAULT_DURATION

    return {
        "summary": request.summary or DEFAULT_SUMMARY,
        "description": request.description or DEFAULT_DESCRIPTION,
        "start": {"dateTime": to_rfc3339(start), "timeZone": tz_name},
        "end": {"dateTime": to_rfc3339(end), "timeZone": tz_name},
        "recurrence": [DAILY_RECURRENCE] if request.repeat == "daily" else [],
    }


def parse_date(value: str) -> date:
    """
    Parse a YYYY-MM-DD string. Stray newlines (copy/paste from shells) are dropped.
    """
    try:
        return date.fromisoformat(value.replace("\n", "").strip())
    except (ValueError, AttributeError) as e:
        raise InvalidDateError(value) from e


def parse_date_range(start: str, end: str) -> DateRange:
    return DateRange(start=parse_date(start), end=parse_date(end))
