"""
Google Calendar gateway.

Rules:
- Only the PRIMARY calendar is read or written
- Events are only inserted, never patched or deleted
- Provider errors are surfaced as UpstreamError and never retried
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from google.auth.exceptions import TransportError
from googleapiclient.errors import HttpError

from gcal_scheduler.errors import UpstreamError
from gcal_scheduler.events import DateRange
from gcal_scheduler.google_auth import CredentialContext

logger = logging.getLogger(__name__)

PRIMARY_CALENDAR = "primary"


def _upstream_error(error: HttpError) -> UpstreamError:
    """
    Pull the status code and Google's message out of an HttpError.
    """
    status = getattr(error.resp, "status", None)
    message = str(error)
    try:
        body = json.loads(error.content.decode("utf-8"))
        message = body.get("error", {}).get("message") or message
    except (ValueError, AttributeError):
        pass
    return UpstreamError(int(status) if status is not None else None, message)


def create_event_primary(service, event_payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Insert an event on the PRIMARY calendar and return the created event.
    """
    try:
        return service.events().insert(calendarId=PRIMARY_CALENDAR, body=event_payload).execute()
    except HttpError as e:
        raise _upstream_error(e) from e
    except (TransportError, OSError) as e:
        raise UpstreamError(None, f"Calendar API unreachable: {e}") from e


def list_events_primary(service, time_min: str, time_max: str) -> List[Dict[str, Any]]:
    """
    List events on the PRIMARY calendar within a time window.

    Only the first page Google returns is surfaced; nextPageToken is ignored.

    Returns:
        A list of raw Google Calendar event objects.
    """
    try:
        resp = (
            service.events()
            .list(calendarId=PRIMARY_CALENDAR, timeMin=time_min, timeMax=time_max)
            .execute()
        )
    except HttpError as e:
        raise _upstream_error(e) from e
    except (TransportError, OSError) as e:
        raise UpstreamError(None, f"Calendar API unreachable: {e}") from e
    return resp.get("items", [])


def create_event(context: CredentialContext, event_payload: Dict[str, Any]) -> str:
    """
    Create the event for the context's account and return its id.
    """
    created = create_event_primary(context.service, event_payload)
    event_id = created.get("id")
    if not event_id:
        raise UpstreamError(None, "Calendar API response did not include an event id")

    logger.info("Event created for %s: id=%s summary=%r", context.account_identifier, event_id, created.get("summary"))
    return event_id


def list_events(context: CredentialContext, date_range: DateRange) -> List[Dict[str, Any]]:
    """
    Events on the context's primary calendar within the inclusive UTC day range.
    """
    events = list_events_primary(context.service, date_range.time_min, date_range.time_max)
    logger.info(
        "Events found for %s between %s and %s: %d",
        context.account_identifier,
        date_range.time_min,
        date_range.time_max,
        len(events),
    )
    return events
