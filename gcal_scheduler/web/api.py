"""
FastAPI surface of the scheduler.

Endpoints:
- GET  /google            redirect to Google's consent screen
- GET  /google/redirect   OAuth callback; stores the account's refresh token
- POST /schedule_event    create one event on an account's primary calendar
- GET  /find_events       list an account's events between two dates
- GET  /health            liveness check

Every request names the account it acts for (accountIdentifier). Credentials
are looked up and rebuilt per request; an unknown account fails closed.
Failures are logged and returned as 500 {"error": ...}.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from gcal_scheduler.config import Settings, get_settings
from gcal_scheduler.errors import CalendarServiceError
from gcal_scheduler.events import EventRequest, normalize, parse_date_range
from gcal_scheduler.gcal_tools import create_event, list_events
from gcal_scheduler.google_auth import attach_credential, build_authorization_url, complete_login
from gcal_scheduler.token_store import TokenStore, build_token_store

logger = logging.getLogger(__name__)

app = FastAPI(title="Google Calendar Scheduler", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins,
    allow_credentials=False,  # Must be False when allow_origins is "*"
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------------
# Dependencies
# ----------------------------

@lru_cache(maxsize=1)
def _default_token_store() -> TokenStore:
    return build_token_store(get_settings())


def get_token_store() -> TokenStore:
    """
    Credential store for the process (overridable in tests).
    """
    return _default_token_store()


def _error_response(message: str, exc: Exception) -> JSONResponse:
    logger.error("%s: %s", message, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": message})


@app.exception_handler(CalendarServiceError)
def calendar_service_error(request: Request, exc: CalendarServiceError):
    """
    Failures outside a route body, e.g. the token store dependency failing to connect.
    """
    return _error_response("An internal error occurred", exc)


# ----------------------------
# Request models (API contracts)
# ----------------------------

class ScheduleEventRequest(BaseModel):
    """
    Body of POST /schedule_event. Everything but the account is optional.
    """
    model_config = ConfigDict(populate_by_name=True)

    start: Optional[str] = Field(None, description="ISO-8601 start (default: tomorrow, top of the hour + 10 min)")
    end: Optional[str] = Field(None, description="ISO-8601 end (default: start + 1 hour)")
    summary: Optional[str] = Field(None, description="Event title")
    description: Optional[str] = Field(None, description="Event description")
    repeat: Optional[str] = Field(None, description='"daily" makes the event repeat every day')
    time_zone: Optional[str] = Field(None, alias="timeZone", description="IANA timezone string (e.g., Europe/Berlin)")
    account_identifier: str = Field(
        ...,
        validation_alias=AliasChoices("accountIdentifier", "gmailUsername"),
        description="Email of an account that completed /google",
    )

    def to_event_request(self) -> EventRequest:
        return EventRequest(
            start=self.start,
            end=self.end,
            summary=self.summary,
            description=self.description,
            repeat=self.repeat,
            time_zone=self.time_zone,
        )


# ----------------------------
# OAuth endpoints (Web Flow)
# ----------------------------

@app.get("/google")
def google_login(settings: Settings = Depends(get_settings)):
    """
    Starts Google OAuth by redirecting the user to Google's consent screen.
    """
    try:
        url = build_authorization_url(settings)
    except CalendarServiceError as e:
        return _error_response("Google OAuth is not configured", e)
    return RedirectResponse(url=url, status_code=302)


@app.get("/google/redirect")
def google_redirect(
    code: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    store: TokenStore = Depends(get_token_store),
):
    """
    Handles Google's redirect back to us with a 'code' query param.
    Exchanges the code, resolves the account's email and stores its refresh token.
    """
    try:
        credential = complete_login(settings, store, code)
    except CalendarServiceError as e:
        return _error_response("An error occurred during authentication", e)

    logger.info("Login completed for %s", credential.account_identifier)
    return {"msg": "You have successfully logged in"}


# ----------------------------
# Calendar endpoints
# ----------------------------

@app.post("/schedule_event")
def schedule_event(
    req: ScheduleEventRequest,
    settings: Settings = Depends(get_settings),
    store: TokenStore = Depends(get_token_store),
):
    """
    Create one event on the account's primary calendar.

    The payload is normalized before the account is resolved, so invalid
    dates never reach Google.
    """
    try:
        payload = normalize(req.to_event_request(), default_time_zone=settings.default_time_zone)
        context = attach_credential(settings, store, req.account_identifier)
        event_id = create_event(context, payload)
    except CalendarServiceError as e:
        return _error_response("An error occurred while creating the event", e)

    return {"msg": "Event created successfully", "eventId": event_id}


@app.get("/find_events")
def find_events(
    start: str = Query(..., description="First day, YYYY-MM-DD (UTC)"),
    end: str = Query(..., description="Last day, YYYY-MM-DD (UTC, inclusive)"),
    account_identifier: Optional[str] = Query(None, alias="accountIdentifier"),
    gmail_username: Optional[str] = Query(None, alias="gmailUsername"),
    settings: Settings = Depends(get_settings),
    store: TokenStore = Depends(get_token_store),
):
    """
    List events whose start falls between start 00:00 and end 23:59:59.999 UTC.
    """
    account = account_identifier or gmail_username
    if not account:
        raise HTTPException(status_code=422, detail="accountIdentifier is required")

    try:
        date_range = parse_date_range(start, end)
        context = attach_credential(settings, store, account)
        events = list_events(context, date_range)
    except CalendarServiceError as e:
        return _error_response("An error occurred while finding events", e)

    return {"msg": "Events found successfully", "events": events}


@app.get("/health")
def health():
    """
    Health check endpoint.
    """
    return {"ok": True}
