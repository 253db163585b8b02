"""
Shared fakes for tests. Nothing here talks to Google, Mongo or Upstash.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import httplib2
import pytest
from googleapiclient.errors import HttpError

from gcal_scheduler.config import Settings
from gcal_scheduler.token_store import FileTokenStore


def make_http_error(status: int, message: str) -> HttpError:
    """
    Build an HttpError the way googleapiclient raises it.
    """
    resp = httplib2.Response({"status": str(status)})
    content = json.dumps({"error": {"code": status, "message": message}}).encode("utf-8")
    return HttpError(resp, content)


class FakeRequest:
    def __init__(self, result: Any = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error

    def execute(self):
        if self.error is not None:
            raise self.error
        return self.result


class FakeEvents:
    def __init__(self, service: "FakeCalendarService"):
        self.service = service

    def insert(self, calendarId: str, body: Dict[str, Any]):
        self.service.calls.append(("insert", {"calendarId": calendarId, "body": body}))
        if self.service.error is not None:
            return FakeRequest(error=self.service.error)
        created = dict(body, id=f"evt-{len(self.service.inserted) + 1}")
        self.service.inserted.append(created)
        return FakeRequest(result=created)

    def list(self, **kwargs):
        self.service.calls.append(("list", kwargs))
        if self.service.error is not None:
            return FakeRequest(error=self.service.error)
        return FakeRequest(result={"items": list(self.service.items), "nextPageToken": "page-2"})


class FakeCalendarService:
    """
    Minimal stand-in for build("calendar", "v3").
    """

    def __init__(self, items: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.items = items or []
        self.error = error
        self.inserted: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []

    def events(self):
        return FakeEvents(self)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        client_id="client-123.apps.googleusercontent.com",
        client_secret="shh",
        redirect_url="http://localhost:8000/google/redirect",
    )


@pytest.fixture
def store(tmp_path) -> FileTokenStore:
    return FileTokenStore(tmp_path / "tokens.json")


@pytest.fixture
def calendar_service() -> FakeCalendarService:
    return FakeCalendarService()
