# smoke_oauth.py
"""
OAuth smoke test for a stored Google account.

Purpose:
- Print the consent URL (visit it once, the server stores the refresh token)
- Prove the stored token still works by listing today's events

Usage:
    python smoke_oauth.py you@gmail.com
"""

import sys
from datetime import datetime, timezone

from gcal_scheduler.config import get_settings
from gcal_scheduler.events import parse_date_range
from gcal_scheduler.gcal_tools import list_events
from gcal_scheduler.google_auth import attach_credential, build_authorization_url
from gcal_scheduler.token_store import build_token_store


def main():
    settings = get_settings()
    print("Consent URL:\n", build_authorization_url(settings), "\n")

    if len(sys.argv) < 2:
        print("Pass an account email to list today's events.")
        return

    account = sys.argv[1]
    store = build_token_store(settings)
    context = attach_credential(settings, store, account)

    today = datetime.now(timezone.utc).date().isoformat()
    events = list_events(context, parse_date_range(today, today))

    print(f"Found {len(events)} events today for {account}:\n")
    for ev in events:
        start = ev.get("start", {})
        print(f"- {ev.get('summary')} | id={ev.get('id')} | start={start.get('dateTime') or start.get('date')}")


if __name__ == "__main__":
    main()
