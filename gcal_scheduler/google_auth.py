"""
Google OAuth helpers for the scheduler web service.

Two jobs:
1) Login flow: consent URL -> code exchange -> identity -> persisted refresh token
2) Per-request credentials: stored refresh token -> fresh Credentials -> Calendar client

IMPORTANT:
- client_id / client_secret / redirect URL come from Settings (env vars)
- credentials are rebuilt for every request; nothing is cached on the process,
  because each request may act for a different account
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from gcal_scheduler.config import Settings
from gcal_scheduler.errors import (
    AuthExchangeError,
    IdentityResolutionError,
    TokenNotFound,
    UserNotRegistered,
)
from gcal_scheduler.token_store import AccountCredential, TokenStore

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class CredentialContext:
    """
    Request-scoped bearer credential for one account, plus the Calendar client
    built from it.
    """
    account_identifier: str
    credentials: Credentials
    service: Any


def build_google_flow(settings: Settings, scopes: Optional[List[str]] = None) -> Flow:
    """
    Build a Google OAuth Flow for a web server from Settings.
    """
    client_id, client_secret = settings.require_oauth_client()
    client_config = {
        "web": {
            "client_id": client_id,
            "client_secret": client_secret,
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
            "redirect_uris": [settings.redirect_url],
        }
    }

    flow = Flow.from_client_config(
        client_config=client_config,
        scopes=scopes or settings.scopes,
        redirect_uri=settings.redirect_url,
    )
    # The callback rebuilds the flow, so there is no code_verifier to carry over.
    flow.autogenerate_code_verifier = False
    return flow


def build_authorization_url(settings: Settings, scopes: Optional[List[str]] = None) -> str:
    """
    Google consent URL requesting offline access for the given scopes.
    """
    flow = build_google_flow(settings, scopes)
    auth_url, _state = flow.authorization_url(
        access_type="offline",  # Requests refresh token
        prompt="consent",       # Re-consent so a refresh token is issued on every login
    )
    return auth_url


def exchange_code_for_tokens(
    settings: Settings,
    code: Optional[str],
    scopes: Optional[List[str]] = None,
) -> Credentials:
    """
    Exchange an authorization code for tokens. Never retried.
    """
    if not code:
        raise AuthExchangeError("Missing authorization code")

    flow = build_google_flow(settings, scopes)
    try:
        flow.fetch_token(code=code)
    except (OAuth2Error, requests.RequestException) as e:
        raise AuthExchangeError(f"Authorization code exchange failed: {e}") from e

    creds = flow.credentials
    if not creds.refresh_token:
        raise AuthExchangeError("Google did not issue a refresh token for this login")
    return creds


def resolve_identity(credentials: Credentials) -> str:
    """
    Return the verified email of the account that granted `credentials`.
    """
    try:
        oauth2 = build("oauth2", "v2", credentials=credentials, cache_discovery=False)
        info = oauth2.userinfo().get().execute()
    except (HttpError, TransportError, OSError) as e:
        raise IdentityResolutionError(f"userinfo request failed: {e}") from e

    email = info.get("email")
    if not email:
        raise IdentityResolutionError("Google did not return an email for this account")
    if info.get("verified_email") is False:
        raise IdentityResolutionError(f"Email {email} is not verified")
    return email


def complete_login(
    settings: Settings,
    store: TokenStore,
    code: Optional[str],
    scopes: Optional[List[str]] = None,
) -> AccountCredential:
    """
    Run the OAuth callback: exchange the code, resolve who logged in,
    then persist their refresh token.

    The store is only touched after both provider calls succeeded.
    """
    creds = exchange_code_for_tokens(settings, code, scopes)
    account_identifier = resolve_identity(creds)
    return store.upsert(account_identifier, creds.refresh_token)


def credentials_for_account(
    settings: Settings,
    store: TokenStore,
    account_identifier: str,
) -> Credentials:
    """
    Turn the stored refresh token into a fresh, valid Credentials object.
    """
    try:
        stored = store.get(account_identifier)
    except TokenNotFound as e:
        raise UserNotRegistered(account_identifier) from e

    client_id, client_secret = settings.require_oauth_client()
    creds = Credentials(
        token=None,
        refresh_token=stored.refresh_token,
        token_uri=TOKEN_URI,
        client_id=client_id,
        client_secret=client_secret,
        scopes=settings.scopes,
    )

    try:
        creds.refresh(Request())
    except RefreshError as e:
        raise AuthExchangeError(
            f"Stored refresh token for {account_identifier} was rejected. Log in again via /google."
        ) from e
    except TransportError as e:
        raise AuthExchangeError(f"Could not reach Google to refresh the token for {account_identifier}: {e}") from e
    return creds


def attach_credential(
    settings: Settings,
    store: TokenStore,
    account_identifier: str,
) -> CredentialContext:
    """
    Build the per-request credential context used by the calendar gateway.
    """
    creds = credentials_for_account(settings, store, account_identifier)
    service = build("calendar", "v3", credentials=creds, cache_discovery=False)
    return CredentialContext(account_identifier=account_identifier, credentials=creds, service=service)
