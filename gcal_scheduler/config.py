"""
Runtime configuration for the scheduler service.

Everything comes from environment variables. A local `.env` file is loaded
once (python-dotenv) so development does not need exported variables.

Required for OAuth:
  - CLIENT_ID
  - CLIENT_SECRET
  - REDIRECT_URL  (e.g. http://localhost:8000/google/redirect)

oauthlib:
  - OAUTHLIB_RELAX_TOKEN_SCOPE defaults to 1 (set once by get_settings). Google
    adds "openid" and previously granted scopes to the token response, which
    oauthlib otherwise rejects as a scope change.

Credential store (first match wins):
  - MONGO_URI (+ MONGO_DB, MONGO_COLL)
  - UPSTASH_ENABLED=1 (+ UPSTASH_REDIS_REST_URL, UPSTASH_REDIS_REST_TOKEN)
  - TOKEN_STORE_PATH on disk (default tokens.json)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

from gcal_scheduler.errors import ConfigurationError

DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
    "openid",
]


def _split_csv(raw: str) -> List[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass(frozen=True)
class Settings:
    """
    Immutable snapshot of the process configuration.
    """
    port: int = 8000
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_url: str = "http://localhost:8000/google/redirect"
    scopes: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    default_time_zone: str = "UTC"

    token_store_path: str = "tokens.json"
    mongo_uri: Optional[str] = None
    mongo_db: str = "google_calendar_app"
    mongo_coll: str = "users"
    upstash_enabled: bool = False
    upstash_url: Optional[str] = None
    upstash_token: Optional[str] = None

    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from the current environment.
        """
        scopes = _split_csv(os.getenv("OAUTH_SCOPES", "")) or list(DEFAULT_SCOPES)
        origins = _split_csv(os.getenv("CORS_ALLOW_ORIGINS", "")) or ["*"]

        try:
            port = int(os.getenv("PORT", "8000"))
        except ValueError as e:
            raise ConfigurationError(f"PORT must be an integer, got {os.getenv('PORT')!r}") from e

        return cls(
            port=port,
            client_id=os.getenv("CLIENT_ID") or None,
            client_secret=os.getenv("CLIENT_SECRET") or None,
            redirect_url=os.getenv("REDIRECT_URL") or cls.redirect_url,
            scopes=scopes,
            default_time_zone=os.getenv("DEFAULT_TIME_ZONE") or "UTC",
            token_store_path=os.getenv("TOKEN_STORE_PATH") or cls.token_store_path,
            mongo_uri=os.getenv("MONGO_URI") or None,
            mongo_db=os.getenv("MONGO_DB") or cls.mongo_db,
            mongo_coll=os.getenv("MONGO_COLL") or cls.mongo_coll,
            # Upstash is only used on explicit opt-in so local dev never writes to Redis
            upstash_enabled=os.getenv("UPSTASH_ENABLED") == "1",
            upstash_url=os.getenv("UPSTASH_REDIS_REST_URL") or None,
            upstash_token=os.getenv("UPSTASH_REDIS_REST_TOKEN") or None,
            cors_allow_origins=origins,
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )

    def require_oauth_client(self) -> tuple[str, str]:
        """
        Return (client_id, client_secret) or fail if OAuth is not configured.
        """
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("CLIENT_ID and CLIENT_SECRET must be set for Google OAuth")
        return self.client_id, self.client_secret


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Process-wide settings. Loads `.env` on first use.
    """
    load_dotenv()
    os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")
    return Settings.from_env()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
