"""
Credential storage: one refresh token per authorized Google account.

Backends:
- MongoDB (production): one document per account, unique on accountIdentifier
- Upstash (Redis REST): one key per account
- Local disk: a single JSON object {identifier: refresh_token}

All backends share upsert semantics: the first login creates the record,
every later login overwrites the token. Last write wins.

Backend failures (network, driver, disk) surface as CredentialStoreError.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, Type
from urllib.parse import quote

import requests
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from gcal_scheduler.config import Settings
from gcal_scheduler.errors import CredentialStoreError, TokenNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountCredential:
    """
    Stored credential for one Google account.
    """
    account_identifier: str
    refresh_token: str


class TokenStore:
    """
    Access contract shared by every backend.

    Subclasses implement `_read` and `_write` and list the library errors
    they can raise in `backend_errors`.
    """

    backend_errors: Tuple[Type[BaseException], ...] = ()

    def _read(self, account_identifier: str) -> Optional[str]:
        raise NotImplementedError

    def _write(self, credential: AccountCredential) -> None:
        raise NotImplementedError

    def find_by_identifier(self, account_identifier: str) -> Optional[AccountCredential]:
        """
        Exact lookup; None when the account never logged in.
        """
        try:
            token = self._read(account_identifier)
        except self.backend_errors as e:
            raise CredentialStoreError(f"Could not read credential for {account_identifier}: {e}") from e

        if token is None:
            return None
        return AccountCredential(account_identifier, token)

    def get(self, account_identifier: str) -> AccountCredential:
        """
        Exact lookup that raises TokenNotFound instead of returning None.
        """
        credential = self.find_by_identifier(account_identifier)
        if credential is None:
            raise TokenNotFound(account_identifier)
        return credential

    def upsert(self, account_identifier: str, refresh_token: str) -> AccountCredential:
        """
        Create the record on first call, overwrite the token afterwards.
        """
        if not account_identifier:
            raise ValueError("account_identifier is required")
        if not refresh_token:
            raise ValueError("refresh_token is required")

        credential = AccountCredential(account_identifier, refresh_token)
        try:
            self._write(credential)
        except self.backend_errors as e:
            raise CredentialStoreError(f"Could not store credential for {account_identifier}: {e}") from e

        logger.info("Stored refresh token for %s", account_identifier)
        return credential


class FileTokenStore(TokenStore):
    """
    Local dev store. Keeps tokens on disk so `uvicorn --reload` restarts
    don't force a new login.

    Writes go to a temp file that replaces the original, under a lock, so
    concurrent callbacks never drop each other's records and readers never
    see a half-written file.
    """

    # JSONDecodeError is a ValueError
    backend_errors = (OSError, ValueError)

    def __init__(self, path: str | Path = "tokens.json"):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        return json.loads(self.path.read_text(encoding="utf-8") or "{}")

    def _read(self, account_identifier: str) -> Optional[str]:
        return self._read_all().get(account_identifier)

    def _write(self, credential: AccountCredential) -> None:
        with self._lock:
            tokens = self._read_all()
            tokens[credential.account_identifier] = credential.refresh_token

            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(tokens, fh, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise


class UpstashTokenStore(TokenStore):
    """
    Upstash Redis over its REST API (no reliable disk on free hosting tiers).
    """

    key_prefix = "gcal_scheduler:token:"
    # resp.json() raises a ValueError subclass on a non-JSON body
    backend_errors = (requests.RequestException, ValueError)

    def __init__(self, url: str, token: str, timeout: int = 10):
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _key(self, account_identifier: str) -> str:
        # Identifiers are emails; quote them so '@' and '/' survive the URL path
        return quote(self.key_prefix + account_identifier, safe="")

    def _read(self, account_identifier: str) -> Optional[str]:
        resp = requests.get(
            f"{self.url}/get/{self._key(account_identifier)}",
            headers={"Authorization": f"Bearer {self.token}"},
            timeout=self.timeout,
        )
        resp.raise_for_status()

        # Upstash returns {"result": "<value>"} when present, {"result": None} when missing.
        return resp.json().get("result")

    def _write(self, credential: AccountCredential) -> None:
        resp = requests.post(
            f"{self.url}/set/{self._key(credential.account_identifier)}",
            headers={"Authorization": f"Bearer {self.token}"},
            data=credential.refresh_token.encode("utf-8"),
            timeout=self.timeout,
        )
        resp.raise_for_status()


class MongoTokenStore(TokenStore):
    """
    MongoDB collection with documents {accountIdentifier, refreshToken}.
    """

    backend_errors = (PyMongoError,)

    def __init__(self, collection):
        self.collection = collection

    @classmethod
    def from_uri(cls, uri: str, db: str, coll: str) -> "MongoTokenStore":
        try:
            collection = MongoClient(uri)[db][coll]
            collection.create_index("accountIdentifier", unique=True)
        except PyMongoError as e:
            raise CredentialStoreError(f"Could not connect to MongoDB: {e}") from e
        return cls(collection)

    def _read(self, account_identifier: str) -> Optional[str]:
        doc = self.collection.find_one({"accountIdentifier": account_identifier}, {"_id": 0})
        if not doc:
            return None
        return doc["refreshToken"]

    def _write(self, credential: AccountCredential) -> None:
        self.collection.update_one(
            {"accountIdentifier": credential.account_identifier},
            {"$set": {"refreshToken": credential.refresh_token}},
            upsert=True,
        )


def build_token_store(settings: Settings) -> TokenStore:
    """
    Pick the backend from configuration: Mongo, then Upstash, then disk.
    """
    if settings.mongo_uri:
        return MongoTokenStore.from_uri(settings.mongo_uri, settings.mongo_db, settings.mongo_coll)

    if settings.upstash_enabled and settings.upstash_url and settings.upstash_token:
        return UpstashTokenStore(settings.upstash_url, settings.upstash_token)

    return FileTokenStore(settings.token_store_path)
