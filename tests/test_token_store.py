"""
Tests for the credential store backends.

Goal:
- upsert creates on first login and overwrites on later logins
- exactly one record per account identifier
- lookups are exact (no partial matching)
"""

from __future__ import annotations

import json
import threading
from typing import Any, Dict, List

import pytest
import requests
from pymongo.errors import ServerSelectionTimeoutError

from gcal_scheduler import token_store as token_store_module
from gcal_scheduler.config import Settings
from gcal_scheduler.errors import CredentialStoreError, TokenNotFound
from gcal_scheduler.token_store import (
    AccountCredential,
    FileTokenStore,
    MongoTokenStore,
    UpstashTokenStore,
    build_token_store,
)


class FakeCollection:
    """
    Just enough of a pymongo Collection for MongoTokenStore.
    """

    def __init__(self):
        self.docs: List[Dict[str, Any]] = []

    def find_one(self, query, projection=None):
        for doc in self.docs:
            if all(doc.get(k) == v for k, v in query.items()):
                return dict(doc)
        return None

    def update_one(self, query, update, upsert=False):
        doc = self.find_one(query)
        if doc is None:
            assert upsert, "update_one without upsert on a missing document"
            self.docs.append(dict(query, **update["$set"]))
            return
        for existing in self.docs:
            if all(existing.get(k) == v for k, v in query.items()):
                existing.update(update["$set"])


class FakeResponse:
    def __init__(self, payload=None):
        self.payload = payload or {}

    def raise_for_status(self):
        return None

    def json(self):
        return self.payload


def test_file_store_upsert_is_idempotent_on_identifier(store):
    store.upsert("a@b.com", "token-1")
    store.upsert("a@b.com", "token-2")

    on_disk = json.loads(store.path.read_text(encoding="utf-8"))
    assert on_disk == {"a@b.com": "token-2"}
    assert store.find_by_identifier("a@b.com") == AccountCredential("a@b.com", "token-2")


def test_file_store_keeps_other_accounts(store):
    store.upsert("a@b.com", "token-a")
    store.upsert("c@d.com", "token-c")

    assert store.get("a@b.com").refresh_token == "token-a"
    assert store.get("c@d.com").refresh_token == "token-c"


def test_lookup_is_exact(store):
    store.upsert("a@b.com", "token-a")

    assert store.find_by_identifier("a@b") is None
    assert store.find_by_identifier("A@B.COM") is None


def test_get_raises_token_not_found(store):
    with pytest.raises(TokenNotFound) as exc_info:
        store.get("nobody@example.com")
    assert exc_info.value.account_identifier == "nobody@example.com"


def test_missing_file_means_no_records(tmp_path):
    assert FileTokenStore(tmp_path / "missing.json").find_by_identifier("a@b.com") is None


@pytest.mark.parametrize("identifier, token", [("", "token"), ("a@b.com", ""), ("a@b.com", None)])
def test_upsert_rejects_empty_values(store, identifier, token):
    with pytest.raises(ValueError):
        store.upsert(identifier, token)
    assert not store.path.exists()


def test_mongo_store_upsert_creates_then_overwrites():
    collection = FakeCollection()
    mongo = MongoTokenStore(collection)

    mongo.upsert("a@b.com", "token-1")
    mongo.upsert("a@b.com", "token-2")

    assert collection.docs == [{"accountIdentifier": "a@b.com", "refreshToken": "token-2"}]
    assert mongo.get("a@b.com") == AccountCredential("a@b.com", "token-2")
    assert mongo.find_by_identifier("x@y.com") is None


def test_upstash_store_uses_per_account_keys(monkeypatch):
    calls = []

    def fake_post(url, headers, data, timeout):
        calls.append(("post", url, headers, data, timeout))
        return FakeResponse({"result": "OK"})

    def fake_get(url, headers, timeout):
        calls.append(("get", url, headers, timeout))
        return FakeResponse({"result": "token-1"})

    monkeypatch.setattr(token_store_module.requests, "post", fake_post)
    monkeypatch.setattr(token_store_module.requests, "get", fake_get)

    upstash = UpstashTokenStore("https://example.upstash.io/", "rest-token")
    upstash.upsert("a@b.com", "token-1")
    found = upstash.find_by_identifier("a@b.com")

    assert found == AccountCredential("a@b.com", "token-1")
    post, get = calls
    assert post[1] == "https://example.upstash.io/set/gcal_scheduler%3Atoken%3Aa%40b.com"
    assert post[2] == {"Authorization": "Bearer rest-token"}
    assert post[3] == b"token-1"
    assert get[1] == "https://example.upstash.io/get/gcal_scheduler%3Atoken%3Aa%40b.com"


def test_upstash_store_missing_key(monkeypatch):
    monkeypatch.setattr(token_store_module.requests, "get", lambda url, headers, timeout: FakeResponse({"result": None}))

    assert UpstashTokenStore("https://example.upstash.io", "t").find_by_identifier("a@b.com") is None


def test_build_token_store_defaults_to_file(tmp_path):
    built = build_token_store(Settings(token_store_path=str(tmp_path / "t.json")))

    assert isinstance(built, FileTokenStore)
    assert built.path == tmp_path / "t.json"


def test_build_token_store_requires_upstash_opt_in():
    off = build_token_store(Settings(upstash_url="https://u", upstash_token="t"))
    on = build_token_store(Settings(upstash_enabled=True, upstash_url="https://u", upstash_token="t"))

    assert isinstance(off, FileTokenStore)
    assert isinstance(on, UpstashTokenStore)


def test_build_token_store_prefers_mongo(monkeypatch):
    seen = {}

    def fake_from_uri(cls, uri, db, coll):
        seen.update(uri=uri, db=db, coll=coll)
        return cls(FakeCollection())

    monkeypatch.setattr(MongoTokenStore, "from_uri", classmethod(fake_from_uri))

    built = build_token_store(
        Settings(mongo_uri="mongodb://localhost:27017", upstash_enabled=True, upstash_url="https://u", upstash_token="t")
    )

    assert isinstance(built, MongoTokenStore)
    assert seen == {"uri": "mongodb://localhost:27017", "db": "google_calendar_app", "coll": "users"}


class UnreachableCollection(FakeCollection):
    def find_one(self, query, projection=None):
        raise ServerSelectionTimeoutError("localhost:27017: connection refused")

    def update_one(self, query, update, upsert=False):
        raise ServerSelectionTimeoutError("localhost:27017: connection refused")


def test_concurrent_file_upserts_keep_every_account(store):
    """
    Two callbacks writing different accounts at the same time must not drop
    each other's records (read-modify-write runs under the store's lock).
    """
    start = threading.Barrier(2)

    def login_many(prefix):
        start.wait()
        for i in range(50):
            store.upsert(f"{prefix}{i}@example.com", f"token-{prefix}{i}")

    threads = [threading.Thread(target=login_many, args=(p,)) for p in ("a", "b")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    on_disk = json.loads(store.path.read_text(encoding="utf-8"))
    assert len(on_disk) == 100
    assert on_disk["a0@example.com"] == "token-a0"
    assert on_disk["b49@example.com"] == "token-b49"


def test_file_store_leaves_no_temp_files(store):
    store.upsert("a@b.com", "token-1")
    store.upsert("a@b.com", "token-2")

    assert [p.name for p in store.path.parent.iterdir()] == ["tokens.json"]


def test_corrupt_file_is_a_store_error(store):
    store.path.write_text("{not json", encoding="utf-8")

    with pytest.raises(CredentialStoreError):
        store.find_by_identifier("a@b.com")
    with pytest.raises(CredentialStoreError):
        store.upsert("a@b.com", "token-1")


def test_upstash_network_failure_is_a_store_error(monkeypatch):
    def down(*args, **kwargs):
        raise requests.ConnectionError("upstash unreachable")

    monkeypatch.setattr(token_store_module.requests, "get", down)
    monkeypatch.setattr(token_store_module.requests, "post", down)
    upstash = UpstashTokenStore("https://example.upstash.io", "t")

    with pytest.raises(CredentialStoreError):
        upstash.find_by_identifier("a@b.com")
    with pytest.raises(CredentialStoreError):
        upstash.upsert("a@b.com", "token-1")


def test_mongo_driver_failure_is_a_store_error():
    mongo = MongoTokenStore(UnreachableCollection())

    with pytest.raises(CredentialStoreError):
        mongo.get("a@b.com")
    with pytest.raises(CredentialStoreError):
        mongo.upsert("a@b.com", "token-1")


def test_mongo_connect_failure_is_a_store_error(monkeypatch):
    class DeadClient(dict):
        def __init__(self, uri):
            super().__init__(google_calendar_app={"users": UnreachableCollection()})

    def refuse_index(self, *args, **kwargs):
        raise ServerSelectionTimeoutError("localhost:27017: connection refused")

    monkeypatch.setattr(UnreachableCollection, "create_index", refuse_index, raising=False)
    monkeypatch.setattr(token_store_module, "MongoClient", DeadClient)

    with pytest.raises(CredentialStoreError):
        MongoTokenStore.from_uri("mongodb://localhost:27017", "google_calendar_app", "users")
