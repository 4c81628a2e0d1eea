from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from bizbox.errors import StorageError
from bizbox.storage import LocalContentStore

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _store(tmp_path, key="signing-secret"):
    return LocalContentStore(tmp_path / "content", key, "https://files.test/downloads/")


def _query(url):
    parsed = urlparse(url)
    params = {key: values[0] for key, values in parse_qs(parsed.query).items()}
    return parsed.path, int(params["expires"]), params["signature"]


def test_signed_url_verifies_until_expiry(tmp_path):
    store = _store(tmp_path)
    store.upload("owner/run-1/1.zip", b"zip-bytes", "application/zip")

    url = store.signed_url("owner/run-1/1.zip", 3600, now=NOW)
    path, expires, signature = _query(url)

    assert url.startswith("https://files.test/downloads/owner/run-1/1.zip?")
    assert expires == int(NOW.timestamp()) + 3600
    assert store.verify("owner/run-1/1.zip", expires, signature, now=NOW + timedelta(minutes=59))
    assert not store.verify("owner/run-1/1.zip", expires, signature, now=NOW + timedelta(hours=1))
    assert not store.verify("owner/run-1/2.zip", expires, signature, now=NOW)
    assert not store.verify("owner/run-1/1.zip", expires + 60, signature, now=NOW)


def test_links_from_another_key_are_rejected(tmp_path):
    first = _store(tmp_path, key="one")
    second = _store(tmp_path, key="two")
    first.upload("a/b.md", b"report")

    _, expires, signature = _query(first.signed_url("a/b.md", 60, now=NOW))

    assert not second.verify("a/b.md", expires, signature, now=NOW)


def test_read_round_trip_and_missing_objects(tmp_path):
    store = _store(tmp_path)
    store.upload("a/b.md", b"report")

    assert store.read("a/b.md") == b"report"
    assert store.exists("a/b.md")
    with pytest.raises(StorageError):
        store.read("a/missing.md")
    with pytest.raises(StorageError, match="missing object"):
        store.signed_url("a/missing.md", 60)


@pytest.mark.parametrize("path", ["/etc/passwd", "../escape.md", "a/../../b.md", ""])
def test_paths_outside_root_are_rejected(tmp_path, path):
    with pytest.raises(StorageError, match="Invalid storage path"):
        _store(tmp_path).upload(path, b"x")


def test_signing_requires_a_key(tmp_path):
    store = _store(tmp_path, key=None)
    store.upload("a/b.md", b"report")

    with pytest.raises(StorageError, match="signing key"):
        store.signed_url("a/b.md", 60)
    assert store.verify("a/b.md", 10**10, "anything") is False
