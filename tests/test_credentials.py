"""
Tests for the encrypted credential store.
"""

import json
import stat

import pytest

from vmdeck.credentials import Credential, CredentialStore

URI = "qemu+ssh://root@hv1/system"
OTHER = "qemu+ssh://root@hv2/system"
SERVERS = [URI]


@pytest.fixture(autouse=True)
def fast_kdf(monkeypatch):
    monkeypatch.setattr("vmdeck.credentials.KDF_ITERATIONS", 1000)
    monkeypatch.setattr("vmdeck.credentials._machine_secret", lambda: b"machine-a:1000")


@pytest.fixture
def store(tmp_path):
    return CredentialStore(tmp_path / "credentials")


class TestCredentialStore:
    """Round trip and tamper resistance."""

    def test_round_trip(self, store):
        store.save(SERVERS, Credential("admin", "s3cret"))
        assert store.load("admin", SERVERS) == Credential("admin", "s3cret")

    def test_missing(self, store):
        assert store.load("admin", SERVERS) is None

    def test_file_permissions(self, store):
        path = store.save(SERVERS, Credential("admin", "s3cret"))
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert stat.S_IMODE(store.directory.stat().st_mode) == 0o700

    def test_password_not_stored_in_clear(self, store):
        path = store.save(SERVERS, Credential("admin", "s3cret"))
        assert "s3cret" not in path.read_text()

    def test_server_order_does_not_matter(self, store):
        path = store.save([URI, OTHER], Credential("admin", "s3cret"))
        assert store.path_for("admin", [OTHER, URI, OTHER]) == path
        assert store.load("admin", [OTHER, URI]).password == "s3cret"

    def test_one_file_per_user_and_server_set(self, store):
        single = store.save(SERVERS, Credential("admin", "one"))
        both = store.save([URI, OTHER], Credential("admin", "two"))
        other_user = store.save(SERVERS, Credential("ops", "three"))
        assert len({single, both, other_user}) == 3
        assert store.load("admin", SERVERS).password == "one"
        assert store.load("ops", SERVERS).password == "three"
        assert store.load("ops", [URI, OTHER]) is None

    def test_renamed_file_rejected(self, store):
        path = store.save(SERVERS, Credential("ops", "s3cret"))
        path.rename(store.path_for("admin", SERVERS))
        assert store.load("admin", SERVERS) is None

    def test_other_machine_cannot_read(self, store, monkeypatch):
        store.save(SERVERS, Credential("admin", "s3cret"))
        monkeypatch.setattr("vmdeck.credentials._machine_secret", lambda: b"machine-b:1000")
        assert store.load("admin", SERVERS) is None

    def test_tampered_token(self, store):
        path = store.save(SERVERS, Credential("admin", "s3cret"))
        data = json.loads(path.read_text())
        data["token"] = data["token"][:-4] + "AAAA"
        path.write_text(json.dumps(data))
        assert store.load("admin", SERVERS) is None

    def test_garbage_file(self, store):
        store.directory.mkdir(parents=True)
        store.path_for("admin", SERVERS).write_text("garbage")
        assert store.load("admin", SERVERS) is None

    def test_delete(self, store):
        store.save(SERVERS, Credential("admin", "s3cret"))
        assert store.delete("admin", SERVERS)
        assert store.load("admin", SERVERS) is None
        assert not store.delete("admin", SERVERS)


def test_repr_hides_password():
    assert "s3cret" not in repr(Credential("admin", "s3cret"))
