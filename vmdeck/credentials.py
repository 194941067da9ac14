"""Encrypted credential storage.

One file per login name and set of servers under ``CREDENTIALS_DIR``, named
after the SHA-256 of both, so the same servers given in any order share it.
The file holds a random salt and a Fernet token; the key is derived from the
machine id and the current uid, so a copied file is useless on another
machine or to another user.
"""

import base64
import hashlib
import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from vmdeck.config import CREDENTIALS_DIR
from vmdeck.utils.files import atomic_write_json

logger = logging.getLogger(__name__)

MACHINE_ID_FILES = (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id"))
KDF_ITERATIONS = 480_000


@dataclass
class Credential:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credential(username={self.username!r}, password='***')"


def _machine_secret() -> bytes:
    machine_id = ""
    for path in MACHINE_ID_FILES:
        try:
            machine_id = path.read_text().strip()
        except OSError:
            continue
        if machine_id:
            break
    return f"{machine_id}:{os.getuid()}".encode()


def _derive_key(salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(_machine_secret()))


def _describe(username: str, servers: Iterable[str]) -> str:
    return f"{username} on {', '.join(sorted(set(servers)))}"


class CredentialStore:
    """Load and save one credential per (username, server set)."""

    def __init__(self, directory: Path = CREDENTIALS_DIR) -> None:
        self.directory = directory

    def path_for(self, username: str, servers: Iterable[str]) -> Path:
        material = "\n".join([username, *sorted(set(servers))])
        digest = hashlib.sha256(material.encode()).hexdigest()
        return self.directory / f"{digest}.cred"

    def save(self, servers: Iterable[str], credential: Credential) -> Path:
        """Encrypt and write the credential, readable by the owner only."""
        salt = os.urandom(16)
        payload = json.dumps({
            "username": credential.username,
            "password": credential.password,
        }).encode()
        token = Fernet(_derive_key(salt)).encrypt(payload)

        self.directory.mkdir(parents=True, exist_ok=True)
        os.chmod(self.directory, 0o700)
        servers = list(servers)
        path = self.path_for(credential.username, servers)
        atomic_write_json(path, {
            "salt": base64.b64encode(salt).decode("ascii"),
            "token": token.decode("ascii"),
        }, mode=0o600)
        logger.info("Saved credential for %s", _describe(credential.username, servers))
        return path

    def load(self, username: str, servers: Iterable[str]) -> Credential | None:
        """Return the stored credential, or None if missing or unreadable."""
        servers = list(servers)
        path = self.path_for(username, servers)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text())
            salt = base64.b64decode(data["salt"])
            payload = Fernet(_derive_key(salt)).decrypt(data["token"].encode())
            fields = json.loads(payload)
            credential = Credential(username=fields["username"], password=fields["password"])
        except (OSError, ValueError, KeyError, InvalidToken) as e:
            logger.warning(
                "Could not read credential for %s: %s", _describe(username, servers), e.__class__.__name__,
            )
            return None
        if credential.username != username:
            logger.warning("Credential file %s belongs to %s", path, credential.username)
            return None
        return credential

    def delete(self, username: str, servers: Iterable[str]) -> bool:
        servers = list(servers)
        path = self.path_for(username, servers)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Deleted credential for %s", _describe(username, servers))
        return True
