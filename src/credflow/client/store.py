"""
Credential persistence.

The credential engine only needs `load`, `store` and `delete`; the memory and
file stores here are reference implementations of that contract.
"""

from __future__ import annotations as _annotations

import logging
import os
import stat
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from pydantic import RootModel, ValidationError

from credflow.shared.auth import StoredCredential, TokenErrorResponse, TokenResponse

if TYPE_CHECKING:
    from credflow.client.credential import Credential

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Persistent credential storage keyed by user id. Implementations must be thread-safe."""

    def load(self, user_id: str) -> StoredCredential | None:
        """Return the stored record, or None if nothing is stored for `user_id`."""
        ...

    def store(self, user_id: str, credential: StoredCredential) -> None:
        """Store (or replace) the record for `user_id`."""
        ...

    def delete(self, user_id: str, credential: StoredCredential | None = None) -> None:
        """Delete the record for `user_id`."""
        ...


class MemoryCredentialStore:
    """Thread-safe in-memory store, mostly useful for tests and short-lived processes."""

    def __init__(self):
        self._store: dict[str, StoredCredential] = {}
        self._lock = threading.Lock()

    def load(self, user_id: str) -> StoredCredential | None:
        with self._lock:
            return self._store.get(user_id)

    def store(self, user_id: str, credential: StoredCredential) -> None:
        with self._lock:
            self._store[user_id] = credential

    def delete(self, user_id: str, credential: StoredCredential | None = None) -> None:
        with self._lock:
            self._store.pop(user_id, None)

    def user_ids(self) -> list[str]:
        with self._lock:
            return list(self._store)


class _StoredCredentials(RootModel[dict[str, StoredCredential]]):
    root: dict[str, StoredCredential]


class FileCredentialStore:
    """
    Stores every credential in one JSON file.

    Writes go to a temporary file that replaces the original, and the file is
    readable and writable by its owner only.
    """

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, StoredCredential]:
        if not self.path.exists():
            return {}
        try:
            return _StoredCredentials.model_validate_json(self.path.read_bytes()).root
        except ValidationError as e:
            logger.error(f"Credential file {self.path} is corrupt: {e}")
            raise

    def _write(self, credentials: dict[str, StoredCredential]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = _StoredCredentials(credentials).model_dump_json(indent=2)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
            os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def load(self, user_id: str) -> StoredCredential | None:
        with self._lock:
            return self._read().get(user_id)

    def store(self, user_id: str, credential: StoredCredential) -> None:
        with self._lock:
            credentials = self._read()
            credentials[user_id] = credential
            self._write(credentials)
        logger.debug(f"Stored credential for {user_id}")

    def delete(self, user_id: str, credential: StoredCredential | None = None) -> None:
        with self._lock:
            credentials = self._read()
            if credentials.pop(user_id, None) is not None:
                self._write(credentials)
                logger.debug(f"Deleted credential for {user_id}")


class CredentialStoreRefreshListener:
    """Persists the credential after every refresh attempt."""

    def __init__(self, user_id: str, credential_store: CredentialStore):
        self.user_id = user_id
        self.credential_store = credential_store

    def on_token_response(self, credential: Credential, token_response: TokenResponse) -> None:
        self.make_persistent(credential)

    def on_token_error_response(self, credential: Credential, token_error_response: TokenErrorResponse | None) -> None:
        self.make_persistent(credential)

    def make_persistent(self, credential: Credential) -> None:
        self.credential_store.store(self.user_id, credential.snapshot())
