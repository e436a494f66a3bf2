"""
Credential store for Gmail OAuth tokens.

Maps a normalized mailbox address to the long-lived refresh token the user
handed over after consenting to Gmail access. Everything else in the
pipeline talks to the ``CredentialStore`` protocol (``get`` / ``put``), so
tests can swap in an in-memory fake without touching the file system.

File format (``FileCredentialStore``)
-------------------------------------
One ``account:credential`` pair per line, split on the first colon::

    # comments and blank lines are ignored
    alice@example.com:1//0gAbCdEf...

Writes go to ``<path>.tmp`` first and are then renamed over the real file,
so a crash mid-write never leaves a truncated store behind.

Environment variables
---------------------
GMAIL_TOKEN_FILE   Path of the store file
                   (default: ``.local/gmail_tokens.txt`` under the CWD).
"""

import logging
import os
import threading
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

_DEFAULT_TOKEN_FILE = Path(".local") / "gmail_tokens.txt"


def normalize_account(email: str) -> str:
    """Trim and lower-case a mailbox address. Idempotent."""
    return email.strip().lower()


class CredentialStore(Protocol):
    def get(self, account: str) -> Optional[str]:
        ...

    def put(self, account: str, credential: str) -> None:
        ...


class FileCredentialStore:
    """Newline-delimited ``account:credential`` file with atomic rewrites."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        # Serializes read-modify-write within this process only
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}

        tokens: dict[str, str] = {}
        for raw_line in content.split("\n"):
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue

            separator = line.find(":")
            if separator <= 0:
                continue

            account = normalize_account(line[:separator])
            credential = line[separator + 1:].strip()
            if account and credential:
                tokens[account] = credential

        return tokens

    def _write(self, tokens: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        output = "\n".join(f"{account}:{credential}" for account, credential in tokens.items())
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(f"{output}\n" if output else "", encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get(self, account: str) -> Optional[str]:
        return self._read().get(normalize_account(account))

    def put(self, account: str, credential: str) -> None:
        """
        Store ``credential`` for ``account``, replacing any previous value.

        Raises:
            ValueError: if either value is empty after trimming.
        """
        normalized_account = normalize_account(account)
        normalized_credential = credential.strip()

        if not normalized_account or not normalized_credential:
            raise ValueError("Email and token are required")

        with self._lock:
            tokens = self._read()
            tokens[normalized_account] = normalized_credential
            self._write(tokens)

        logger.info(f"Stored Gmail credential for {normalized_account}")


def _resolve_token_file() -> Path:
    configured = os.getenv("GMAIL_TOKEN_FILE", "").strip()
    if configured:
        return Path(configured)
    return Path.cwd() / _DEFAULT_TOKEN_FILE


_store: Optional[FileCredentialStore] = None


def get_credential_store() -> CredentialStore:
    """
    FastAPI dependency returning the process-wide credential store.

    The path is resolved on first use so GMAIL_TOKEN_FILE set by .env is
    honoured.
    """
    global _store
    if _store is None:
        _store = FileCredentialStore(_resolve_token_file())
        logger.info(f"Using Gmail credential store at {_store.path}")
    return _store
