"""Durable key store.

A :class:`CredentialStore` is a handle on one JSON file. It never holds a
lock itself; callers wrap load/mutate/save in a :class:`FileLock`.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

from claude_key_switch.exceptions import StoreCorrupt, StoreWriteError
from claude_key_switch.logging_config import LOGGER_NAME
from claude_key_switch.models import KeyEntry, KeyListing, KeyStore, mask_secret
from claude_key_switch.vault import SecretVault

FORMAT_VERSION = 1

logger = logging.getLogger(LOGGER_NAME)


class CredentialStore:
    """Load and atomically save a :class:`KeyStore`."""

    def __init__(self, path: Path, vault: SecretVault | None = None):
        self.path = path
        self.vault = vault or SecretVault()

    def load(self) -> KeyStore:
        """Read the store from disk.

        A missing file is an empty store; nothing is written for it.

        Raises:
            StoreCorrupt: If the file is unreadable, malformed, or its cursor
                is out of range.
        """
        if not self.path.exists():
            return KeyStore()

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreCorrupt(f"Cannot read key store {self.path}: {e}") from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in {self.path}")
            raise StoreCorrupt(f"Key store {self.path} is not valid JSON") from e

        if not isinstance(data, dict):
            raise StoreCorrupt(f"Key store {self.path} is not a JSON object")

        raw_keys = data.get("keys", [])
        if not isinstance(raw_keys, list):
            raise StoreCorrupt("Key store 'keys' field must be a list")

        entries = [self._entry_from_dict(raw, i) for i, raw in enumerate(raw_keys)]

        if entries:
            cursor = data.get("cursor", 0)
        else:
            cursor = None
        store = KeyStore(
            entries=entries,
            cursor=cursor,
            last_updated=data.get("lastUpdated", ""),
        )
        # bool is an int subclass; reject it explicitly
        if isinstance(cursor, bool) or not store.cursor_in_range():
            raise StoreCorrupt(
                f"Key store cursor {cursor!r} is out of range for {len(entries)} keys"
            )
        logger.debug(f"Loaded {len(entries)} keys, cursor={cursor}")
        return store

    def _entry_from_dict(self, raw: object, index: int) -> KeyEntry:
        if not isinstance(raw, dict) or not isinstance(raw.get("id"), str):
            raise StoreCorrupt(f"Key #{index + 1} has no identifier")

        secret = None
        if self.vault.inline:
            encoded = raw.get("secret")
            if not isinstance(encoded, str):
                raise StoreCorrupt(f"Key #{index + 1} has no secret")
            secret = self.vault.decode(encoded)

        if not isinstance(raw.get("disabled", False), bool):
            raise StoreCorrupt(f"Key #{index + 1} has a non-boolean disabled flag")
        return KeyEntry.from_dict(raw, secret)

    def save(self, store: KeyStore) -> None:
        """Atomically replace the store file.

        The new content is written to a temp file next to the store, synced,
        and renamed over the old file, so readers only ever see the previous
        or the new store.

        Raises:
            StoreWriteError: On any I/O failure. The committed store is left
                untouched.
        """
        if not store.cursor_in_range():
            raise StoreWriteError(
                f"Refusing to save cursor {store.cursor!r} for {len(store)} keys"
            )

        store.touch()
        content = json.dumps(self._to_dict(store), indent=2)
        temp_path = self.path.with_suffix(f".{os.getpid()}.tmp")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            if sys.platform != "win32":
                os.chmod(temp_path, 0o600)

            # Move to final location
            os.replace(temp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save key store: {e}")
            try:
                temp_path.unlink()
            except OSError:
                pass  # Temp file was never created or is already gone
            raise StoreWriteError(f"Failed to save key store: {e}") from e

        logger.debug(f"Saved {len(store)} keys, cursor={store.cursor}")

    def _to_dict(self, store: KeyStore) -> dict:
        keys = []
        for entry in store.entries:
            data = entry.to_dict()
            if self.vault.inline:
                data["secret"] = self.vault.encode(entry.secret)
            keys.append(data)
        return {
            "version": FORMAT_VERSION,
            "cursor": store.cursor,
            "lastUpdated": store.last_updated,
            "keys": keys,
        }

    def list(self, store: KeyStore | None = None) -> list[KeyListing]:
        """Return display-safe listings in rotation order.

        Secrets are masked; on keyring platforms only the label is shown.
        """
        if store is None:
            store = self.load()
        return [
            KeyListing(
                position=i + 1,
                label=entry.label,
                masked=mask_secret(entry.secret) if entry.secret else "(keyring)",
                disabled=entry.disabled,
                last_used=entry.last_used,
                current=i == store.cursor,
            )
            for i, entry in enumerate(store.entries)
        ]

    def reveal(self, entry: KeyEntry) -> str:
        """Return the full secret for an entry, fetching it if needed."""
        if entry.secret is None:
            entry.secret = self.vault.fetch(entry.id)
        return entry.secret
