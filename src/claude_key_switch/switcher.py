"""Core key switcher logic for claude-key-switch."""

from __future__ import annotations

import os
import shutil
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from claude_key_switch import rotation
from claude_key_switch.exceptions import (
    KeyNotFoundError,
    StoreCorrupt,
    StoreWriteError,
    ValidationError,
)
from claude_key_switch.locking import DEFAULT_LOCK_TIMEOUT, FileLock
from claude_key_switch.logging_config import SecretMaskingFilter, setup_logging
from claude_key_switch.models import (
    KeyEntry,
    KeyStore,
    Platform,
    mask_secret,
    validate_secret,
)
from claude_key_switch.store import CredentialStore
from claude_key_switch.vault import SecretVault

HOME_ENV = "CLAUDE_KEY_SWITCH_HOME"
LOCK_TIMEOUT_ENV = "CLAUDE_KEY_SWITCH_LOCK_TIMEOUT"


def notice(message: str) -> None:
    """Print a human-facing message; stdout is reserved for keys."""
    print(message, file=sys.stderr)


class KeySwitcher:
    """Rotate through the API keys kept in one per-user store."""

    def __init__(
        self,
        store_dir: Path | None = None,
        debug: bool = False,
        lock_timeout: float | None = None,
        platform: Platform | None = None,
    ):
        self.home = Path.home()
        self.store_dir = store_dir or self._default_store_dir()
        self.store_file = self.store_dir / "keys.json"
        self.lock_file = self.store_dir / ".lock"
        self.platform = platform or Platform.detect()
        if lock_timeout is None:
            lock_timeout = self._lock_timeout_from_env()
        self.lock_timeout = lock_timeout
        self.vault = SecretVault(self.platform)
        self.store = CredentialStore(self.store_file, self.vault)
        self._secret_filter = SecretMaskingFilter()
        try:
            self._setup_directories()
            self._logger = setup_logging(
                self.store_dir, debug=debug, secret_filter=self._secret_filter
            )
        except OSError as e:
            raise StoreWriteError(
                f"Cannot use store directory {self.store_dir}: {e}"
            ) from e

    def _default_store_dir(self) -> Path:
        override = os.environ.get(HOME_ENV)
        if override:
            return Path(override).expanduser()
        return self.home / ".claude-key-switch"

    @staticmethod
    def _lock_timeout_from_env() -> float:
        raw = os.environ.get(LOCK_TIMEOUT_ENV)
        if not raw:
            return DEFAULT_LOCK_TIMEOUT
        try:
            value = float(raw)
        except ValueError:
            raise ValidationError(f"{LOCK_TIMEOUT_ENV} must be a number, got {raw!r}")
        if value < 0:
            raise ValidationError(f"{LOCK_TIMEOUT_ENV} must not be negative")
        return value

    def _setup_directories(self) -> None:
        """Create the store directory with proper permissions."""
        self.store_dir.mkdir(parents=True, exist_ok=True)
        if sys.platform != "win32":
            os.chmod(self.store_dir, 0o700)

    @contextmanager
    def _locked_store(self) -> Iterator[KeyStore]:
        """Hold the store lock for the whole load/mutate/save section."""
        with FileLock(self.lock_file, timeout=self.lock_timeout):
            self._logger.debug("Acquired store lock")
            yield self.store.load()
        self._logger.debug("Released store lock")

    def _reveal(self, entry: KeyEntry) -> str:
        """Return an entry's secret, checking it is still well-formed."""
        secret = self.store.reveal(entry)
        self._secret_filter.add_secret(secret)
        try:
            validate_secret(secret)
        except ValidationError:
            raise StoreCorrupt(f"Stored key {entry.display_name} is malformed")
        return secret

    def _resolve_identifier(self, store: KeyStore, identifier: str) -> int:
        """Resolve a 1-based position or a label to an entry index."""
        if not identifier:
            raise KeyNotFoundError("Key identifier must not be empty")
        if identifier.isdecimal():
            index = int(identifier) - 1
            if not 0 <= index < len(store.entries):
                raise KeyNotFoundError(f"Key #{identifier} does not exist")
            return index

        for index, entry in enumerate(store.entries):
            if entry.label == identifier:
                return index
        raise KeyNotFoundError(f"No key found with label: {identifier}")

    def rotate(self) -> str:
        """Advance to the next enabled key and return it."""
        with self._locked_store() as store:
            previous = store.cursor
            entry = rotation.advance(store)
            secret = self._reveal(entry)
            self.store.save(store)

        self._logger.info(
            f"Rotated key {_position(previous)} -> {store.cursor + 1} "
            f"({entry.display_name}, {mask_secret(secret)})"
        )
        return secret

    def current_key(self) -> str:
        """Return the current key without advancing."""
        with self._locked_store() as store:
            entry = rotation.current(store)
            secret = self._reveal(entry)

        if entry.disabled:
            notice(f"Warning: current key {entry.display_name} is disabled")
        return secret

    def switch_to(self, identifier: str) -> str:
        """Make a specific key current and return it."""
        with self._locked_store() as store:
            index = self._resolve_identifier(store, identifier)
            entry = rotation.select(store, index)
            secret = self._reveal(entry)
            self.store.save(store)

        self._logger.info(f"Switched to key {index + 1} ({entry.display_name})")
        notice(f"Switched to key {index + 1} ({entry.display_name})")
        return secret

    def add_key(self, secret: str, label: str = "") -> int:
        """Append a key to the rotation and return its 1-based position."""
        validate_secret(secret)
        if label.isdecimal():
            raise ValidationError("Labels must not be plain numbers")

        self._secret_filter.add_secret(secret)
        entry = KeyEntry.create(secret, label)
        with self._locked_store() as store:
            index = store.append(entry)
            if not self.vault.inline:
                self.vault.put(entry.id, secret)
            try:
                self.store.save(store)
            except Exception:
                self.vault.delete(entry.id)
                raise

        self._logger.info(
            f"Added key {index + 1} ({entry.display_name}, {mask_secret(secret)})"
        )
        notice(f"Added key {index + 1}: {entry.display_name}")
        return index + 1

    def remove_key(self, identifier: str, confirm: bool = True) -> None:
        """Remove a key from the rotation."""
        target_id = None
        if confirm:
            # Prompt without holding the lock; rotations may run meanwhile
            with self._locked_store() as snapshot:
                index = self._resolve_identifier(snapshot, identifier)
                entry = snapshot.entries[index]
                is_current = index == snapshot.cursor

            if is_current:
                notice(f"Warning: key {index + 1} ({entry.display_name}) is current")
            if not _confirm(
                f"Are you sure you want to permanently remove "
                f"key {index + 1} ({entry.display_name})? [y/N] "
            ):
                notice("Cancelled")
                return
            target_id = entry.id

        with self._locked_store() as store:
            if target_id is None:
                index = self._resolve_identifier(store, identifier)
            else:
                index = _index_of(store, target_id)
                if index is None:
                    raise KeyNotFoundError(f"Key {entry.display_name} was already removed")
            entry = store.remove(index)
            self.store.save(store)

        self.vault.delete(entry.id)
        self._logger.info(f"Removed key {index + 1} ({entry.display_name})")
        notice(f"Key {index + 1} ({entry.display_name}) has been removed")

    def set_disabled(self, identifier: str, disabled: bool) -> None:
        """Disable or re-enable a key. Disabled keys are skipped by rotation."""
        with self._locked_store() as store:
            index = self._resolve_identifier(store, identifier)
            entry = store.entries[index]
            entry.disabled = disabled
            self.store.save(store)

        state = "disabled" if disabled else "enabled"
        self._logger.info(f"Key {index + 1} ({entry.display_name}) {state}")
        notice(f"Key {index + 1} ({entry.display_name}) {state}")

    def list_keys(self) -> None:
        """List all keys in rotation order, secrets masked."""
        with self._locked_store() as store:
            listings = self.store.list(store)

        if not listings:
            print("No API keys configured.")
            return

        print("Keys:")
        for listing in listings:
            print(listing.format())

    def status(self) -> None:
        """Display the current key position."""
        with self._locked_store() as store:
            if store.is_empty():
                print("Status: No API keys configured")
                return
            entry = rotation.current(store)
            enabled = sum(1 for e in store.entries if not e.disabled)

        print(f"Status: key {store.cursor + 1} of {len(store)} ({entry.display_name})")
        print(f"  Enabled keys: {enabled}")
        if entry.last_used:
            print(f"  Last used: {entry.last_used}")

    def purge(self, confirm: bool = True) -> None:
        """Remove all claude-key-switch data from the system.

        This removes:
        - All stored keys (keyring items on macOS/Windows)
        - The store directory and all its contents
        """
        if confirm:
            print("This will remove ALL claude-key-switch data from your system:")
            print(f"  - Store directory: {self.store_dir}")
            if not self.vault.inline:
                print("  - All stored API keys from the system keyring")
            print()
            if not _confirm("Are you sure you want to purge all data? [y/N] "):
                print("Cancelled")
                return

        removed = 0
        with FileLock(self.lock_file, timeout=self.lock_timeout):
            try:
                store = self.store.load()
            except StoreCorrupt as e:
                # Still purge the directory; keyring items cannot be enumerated
                self._logger.warning(f"Purging unreadable store: {e}")
                store = KeyStore()
            for entry in store.entries:
                self.vault.delete(entry.id)
                removed += 1

        # Close log handlers before deleting (required on Windows)
        for handler in self._logger.handlers[:]:
            handler.close()
            self._logger.removeHandler(handler)

        if self.store_dir.exists():
            shutil.rmtree(self.store_dir)

        print(f"Removed {removed} keys and {self.store_dir}")
        print("Purge complete.")


def _position(cursor: int | None) -> str:
    return "-" if cursor is None else str(cursor + 1)


def _index_of(store: KeyStore, entry_id: str) -> int | None:
    for index, entry in enumerate(store.entries):
        if entry.id == entry_id:
            return index
    return None


def _confirm(prompt: str) -> bool:
    """Ask a yes/no question; closed stdin counts as no."""
    try:
        answer = input(prompt)
    except EOFError:
        print(file=sys.stderr)
        return False
    return answer.lower() == "y"
