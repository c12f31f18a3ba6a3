"""Round-robin rotation over a loaded :class:`KeyStore`.

These functions only move the cursor (and stamp ``last_used``); persisting
the result and locking around it is the caller's job.
"""

from __future__ import annotations

from claude_key_switch.exceptions import AllKeysDisabled, EmptyStore, ValidationError
from claude_key_switch.models import KeyEntry, KeyStore, get_timestamp


def current(store: KeyStore) -> KeyEntry:
    """Return the entry under the cursor.

    Raises:
        EmptyStore: If no keys are configured.
    """
    if store.is_empty():
        raise EmptyStore("No API keys configured. Run claude-key-switch-install first.")
    return store.entries[store.cursor]


def advance(store: KeyStore) -> KeyEntry:
    """Move the cursor to the next enabled entry, wrapping around.

    Disabled entries are skipped. With a single enabled entry the cursor
    stays where it is. On failure the cursor is not modified.

    Raises:
        EmptyStore: If no keys are configured.
        AllKeysDisabled: If every key is disabled.
    """
    if store.is_empty():
        raise EmptyStore("No API keys configured. Run claude-key-switch-install first.")

    count = len(store.entries)
    for step in range(1, count + 1):
        index = (store.cursor + step) % count
        entry = store.entries[index]
        if not entry.disabled:
            store.cursor = index
            entry.last_used = get_timestamp()
            return entry

    raise AllKeysDisabled(f"All {count} API keys are disabled")


def select(store: KeyStore, index: int) -> KeyEntry:
    """Point the cursor at a specific entry.

    Raises:
        EmptyStore: If no keys are configured.
        ValidationError: If the index is out of range or the entry is disabled.
    """
    if store.is_empty():
        raise EmptyStore("No API keys configured. Run claude-key-switch-install first.")
    if not 0 <= index < len(store.entries):
        raise ValidationError(f"Key #{index + 1} does not exist")

    entry = store.entries[index]
    if entry.disabled:
        raise ValidationError(f"Key #{index + 1} ({entry.display_name}) is disabled")
    store.cursor = index
    entry.last_used = get_timestamp()
    return entry
