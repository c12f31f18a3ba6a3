"""Data models for claude-key-switch."""

from __future__ import annotations

import os
import platform as platform_module
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto

from claude_key_switch.exceptions import ValidationError

# Secrets are opaque, but must be a single token
_SECRET_PATTERN = re.compile(r"^\S+$")


class Platform(Enum):
    """Supported platforms."""

    MACOS = auto()
    LINUX = auto()
    WSL = auto()
    WINDOWS = auto()
    UNKNOWN = auto()

    @classmethod
    def detect(cls) -> Platform:
        """Detect current platform."""
        system = platform_module.system()
        if system == "Darwin":
            return cls.MACOS
        elif system == "Windows":
            return cls.WINDOWS
        elif system == "Linux":
            if os.environ.get("WSL_DISTRO_NAME"):
                return cls.WSL
            return cls.LINUX
        return cls.UNKNOWN


@dataclass
class KeyEntry:
    """A stored API key plus its metadata.

    ``id`` and ``secret`` never change once the entry is stored; ``label``,
    ``last_used`` and ``disabled`` are metadata and may be updated.
    ``secret`` is ``None`` when the secret lives in the system keyring and
    has not been fetched yet.
    """

    id: str
    secret: str | None
    label: str = ""
    added: str = ""
    last_used: str | None = None
    disabled: bool = False

    @classmethod
    def create(cls, secret: str, label: str = "") -> KeyEntry:
        """Create a new entry with a fresh identifier."""
        validate_secret(secret)
        return cls(
            id=uuid.uuid4().hex,
            secret=secret,
            label=label,
            added=get_timestamp(),
        )

    @classmethod
    def from_dict(cls, data: dict, secret: str | None) -> KeyEntry:
        """Create KeyEntry from its persisted dictionary.

        Unknown fields are ignored.
        """
        return cls(
            id=data["id"],
            secret=secret,
            label=data.get("label") or "",
            added=data.get("added", ""),
            last_used=data.get("lastUsed"),
            disabled=bool(data.get("disabled", False)),
        )

    def to_dict(self) -> dict:
        """Convert metadata to a dictionary for JSON serialization.

        The secret is added by the store, depending on where it is kept.
        """
        return {
            "id": self.id,
            "label": self.label,
            "added": self.added,
            "lastUsed": self.last_used,
            "disabled": self.disabled,
        }

    @property
    def display_name(self) -> str:
        return self.label or self.id[:8]


@dataclass
class KeyStore:
    """Ordered keys plus the cursor of the active one.

    Order is rotation order. ``cursor`` is ``None`` only when ``entries`` is
    empty.
    """

    entries: list[KeyEntry] = field(default_factory=list)
    cursor: int | None = None
    last_updated: str = ""

    def __len__(self) -> int:
        return len(self.entries)

    def is_empty(self) -> bool:
        return not self.entries

    def cursor_in_range(self) -> bool:
        """Check the cursor invariant for the current entries."""
        if not self.entries:
            return self.cursor is None
        return isinstance(self.cursor, int) and 0 <= self.cursor < len(self.entries)

    def append(self, entry: KeyEntry) -> int:
        """Append an entry and return its index.

        The first entry of an empty store becomes current.
        """
        self.entries.append(entry)
        if self.cursor is None:
            self.cursor = 0
        return len(self.entries) - 1

    def remove(self, index: int) -> KeyEntry:
        """Remove the entry at ``index`` and keep the cursor in range.

        The cursor stays on the same logical entry; if the current entry is
        removed the cursor moves to the entry that took its place.
        """
        entry = self.entries.pop(index)
        if not self.entries:
            self.cursor = None
        elif self.cursor is not None:
            if index < self.cursor:
                self.cursor -= 1
            elif self.cursor >= len(self.entries):
                self.cursor = 0
        return entry

    def touch(self) -> None:
        self.last_updated = get_timestamp()


@dataclass
class KeyListing:
    """Display-safe view of a stored key."""

    position: int
    label: str
    masked: str
    disabled: bool
    last_used: str | None
    current: bool

    def format(self) -> str:
        parts = [f"  {self.position}: {self.label or '(no label)'}  {self.masked}"]
        if self.disabled:
            parts.append("(disabled)")
        if self.current:
            parts.append("(current)")
        if self.last_used:
            parts.append(f"last used {self.last_used}")
        return " ".join(parts)


def validate_secret(secret: str) -> None:
    """Reject secrets that cannot be exported as a single shell word."""
    if not secret or not _SECRET_PATTERN.match(secret):
        raise ValidationError("API key must be non-empty and contain no whitespace")


def mask_secret(secret: str | None) -> str:
    """Mask a secret for display, keeping only a short prefix and suffix."""
    if not secret:
        return "****"
    if len(secret) <= 12:
        return "****" + secret[-2:]
    return f"{secret[:4]}...{secret[-4:]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
