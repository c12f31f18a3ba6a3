"""Where key secrets are kept.

On Linux/WSL secrets are stored inline in the store file (base64 encoded)
to avoid keyring backend issues. On macOS/Windows they go to the system
keyring and the store file only carries metadata.
"""

from __future__ import annotations

import base64
import binascii
import logging
import sys

# Only import keyring on non-Linux platforms
if sys.platform != "linux":
    import keyring

from claude_key_switch.exceptions import StoreCorrupt, StoreWriteError
from claude_key_switch.logging_config import LOGGER_NAME
from claude_key_switch.models import Platform

# Service name for keyring storage
KEYRING_SERVICE = "claude-key-switch"

logger = logging.getLogger(LOGGER_NAME)


class SecretVault:
    """Encodes, stores and fetches key secrets for one platform."""

    def __init__(self, platform: Platform | None = None):
        self.platform = platform or Platform.detect()

    @property
    def inline(self) -> bool:
        """True when secrets are persisted inside the store file."""
        return self.platform not in (Platform.MACOS, Platform.WINDOWS)

    @staticmethod
    def encode(secret: str) -> str:
        return base64.b64encode(secret.encode("utf-8")).decode("ascii")

    @staticmethod
    def decode(encoded: str) -> str:
        try:
            return base64.b64decode(encoded.encode("ascii"), validate=True).decode(
                "utf-8"
            )
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise StoreCorrupt(f"Stored key could not be decoded: {e}") from e

    def _username(self, entry_id: str) -> str:
        return f"key-{entry_id}"

    def fetch(self, entry_id: str) -> str:
        """Read a secret from the system keyring.

        Raises:
            StoreCorrupt: If the keyring has no secret for this entry.
        """
        try:
            secret = keyring.get_password(KEYRING_SERVICE, self._username(entry_id))
        except Exception as e:
            logger.error(f"Failed to read key {entry_id} from keyring: {e}")
            raise StoreCorrupt(f"Failed to read key from keyring: {e}") from e
        if not secret:
            raise StoreCorrupt(f"Key {entry_id[:8]} is missing from the system keyring")
        return secret

    def put(self, entry_id: str, secret: str) -> None:
        """Write a secret to the system keyring.

        Raises:
            StoreWriteError: If the keyring rejects the write.
        """
        try:
            keyring.set_password(KEYRING_SERVICE, self._username(entry_id), secret)
        except Exception as e:
            raise StoreWriteError(f"Failed to write key to keyring: {e}") from e

    def delete(self, entry_id: str) -> None:
        """Remove a secret from the system keyring, if present."""
        if self.inline:
            return
        try:
            keyring.delete_password(KEYRING_SERVICE, self._username(entry_id))
        except keyring.errors.PasswordDeleteError:
            pass  # Already gone
        except Exception as e:
            logger.warning(f"Failed to delete key {entry_id} from keyring: {e}")
