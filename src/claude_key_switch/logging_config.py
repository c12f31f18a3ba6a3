"""Logging for claude-key-switch.

Log records pass through :class:`SecretMaskingFilter` before any handler
writes them, so a key that slips into a message is stored masked.
"""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from claude_key_switch.models import mask_secret

LOGGER_NAME = "claude-key-switch"
LOG_FILE_NAME = "claude-key-switch.log"

# Anthropic/OpenAI style keys
_KEY_SHAPE = re.compile(r"sk-[A-Za-z0-9_\-]{8,}")


class SecretMaskingFilter(logging.Filter):
    """Replace known secrets and key-shaped tokens with their masked form."""

    def __init__(self):
        super().__init__()
        self._secrets: set[str] = set()

    def add_secret(self, secret: str | None) -> None:
        if secret:
            self._secrets.add(secret)

    def mask(self, text: str) -> str:
        # Longest first so a secret containing another is masked whole
        for secret in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(secret, mask_secret(secret))
        return _KEY_SHAPE.sub(lambda m: mask_secret(m.group(0)), text)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = self.mask(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logging(
    log_dir: Path,
    debug: bool = False,
    secret_filter: SecretMaskingFilter | None = None,
) -> logging.Logger:
    """Setup logging with file and optional console output.

    Args:
        log_dir: Directory to store log files (the store directory).
        debug: Enable debug logging to the console (stderr).
        secret_filter: Filter attached to every handler; a fresh one is
            created when omitted.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    if secret_filter is None:
        secret_filter = SecretMaskingFilter()

    log_dir.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=1024 * 1024,  # 1MB
        backupCount=3,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    )
    file_handler.addFilter(secret_filter)
    logger.addHandler(file_handler)

    # stdout is reserved for keys, so the console handler writes to stderr
    if debug:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        console_handler.addFilter(secret_filter)
        logger.addHandler(console_handler)

    return logger
