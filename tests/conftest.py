"""Pytest fixtures for claude-key-switch tests."""

from __future__ import annotations

import base64
import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from claude_key_switch.models import Platform
from claude_key_switch.switcher import HOME_ENV, LOCK_TIMEOUT_ENV, KeySwitcher


@pytest.fixture
def temp_home(tmp_path: Path):
    """Create a temporary home directory for testing."""
    home = tmp_path / "home"
    home.mkdir()

    env = {k: v for k, v in os.environ.items() if k not in (HOME_ENV, LOCK_TIMEOUT_ENV)}
    env.update({"HOME": str(home), "USERPROFILE": str(home)})
    with patch.dict(os.environ, env, clear=True):
        # Also patch Path.home() directly for cross-platform compatibility
        with patch("pathlib.Path.home", return_value=home):
            yield home


@pytest.fixture
def store_dir(temp_home: Path) -> Path:
    return temp_home / ".claude-key-switch"


def write_store(store_dir: Path, secrets: list[str], cursor=0, **extra) -> Path:
    """Write a store file the way the installer would."""
    store_dir.mkdir(parents=True, exist_ok=True)
    keys = []
    for i, secret in enumerate(secrets):
        keys.append(
            {
                "id": f"id{i}",
                "label": f"key{chr(ord('a') + i)}",
                "secret": base64.b64encode(secret.encode()).decode(),
                "added": "2024-01-01T00:00:00Z",
                "lastUsed": None,
                "disabled": False,
            }
        )
    data = {"version": 1, "cursor": cursor, "lastUpdated": "", "keys": keys}
    data.update(extra)
    path = store_dir / "keys.json"
    path.write_text(json.dumps(data, indent=2))
    return path


@pytest.fixture
def sample_store(store_dir: Path) -> Path:
    """Three keys A, B, C with the cursor on A."""
    return write_store(store_dir, ["sk-ant-AAAA1111", "sk-ant-BBBB2222", "sk-ant-CCCC3333"])


@pytest.fixture
def switcher(store_dir: Path) -> KeySwitcher:
    return KeySwitcher(store_dir=store_dir, lock_timeout=1.0, platform=Platform.LINUX)
