"""Tests for the KeySwitcher class."""

from __future__ import annotations

import json
import multiprocessing
import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import write_store

from claude_key_switch.exceptions import (
    AllKeysDisabled,
    EmptyStore,
    KeyNotFoundError,
    StoreBusy,
    StoreCorrupt,
    StoreWriteError,
    ValidationError,
)
from claude_key_switch.locking import FileLock
from claude_key_switch.models import Platform
from claude_key_switch.switcher import HOME_ENV, LOCK_TIMEOUT_ENV, KeySwitcher

A, B, C = "sk-ant-AAAA1111", "sk-ant-BBBB2222", "sk-ant-CCCC3333"


def _cursor(store_dir: Path) -> int:
    return json.loads((store_dir / "keys.json").read_text())["cursor"]


class TestConfiguration:
    def test_default_store_dir(self, temp_home: Path):
        switcher = KeySwitcher(platform=Platform.LINUX)
        assert switcher.store_dir == temp_home / ".claude-key-switch"
        assert switcher.store_file == temp_home / ".claude-key-switch" / "keys.json"

    def test_store_dir_from_env(self, temp_home: Path, tmp_path: Path):
        with patch.dict(os.environ, {HOME_ENV: str(tmp_path / "custom")}):
            switcher = KeySwitcher(platform=Platform.LINUX)
        assert switcher.store_dir == tmp_path / "custom"

    def test_lock_timeout_from_env(self, temp_home: Path):
        with patch.dict(os.environ, {LOCK_TIMEOUT_ENV: "0.25"}):
            assert KeySwitcher(platform=Platform.LINUX).lock_timeout == 0.25

    @pytest.mark.parametrize("value", ["soon", "-1"])
    def test_invalid_lock_timeout(self, temp_home: Path, value: str):
        with patch.dict(os.environ, {LOCK_TIMEOUT_ENV: value}):
            with pytest.raises(ValidationError):
                KeySwitcher(platform=Platform.LINUX)

    @pytest.mark.skipif(sys.platform == "win32", reason="File permissions work differently on Windows")
    def test_directory_permissions(self, switcher: KeySwitcher):
        assert switcher.store_dir.stat().st_mode & 0o777 == 0o700

    def test_log_file_created(self, switcher: KeySwitcher):
        assert (switcher.store_dir / "claude-key-switch.log").exists()


class TestRotate:
    def test_rotate_advances_and_persists(self, switcher: KeySwitcher, sample_store: Path):
        assert switcher.rotate() == B
        assert _cursor(switcher.store_dir) == 1
        assert switcher.rotate() == C
        assert switcher.rotate() == A
        assert _cursor(switcher.store_dir) == 0

    def test_rotate_stamps_last_used(self, switcher: KeySwitcher, sample_store: Path):
        switcher.rotate()
        keys = json.loads(sample_store.read_text())["keys"]
        assert keys[1]["lastUsed"]
        assert keys[0]["lastUsed"] is None

    def test_rotate_empty_store(self, switcher: KeySwitcher):
        with pytest.raises(EmptyStore):
            switcher.rotate()
        # The core never writes a default store
        assert not switcher.store_file.exists()

    def test_rotate_all_disabled(self, switcher: KeySwitcher, sample_store: Path):
        for ident in ("1", "2", "3"):
            switcher.set_disabled(ident, True)
        before = sample_store.read_text()

        with pytest.raises(AllKeysDisabled):
            switcher.rotate()
        assert sample_store.read_text() == before

    def test_rotate_corrupt_store(self, switcher: KeySwitcher, store_dir: Path):
        (store_dir / "keys.json").write_text("{broken")
        with pytest.raises(StoreCorrupt):
            switcher.rotate()

    def test_rotate_malformed_stored_key(self, switcher: KeySwitcher, store_dir: Path):
        write_store(store_dir, [A, "bad key"])
        with pytest.raises(StoreCorrupt):
            switcher.rotate()
        assert _cursor(store_dir) == 0

    def test_rotate_busy_store(self, switcher: KeySwitcher, sample_store: Path):
        holder = FileLock(switcher.lock_file)
        assert holder.acquire(timeout=1.0)
        switcher.lock_timeout = 0.2
        try:
            with pytest.raises(StoreBusy):
                switcher.rotate()
        finally:
            holder.release()
        assert _cursor(switcher.store_dir) == 0

    def test_lock_released_after_failure(self, switcher: KeySwitcher):
        with pytest.raises(EmptyStore):
            switcher.rotate()
        lock = FileLock(switcher.lock_file)
        assert lock.acquire(timeout=0.5)
        lock.release()


class TestCurrent:
    def test_current_does_not_advance(self, switcher: KeySwitcher, sample_store: Path):
        before = sample_store.read_text()
        assert switcher.current_key() == A
        assert switcher.current_key() == A
        assert sample_store.read_text() == before

    def test_current_empty(self, switcher: KeySwitcher):
        with pytest.raises(EmptyStore):
            switcher.current_key()

    def test_current_disabled_warns(
        self, switcher: KeySwitcher, sample_store: Path, capsys
    ):
        switcher.set_disabled("1", True)
        capsys.readouterr()

        assert switcher.current_key() == A
        assert "disabled" in capsys.readouterr().err


class TestSwitchTo:
    def test_switch_by_number(self, switcher: KeySwitcher, sample_store: Path):
        assert switcher.switch_to("3") == C
        assert _cursor(switcher.store_dir) == 2

    def test_switch_by_label(self, switcher: KeySwitcher, sample_store: Path):
        assert switcher.switch_to("keyb") == B
        assert switcher.rotate() == C

    def test_switch_unknown(self, switcher: KeySwitcher, sample_store: Path):
        with pytest.raises(KeyNotFoundError):
            switcher.switch_to("9")
        with pytest.raises(KeyNotFoundError):
            switcher.switch_to("nope")

    def test_switch_to_disabled(self, switcher: KeySwitcher, sample_store: Path):
        switcher.set_disabled("keyc", True)
        with pytest.raises(ValidationError):
            switcher.switch_to("keyc")


class TestAddRemove:
    def test_add_first_key_becomes_current(self, switcher: KeySwitcher):
        assert switcher.add_key(A, "work") == 1
        assert switcher.current_key() == A

    def test_add_appends_in_order(self, switcher: KeySwitcher):
        switcher.add_key(A)
        switcher.add_key(B, "second")
        switcher.add_key(A, "dup")

        assert switcher.rotate() == B
        assert switcher.rotate() == A
        assert switcher.rotate() == A
        assert _cursor(switcher.store_dir) == 0

    @pytest.mark.parametrize("secret,label", [("", ""), ("two words", ""), (A, "42")])
    def test_add_rejects_invalid(self, switcher: KeySwitcher, secret: str, label: str):
        with pytest.raises(ValidationError):
            switcher.add_key(secret, label)
        assert not switcher.store_file.exists()

    def test_add_with_keyring(self, store_dir: Path):
        with patch("claude_key_switch.vault.keyring", create=True) as mock_keyring:
            switcher = KeySwitcher(store_dir=store_dir, platform=Platform.MACOS)
            switcher.add_key(A, "work")

            mock_keyring.set_password.assert_called_once()
            assert A not in switcher.store_file.read_text()

            mock_keyring.get_password.return_value = A
            assert switcher.current_key() == A

    def test_remove_with_confirmation(self, switcher: KeySwitcher, sample_store: Path):
        with patch("builtins.input", return_value="y"):
            switcher.remove_key("keyb")

        assert switcher.rotate() == C
        assert switcher.rotate() == A

    def test_remove_cancelled(self, switcher: KeySwitcher, sample_store: Path):
        before = sample_store.read_text()
        with patch("builtins.input", return_value="n"):
            switcher.remove_key("2")
        assert sample_store.read_text() == before

    def test_remove_current_moves_cursor(self, switcher: KeySwitcher, sample_store: Path):
        switcher.switch_to("3")
        switcher.remove_key("3", confirm=False)
        assert switcher.current_key() == A

    def test_remove_last_key(self, switcher: KeySwitcher):
        switcher.add_key(A)
        switcher.remove_key("1", confirm=False)

        with pytest.raises(EmptyStore):
            switcher.current_key()
        assert _cursor(switcher.store_dir) is None

    def test_remove_unknown(self, switcher: KeySwitcher, sample_store: Path):
        with pytest.raises(KeyNotFoundError):
            switcher.remove_key("0", confirm=False)


class TestDisable:
    def test_disabled_key_skipped(self, switcher: KeySwitcher, sample_store: Path):
        switcher.set_disabled("keyb", True)
        assert switcher.rotate() == C
        assert switcher.rotate() == A

        switcher.set_disabled("keyb", False)
        assert switcher.rotate() == B


class TestListAndStatus:
    def test_list_masks_keys(self, switcher: KeySwitcher, sample_store: Path, capsys):
        switcher.set_disabled("2", True)
        capsys.readouterr()

        switcher.list_keys()
        out = capsys.readouterr().out

        for secret in (A, B, C):
            assert secret not in out
        assert "keya" in out
        assert "(current)" in out
        assert "(disabled)" in out

    def test_list_empty(self, switcher: KeySwitcher, capsys):
        switcher.list_keys()
        assert "No API keys configured" in capsys.readouterr().out

    def test_status(self, switcher: KeySwitcher, sample_store: Path, capsys):
        switcher.rotate()
        switcher.status()
        out = capsys.readouterr().out
        assert "key 2 of 3 (keyb)" in out
        assert B not in out

    def test_status_empty(self, switcher: KeySwitcher, capsys):
        switcher.status()
        assert "No API keys configured" in capsys.readouterr().out


class TestPurge:
    def test_purge_removes_store(self, switcher: KeySwitcher, sample_store: Path):
        switcher.purge(confirm=False)
        assert not switcher.store_dir.exists()

    def test_purge_cancelled(self, switcher: KeySwitcher, sample_store: Path):
        with patch("builtins.input", return_value="n"):
            switcher.purge()
        assert sample_store.exists()

    def test_purge_corrupt_store(self, switcher: KeySwitcher, store_dir: Path):
        (store_dir / "keys.json").write_text("{broken")
        switcher.purge(confirm=False)
        assert not store_dir.exists()


def _rotate_process(store_dir: str, start_event, results):
    """Helper function to rotate once in a subprocess."""
    switcher = KeySwitcher(
        store_dir=Path(store_dir), lock_timeout=10.0, platform=Platform.LINUX
    )
    start_event.wait(timeout=10.0)
    results.put(switcher.rotate())


class TestConcurrentRotation:
    """Concurrent rotations are serialized by the store lock."""

    def test_no_lost_updates(self, sample_store: Path):
        store_dir = sample_store.parent
        start_event = multiprocessing.Event()
        results = multiprocessing.Queue()

        processes = [
            multiprocessing.Process(
                target=_rotate_process, args=(str(store_dir), start_event, results)
            )
            for _ in range(2)
        ]
        for p in processes:
            p.start()
        start_event.set()

        observed = {results.get(timeout=20.0), results.get(timeout=20.0)}
        for p in processes:
            p.join(timeout=10.0)
            if p.is_alive():
                p.terminate()

        assert observed == {B, C}
        assert _cursor(store_dir) == 2


class TestRemovePrompt:
    """The removal prompt runs without the store lock held."""

    def test_rotate_allowed_during_prompt(self, switcher: KeySwitcher, sample_store: Path):
        other = KeySwitcher(
            store_dir=switcher.store_dir, lock_timeout=0.3, platform=Platform.LINUX
        )
        rotated = []

        def answer(prompt: str) -> str:
            rotated.append(other.rotate())
            return "y"

        with patch("builtins.input", side_effect=answer):
            switcher.remove_key("keya")

        assert rotated == [B]
        # The cursor still points at B after A is removed ahead of it
        assert switcher.current_key() == B
        assert len(json.loads(sample_store.read_text())["keys"]) == 2

    def test_key_removed_elsewhere_during_prompt(
        self, switcher: KeySwitcher, sample_store: Path
    ):
        other = KeySwitcher(
            store_dir=switcher.store_dir, lock_timeout=0.3, platform=Platform.LINUX
        )

        def answer(prompt: str) -> str:
            other.remove_key("keyb", confirm=False)
            return "y"

        with patch("builtins.input", side_effect=answer):
            with pytest.raises(KeyNotFoundError):
                switcher.remove_key("keyb")

        assert len(json.loads(sample_store.read_text())["keys"]) == 2

    def test_closed_stdin_cancels_remove(
        self, switcher: KeySwitcher, sample_store: Path, capsys
    ):
        before = sample_store.read_text()
        with patch("builtins.input", side_effect=EOFError):
            switcher.remove_key("2")

        assert sample_store.read_text() == before
        assert "Cancelled" in capsys.readouterr().err

    def test_closed_stdin_cancels_purge(self, switcher: KeySwitcher, sample_store: Path):
        with patch("builtins.input", side_effect=EOFError):
            switcher.purge()
        assert sample_store.exists()


class TestIdentifiers:
    def test_non_ascii_digit_is_not_a_position(
        self, switcher: KeySwitcher, sample_store: Path
    ):
        with pytest.raises(KeyNotFoundError):
            switcher.switch_to("²")
        assert _cursor(switcher.store_dir) == 0

    def test_empty_identifier_never_matches_unlabeled_key(self, switcher: KeySwitcher):
        switcher.add_key(A)
        with pytest.raises(KeyNotFoundError):
            switcher.switch_to("")
        with pytest.raises(KeyNotFoundError):
            switcher.remove_key("", confirm=False)


class TestUnusableStoreDir:
    def test_store_dir_under_a_file(self, tmp_path: Path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")

        with pytest.raises(StoreWriteError):
            KeySwitcher(store_dir=blocker / "sub", platform=Platform.LINUX)
