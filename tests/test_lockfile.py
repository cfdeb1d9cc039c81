import json
from pathlib import Path

import pytest

import pdfrelay.lockfile as lockfile


def test_lockfile_creates_and_cleans_up(tmp_path: Path) -> None:
    handle = lockfile.acquire_lock(storage_dir=tmp_path, token_fingerprint="deadbeef")
    try:
        lock_path = lockfile.lock_path_for_storage(tmp_path.resolve())
        assert lock_path.exists()
        payload = json.loads(lock_path.read_text(encoding="utf-8"))
        assert payload["token_fingerprint"] == "deadbeef"
        assert payload["instance_id"] == handle.instance_id
    finally:
        handle.release()

    assert not lockfile.lock_path_for_storage(tmp_path.resolve()).exists()


def test_lockfile_refuses_running_pid(tmp_path: Path) -> None:
    handle = lockfile.acquire_lock(storage_dir=tmp_path)
    try:
        with pytest.raises(lockfile.LockError) as exc:
            lockfile.acquire_lock(storage_dir=tmp_path)
        assert "already running" in str(exc.value).lower()
        assert exc.value.state == "running"
        assert str(handle.path) in str(exc.value)
    finally:
        handle.release()


def test_lockfile_replaces_dead_pid(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    lock_path = lockfile.lock_path_for_storage(tmp_path.resolve())
    lock_path.write_text(json.dumps({"pid": 424242}), encoding="utf-8")
    monkeypatch.setattr(lockfile, "_pid_running", lambda pid: False)

    handle = lockfile.acquire_lock(storage_dir=tmp_path)
    try:
        updated = json.loads(lock_path.read_text(encoding="utf-8"))
        assert updated["instance_id"] == handle.instance_id
    finally:
        handle.release()


def test_lockfile_unreadable_is_unknown(tmp_path: Path) -> None:
    lock_path = lockfile.lock_path_for_storage(tmp_path.resolve())
    lock_path.write_text("garbage", encoding="utf-8")

    with pytest.raises(lockfile.LockError) as exc:
        lockfile.acquire_lock(storage_dir=tmp_path)

    assert exc.value.state == "unknown"
    assert "may already be using" in str(exc.value)


def test_release_keeps_foreign_lock(tmp_path: Path) -> None:
    handle = lockfile.acquire_lock(storage_dir=tmp_path)
    handle.path.write_text(json.dumps({"instance_id": "other"}), encoding="utf-8")

    handle.release()

    assert handle.path.exists()


def test_context_manager_releases(tmp_path: Path) -> None:
    with lockfile.acquire_lock(storage_dir=tmp_path) as handle:
        assert handle.path.exists()
    assert not handle.path.exists()


def test_token_fingerprint_is_short_and_stable() -> None:
    assert lockfile.token_fingerprint("123:abc") == lockfile.token_fingerprint(
        "123:abc"
    )
    assert len(lockfile.token_fingerprint("123:abc")) == 10
