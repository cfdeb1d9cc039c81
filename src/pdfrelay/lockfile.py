from __future__ import annotations

import hashlib
import os
import socket
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import msgspec

from .logging import get_logger

logger = get_logger(__name__)

LOCK_VERSION = 1
LOCK_FILENAME = "pdfrelay.lock"


class LockInfo(msgspec.Struct, forbid_unknown_fields=False):
    version: int = 0
    instance_id: str | None = None
    pid: int | None = None
    started_at: str | None = None
    hostname: str | None = None
    storage_dir: str | None = None
    token_fingerprint: str | None = None
    argv: list[str] | None = None


class LockError(RuntimeError):
    def __init__(
        self,
        *,
        path: Path,
        existing: LockInfo | None,
        state: str,
    ) -> None:
        self.path = path
        self.existing = existing
        self.state = state
        super().__init__(_format_lock_message(path, state))


@dataclass
class LockHandle:
    path: Path
    instance_id: str

    def release(self) -> None:
        try:
            existing = _read_lock_info(self.path)
            if existing is None or existing.instance_id == self.instance_id:
                self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("lock.release_failed", path=str(self.path), error=str(exc))

    def __enter__(self) -> "LockHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def token_fingerprint(token: str) -> str:
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    return digest[:10]


def lock_path_for_storage(storage_dir: Path) -> Path:
    return storage_dir / LOCK_FILENAME


def acquire_lock(
    *, storage_dir: Path, token_fingerprint: str | None = None
) -> LockHandle:
    root = storage_dir.expanduser().resolve()
    lock_path = lock_path_for_storage(root)
    instance_id = uuid.uuid4().hex
    info = LockInfo(
        version=LOCK_VERSION,
        instance_id=instance_id,
        pid=os.getpid(),
        started_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        hostname=socket.gethostname(),
        storage_dir=str(root),
        token_fingerprint=token_fingerprint,
        argv=list(sys.argv),
    )
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = _create_exclusive(lock_path)
    except FileExistsError:
        existing = _read_lock_info(lock_path)
        state = _lock_state(existing)
        if state != "stale":
            raise LockError(path=lock_path, existing=existing, state=state) from None
        logger.info("lock.replacing_stale", path=str(lock_path), pid=existing.pid)
        lock_path.unlink(missing_ok=True)
        try:
            fd = _create_exclusive(lock_path)
        except OSError as exc:
            raise LockError(path=lock_path, existing=existing, state=str(exc)) from exc
    except OSError as exc:
        raise LockError(path=lock_path, existing=None, state=str(exc)) from exc

    with os.fdopen(fd, "wb") as handle:
        handle.write(msgspec.json.format(msgspec.json.encode(info), indent=2))
        handle.write(b"\n")

    return LockHandle(path=lock_path, instance_id=instance_id)


def _create_exclusive(path: Path) -> int:
    return os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)


def _read_lock_info(path: Path) -> LockInfo | None:
    try:
        raw = path.read_bytes()
    except OSError:
        return None
    try:
        return msgspec.json.decode(raw, type=LockInfo)
    except msgspec.DecodeError:
        return None


def _pid_running(pid: int | None) -> bool | None:
    if pid is None or pid <= 0:
        return None
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return None
    return True


def _lock_state(existing: LockInfo | None) -> str:
    if existing is None:
        return "unknown"
    hostname = existing.hostname
    if hostname and hostname != socket.gethostname():
        return "unknown"
    running = _pid_running(existing.pid)
    if running is False:
        return "stale"
    if running:
        return "running"
    return "unknown"


def _format_lock_message(path: Path, state: str) -> str:
    if state not in {"stale", "running", "unknown"}:
        return f"failed to create lock: {state}"
    header = "another pdfrelay instance may already be using this storage."
    if state == "running":
        header = "another pdfrelay instance is already running for this storage."
    lines = [
        header,
        f"if you are sure that's not the case, delete {path}",
    ]
    return "\n".join(lines)
