from __future__ import annotations

import os
import tempfile
from pathlib import Path

from .logging import get_logger

logger = get_logger(__name__)

INCOMING_DIR = "incoming"
OUTGOING_DIR = "outgoing"


def write_bytes_atomic(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class LocalStorage:
    """Files under a single root directory, addressed by relative paths."""

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser().resolve()

    def path(self, rel_path: str | Path) -> Path:
        rel = Path(rel_path)
        if rel.is_absolute():
            raise ValueError(f"storage path must be relative: {rel_path}")
        target = (self.root / rel).resolve()
        if not target.is_relative_to(self.root):
            raise ValueError(f"storage path escapes the root: {rel_path}")
        return target

    def ensure_directory(self, rel_path: str | Path) -> Path:
        target = self.path(rel_path)
        target.mkdir(parents=True, exist_ok=True)
        return target

    def store_bytes(self, rel_path: str | Path, payload: bytes) -> Path:
        target = self.path(rel_path)
        write_bytes_atomic(target, payload)
        logger.debug("storage.stored", path=str(target), size=len(payload))
        return target

    def exists(self, rel_path: str | Path) -> bool:
        return self.path(rel_path).is_file()

    def read_text(self, rel_path: str | Path) -> str | None:
        try:
            return self.path(rel_path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def size(self, rel_path: str | Path) -> int | None:
        try:
            return self.path(rel_path).stat().st_size
        except OSError:
            return None
