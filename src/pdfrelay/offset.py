from __future__ import annotations

from typing import Protocol

import msgspec

from .logging import get_logger
from .storage import LocalStorage

logger = get_logger(__name__)

OFFSET_PATH = "telegram/offset.json"


class OffsetStore(Protocol):
    def read(self) -> int | None: ...

    def write(self, offset: int) -> None: ...


class _OffsetRecord(msgspec.Struct, forbid_unknown_fields=False):
    offset: int | None = None


class JsonOffsetStore:
    def __init__(self, storage: LocalStorage, rel_path: str = OFFSET_PATH) -> None:
        self._storage = storage
        self._rel_path = rel_path

    def read(self) -> int | None:
        try:
            raw = self._storage.read_text(self._rel_path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(
                "offset.read_failed", path=self._rel_path, error=str(exc)
            )
            return None
        if raw is None:
            return None
        try:
            record = msgspec.json.decode(raw, type=_OffsetRecord, strict=True)
        except msgspec.DecodeError as exc:
            logger.warning("offset.corrupt", path=self._rel_path, error=str(exc))
            return None
        return record.offset

    def write(self, offset: int) -> None:
        payload = msgspec.json.encode({"offset": offset})
        self._storage.store_bytes(self._rel_path, payload)


class MemoryOffsetStore:
    def __init__(self, offset: int | None = None) -> None:
        self.offset = offset
        self.writes: list[int] = []

    def read(self) -> int | None:
        return self.offset

    def write(self, offset: int) -> None:
        self.offset = offset
        self.writes.append(offset)
