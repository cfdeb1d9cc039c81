from __future__ import annotations

import shutil
import time
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

import anyio

from .config import CompressionLevel
from .ilovepdf import CompressBackend
from .logging import get_logger
from .model import CompressionResult

logger = get_logger(__name__)

MAX_ATTEMPTS = 3
RETRY_DELAYS_S: tuple[float, float] = (2.0, 5.0)
GENERIC_FAILURE = "Could not compress the PDF, please try again later."


class CompressionError(RuntimeError):
    pass


class InputNotFoundError(CompressionError):
    pass


class CompressService:
    def __init__(
        self,
        backend: CompressBackend,
        *,
        compression_level: CompressionLevel = "recommended",
        retry_delays: Sequence[float] = RETRY_DELAYS_S,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._compression_level = compression_level
        self._retry_delays = tuple(retry_delays)
        self._sleep = sleep
        self._clock = clock

    async def compress(self, input_path: Path, output_path: Path) -> CompressionResult:
        if not input_path.is_file():
            raise InputNotFoundError(f"Input file not found: {input_path}")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return await self._attempt(input_path, output_path, attempt)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "compress.attempt_failed",
                    attempt=attempt,
                    max_attempts=MAX_ATTEMPTS,
                    input=str(input_path),
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )
            if attempt < MAX_ATTEMPTS:
                await self._sleep(self._delay_after(attempt))

        logger.error(
            "compress.exhausted", input=str(input_path), attempts=MAX_ATTEMPTS
        )
        raise CompressionError(GENERIC_FAILURE) from None

    def _delay_after(self, attempt: int) -> float:
        if not self._retry_delays:
            return 0.0
        index = min(attempt, len(self._retry_delays)) - 1
        return self._retry_delays[index]

    async def _attempt(
        self, input_path: Path, output_path: Path, attempt: int
    ) -> CompressionResult:
        await self._log_quota("start", attempt)
        started_at = self._clock()
        await self._backend.compress_into(
            input_path, output_path.parent, self._compression_level
        )
        produced = _find_artifact(
            output_path.parent, since=started_at, exclude=input_path
        )
        if produced is None:
            raise CompressionError(f"no compressed PDF in {output_path.parent}")
        if produced != output_path.resolve():
            shutil.move(produced, output_path)

        result = CompressionResult(
            size_before=input_path.stat().st_size,
            size_after=output_path.stat().st_size,
        )
        logger.info(
            "compress.done",
            attempt=attempt,
            input=str(input_path),
            output=str(output_path),
            size_before=result.size_before,
            size_after=result.size_after,
        )
        await self._log_quota("end", attempt)
        return result

    async def _log_quota(self, stage: str, attempt: int) -> None:
        try:
            remaining = await self._backend.remaining_quota()
        except Exception as exc:  # noqa: BLE001
            logger.debug("compress.quota_unavailable", stage=stage, error=str(exc))
            return
        if remaining is None:
            return
        logger.info("compress.quota", stage=stage, attempt=attempt, remaining=remaining)


def _find_artifact(directory: Path, *, since: float, exclude: Path) -> Path | None:
    excluded = exclude.resolve()
    newest: Path | None = None
    newest_mtime = -1.0
    for candidate in directory.iterdir():
        if not candidate.is_file() or candidate.suffix.lower() != ".pdf":
            continue
        resolved = candidate.resolve()
        if resolved == excluded:
            continue
        mtime = candidate.stat().st_mtime
        # Filesystem mtime granularity can trail the wall clock slightly.
        if mtime < since - 1.0:
            continue
        if mtime > newest_mtime:
            newest = resolved
            newest_mtime = mtime
    return newest
