from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

import anyio

from .logging import get_logger
from .model import (
    HandleOutcome,
    Ignored,
    Replied,
    TransformFailed,
    TransformSucceeded,
    Update,
)
from .offset import OffsetStore
from .telegram.client import BotClient

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 25
DEFAULT_SLEEP_S = 1.0


class UpdateSink(Protocol):
    async def handle(self, update: Update) -> HandleOutcome: ...


@dataclass(frozen=True, slots=True)
class PollConfig:
    timeout_s: int = DEFAULT_TIMEOUT_S
    sleep_s: float = DEFAULT_SLEEP_S
    once: bool = False


@dataclass(frozen=True, slots=True)
class PollCycle:
    ok: bool
    cursor: int | None


def log_outcome(update_id: int, outcome: HandleOutcome) -> None:
    match outcome:
        case Ignored():
            logger.debug("poll.outcome", update_id=update_id, outcome="ignored")
        case Replied(kind=kind):
            logger.info("poll.outcome", update_id=update_id, outcome="replied", kind=kind)
        case TransformFailed(reason=reason, correlation_id=cid):
            logger.warning(
                "poll.outcome",
                update_id=update_id,
                outcome="transform_failed",
                reason=reason,
                cid=cid,
            )
        case TransformSucceeded(result=result, correlation_id=cid):
            logger.info(
                "poll.outcome",
                update_id=update_id,
                outcome="transform_succeeded",
                size_before=result.size_before,
                size_after=result.size_after,
                cid=cid,
            )


async def handle_batch(handler: UpdateSink, updates: tuple[Update, ...]) -> None:
    for update in updates:
        try:
            outcome = await handler.handle(update)
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "poll.update_failed",
                update_id=update.update_id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            continue
        log_outcome(update.update_id, outcome)


def next_cursor(cursor: int | None, updates: tuple[Update, ...]) -> int | None:
    if not updates:
        return cursor
    candidate = max(update.update_id for update in updates) + 1
    if cursor is not None and candidate < cursor:
        return cursor
    return candidate


async def poll_once(
    bot: BotClient,
    handler: UpdateSink,
    store: OffsetStore,
    cursor: int | None,
    *,
    timeout_s: int = DEFAULT_TIMEOUT_S,
) -> PollCycle:
    """Run one fetch/handle/persist cycle starting at `cursor`."""
    fetched = await bot.get_updates(offset=cursor, timeout_s=timeout_s)
    if not fetched.ok:
        logger.warning("poll.fetch_failed", offset=cursor)
        return PollCycle(ok=False, cursor=cursor)
    if fetched.updates:
        logger.info(
            "poll.updates",
            offset=cursor,
            count=len(fetched.updates),
        )
    await handle_batch(handler, fetched.updates)
    advanced = next_cursor(cursor, fetched.updates)
    if advanced is not None and advanced != cursor:
        store.write(advanced)
        logger.debug("poll.cursor", offset=advanced)
    return PollCycle(ok=True, cursor=advanced)


async def run_poll_loop(
    bot: BotClient,
    handler: UpdateSink,
    store: OffsetStore,
    config: PollConfig,
    *,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> None:
    cursor = store.read()
    logger.info(
        "poll.started",
        offset=cursor,
        timeout_s=config.timeout_s,
        sleep_s=config.sleep_s,
        once=config.once,
    )
    while True:
        cycle = await poll_once(
            bot, handler, store, cursor, timeout_s=config.timeout_s
        )
        cursor = cycle.cursor
        if config.once:
            break
        await sleep(config.sleep_s if cycle.ok else max(config.sleep_s, 1.0))
    logger.info("poll.stopped", offset=cursor)
