from __future__ import annotations

import signal
from pathlib import Path

import anyio
import typer

from . import __version__
from .compress import CompressService
from .config import (
    ConfigError,
    RelaySettings,
    load_config,
    load_settings,
    resolve_storage_dir,
)
from .handler import UpdateHandler
from .ilovepdf import ILovePdfClient
from .lockfile import LockError, acquire_lock, token_fingerprint
from .logging import get_logger, setup_logging
from .offset import JsonOffsetStore
from .poll import DEFAULT_SLEEP_S, DEFAULT_TIMEOUT_S, PollConfig, run_poll_loop
from .storage import LocalStorage
from .telegram.client import TelegramClient

logger = get_logger(__name__)

app = typer.Typer(
    add_completion=False,
    help="Compress PDFs sent to a Telegram bot and send them back.",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


async def _watch_signals(scope: anyio.CancelScope) -> None:
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            logger.info("poll.signal", signal=signal.Signals(signum).name)
            scope.cancel()
            return


async def _serve(settings: RelaySettings, storage: LocalStorage, poll: PollConfig) -> None:
    bot = TelegramClient(settings.bot_token.get_secret_value())
    ilovepdf = ILovePdfClient(
        settings.ilovepdf.public_key.get_secret_value(),
        timeout_s=settings.ilovepdf.timeout_s,
    )
    compressor = CompressService(
        ilovepdf,
        compression_level=settings.ilovepdf.compression_level,
        retry_delays=settings.compress.retry_delays,
    )
    handler = UpdateHandler(
        bot=bot,
        compressor=compressor,
        storage=storage,
        max_upload_bytes=settings.limits.max_upload_bytes,
        enforce_size_limit=settings.limits.enforce_size_limit,
    )
    store = JsonOffsetStore(storage)
    try:
        async with anyio.create_task_group() as tg:
            tg.start_soon(_watch_signals, tg.cancel_scope)
            await run_poll_loop(bot, handler, store, poll)
            tg.cancel_scope.cancel()
    finally:
        with anyio.CancelScope(shield=True):
            await bot.close()
            await ilovepdf.close()


@app.command()
def run(
    timeout: int = typer.Option(
        DEFAULT_TIMEOUT_S,
        "--timeout",
        min=0,
        help="Seconds to long-poll Telegram per cycle.",
    ),
    sleep: float = typer.Option(
        DEFAULT_SLEEP_S,
        "--sleep",
        min=0,
        help="Seconds to wait between cycles.",
    ),
    once: bool = typer.Option(
        False,
        "--once",
        help="Run exactly one polling cycle and exit.",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="Path to pdfrelay.toml.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Log with the human-readable console renderer at DEBUG level.",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Long-poll Telegram and compress incoming PDFs."""
    setup_logging(debug=debug)
    try:
        config, cfg_path = load_config(config_path)
        settings = load_settings(config, cfg_path)
    except ConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    storage = LocalStorage(resolve_storage_dir(settings, cfg_path))
    fingerprint = token_fingerprint(settings.bot_token.get_secret_value())
    try:
        lock = acquire_lock(storage_dir=storage.root, token_fingerprint=fingerprint)
    except LockError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    poll = PollConfig(timeout_s=timeout, sleep_s=sleep, once=once)
    with lock:
        anyio.run(_serve, settings, storage, poll)


def main() -> None:
    app()
