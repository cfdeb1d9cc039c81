from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from .config import MAX_UPLOAD_BYTES
from .files import incoming_name, incoming_rel_path, outgoing_rel_path
from .logging import correlation_scope, get_logger
from .model import (
    ApiError,
    Attachment,
    CompressionResult,
    HandleOutcome,
    Ignored,
    LocalPath,
    Message,
    Replied,
    TransformFailed,
    TransformSucceeded,
    Update,
)
from .render import compression_caption, format_bytes
from .storage import INCOMING_DIR, OUTGOING_DIR, LocalStorage
from .telegram.client import BotClient

logger = get_logger(__name__)

USAGE_TEXT = (
    "Send me a PDF and I will compress it and send it back. "
    "If you send text or a file that is not a PDF, I will remind you "
    "that I need a PDF."
)
NOT_PDF_TEXT = "Please send a PDF, I will compress it."
USAGE_COMMANDS = frozenset({"/start", "/help"})


class Compressor(Protocol):
    async def compress(self, input_path: Path, output_path: Path) -> CompressionResult: ...


class DownloadError(RuntimeError):
    pass


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_usage_command(text: str) -> bool:
    stripped = text.strip()
    if not stripped.startswith("/"):
        return False
    command = stripped.split(maxsplit=1)[0].split("@", 1)[0].lower()
    return command in USAGE_COMMANDS


def failure_text(correlation_id: str) -> str:
    return f"Could not process the PDF. Please try again later. CID: {correlation_id}"


def too_large_text(size: int, limit: int, correlation_id: str) -> str:
    return (
        f"The file is {format_bytes(size)}, above the {format_bytes(limit)} limit. "
        f"It may fail to download. CID: {correlation_id}"
    )


def resolve_error_text(error: ApiError, correlation_id: str) -> str:
    code = error.code if error.code is not None else "n/a"
    return (
        f"Telegram could not provide the file: {error.description} (code {code}). "
        f"CID: {correlation_id}"
    )


@dataclass(slots=True)
class UpdateHandler:
    bot: BotClient
    compressor: Compressor
    storage: LocalStorage
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    enforce_size_limit: bool = False
    clock: Callable[[], datetime] = _utc_now
    new_id: Callable[[], str] = new_correlation_id

    async def handle(self, update: Update) -> HandleOutcome:
        correlation_id = self.new_id()
        with correlation_scope(correlation_id):
            logger.debug("handler.incoming", update_id=update.update_id)
            message = update.message
            if message is None:
                return Ignored()
            attachment = message.attachment
            if attachment is not None:
                if not attachment.is_pdf:
                    await self._reply(message, NOT_PDF_TEXT)
                    return Replied("not_pdf")
                return await self._handle_pdf(message, attachment, correlation_id)
            if message.text is not None:
                return await self._handle_text(message, message.text)
            await self._reply(message, NOT_PDF_TEXT)
            return Replied("not_pdf")

    async def _reply(self, message: Message, text: str) -> None:
        sent = await self.bot.send_message(chat_id=message.chat_id, text=text)
        if sent is None:
            logger.warning("handler.reply_failed", chat_id=message.chat_id)

    async def _handle_text(self, message: Message, text: str) -> HandleOutcome:
        if is_usage_command(text):
            await self._reply(message, USAGE_TEXT)
            return Replied("usage")
        await self._reply(message, f"Echo: {text}")
        await self._reply(message, USAGE_TEXT)
        return Replied("echo")

    async def _handle_pdf(
        self, message: Message, attachment: Attachment, correlation_id: str
    ) -> HandleOutcome:
        declared = attachment.file_size
        if declared is not None and declared > self.max_upload_bytes:
            logger.warning(
                "handler.declared_size_over_limit",
                declared_size=declared,
                limit=self.max_upload_bytes,
                enforced=self.enforce_size_limit,
            )
            await self._reply(
                message,
                too_large_text(declared, self.max_upload_bytes, correlation_id),
            )
            if self.enforce_size_limit:
                return Replied("too_large")

        resolution = await self.bot.get_file(attachment.file_id)
        if resolution.path is None:
            error = resolution.error or ApiError(
                code=None, description="file path is unavailable"
            )
            logger.warning(
                "handler.resolve_failed",
                file_id=attachment.file_id,
                error_code=error.code,
                description=error.description,
            )
            await self._reply(message, resolve_error_text(error, correlation_id))
            return Replied("resolve_error")

        try:
            result = await self._compress_and_send(
                message, attachment, resolution.path, correlation_id
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "handler.pdf_failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            await self._reply(message, failure_text(correlation_id))
            return TransformFailed(reason=str(exc), correlation_id=correlation_id)
        return TransformSucceeded(result=result, correlation_id=correlation_id)

    async def _compress_and_send(
        self,
        message: Message,
        attachment: Attachment,
        file_path: str,
        correlation_id: str,
    ) -> CompressionResult:
        payload = await self.bot.download_file(file_path)
        if payload is None:
            raise DownloadError(f"failed to download {file_path}")

        base_name = incoming_name(
            attachment.file_name, message.sender_id, now=self.clock()
        )
        incoming_rel = incoming_rel_path(base_name)
        outgoing_rel = outgoing_rel_path(base_name)
        self.storage.ensure_directory(INCOMING_DIR)
        self.storage.ensure_directory(OUTGOING_DIR)

        input_path = self.storage.store_bytes(incoming_rel, payload)
        before = self.storage.size(incoming_rel)
        if before is None:
            before = attachment.file_size or 0

        output_path = self.storage.path(outgoing_rel)
        compressed = await self.compressor.compress(input_path, output_path)
        result = CompressionResult(size_before=before, size_after=compressed.size_after)

        sent = await self.bot.send_document(
            chat_id=message.chat_id,
            document=LocalPath(output_path),
            caption=compression_caption(result, correlation_id),
        )
        if sent is None:
            logger.warning("handler.send_document_failed", output=outgoing_rel)
        logger.info(
            "handler.pdf_compressed",
            incoming=incoming_rel,
            outgoing=outgoing_rel,
            size_before=result.size_before,
            size_after=result.size_after,
        )
        return result
