from __future__ import annotations

from datetime import datetime, timezone

import pytest
import structlog

from pdfrelay.compress import CompressionError
from pdfrelay.handler import (
    NOT_PDF_TEXT,
    USAGE_TEXT,
    UpdateHandler,
    is_usage_command,
)
from pdfrelay.model import (
    ApiError,
    FileResolution,
    Ignored,
    LocalPath,
    Message,
    Replied,
    TransformFailed,
    TransformSucceeded,
    Update,
)
from pdfrelay.storage import LocalStorage
from tests.telegram_fakes import (
    _FakeBot,
    _FakeCompressor,
    document_update,
    text_update,
)

CID = "cid-0001"
NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _handler(
    bot: _FakeBot,
    compressor: _FakeCompressor,
    storage: LocalStorage,
    **kwargs,
) -> UpdateHandler:
    return UpdateHandler(
        bot=bot,
        compressor=compressor,
        storage=storage,
        clock=lambda: NOW,
        new_id=lambda: CID,
        **kwargs,
    )


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("/start", True),
        ("  /help  ", True),
        ("/START", True),
        ("/start@pdf_relay_bot", True),
        ("/start deep-link", True),
        ("/starting", False),
        ("start", False),
        ("hello /help", False),
    ],
)
def test_is_usage_command(text: str, expected: bool) -> None:
    assert is_usage_command(text) is expected


@pytest.mark.anyio
async def test_start_replies_with_usage_only(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    handler = _handler(fake_bot, fake_compressor, storage)

    outcome = await handler.handle(text_update(1, "/start", chat_id=99))

    assert outcome == Replied("usage")
    assert fake_bot.messages == [(99, USAGE_TEXT)]
    assert fake_bot.get_file_calls == []
    assert fake_bot.download_calls == []
    assert fake_compressor.calls == []
    assert not storage.root.exists()


@pytest.mark.anyio
async def test_other_text_echoes_then_usage(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    handler = _handler(fake_bot, fake_compressor, storage)

    outcome = await handler.handle(text_update(1, "hello there"))

    assert outcome == Replied("echo")
    assert fake_bot.messages == [(1, "Echo: hello there"), (1, USAGE_TEXT)]


@pytest.mark.anyio
async def test_update_without_message_is_ignored(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    handler = _handler(fake_bot, fake_compressor, storage)

    outcome = await handler.handle(Update(update_id=3))

    assert outcome == Ignored()
    assert fake_bot.messages == []


@pytest.mark.anyio
async def test_message_without_text_or_document_asks_for_pdf(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    handler = _handler(fake_bot, fake_compressor, storage)

    outcome = await handler.handle(
        Update(update_id=3, message=Message(chat_id=5, sender_id=1))
    )

    assert outcome == Replied("not_pdf")
    assert fake_bot.messages == [(5, NOT_PDF_TEXT)]


@pytest.mark.anyio
async def test_non_pdf_document_gets_single_hint(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    handler = _handler(fake_bot, fake_compressor, storage)

    outcome = await handler.handle(
        document_update(4, mime_type="image/png", file_name="cat.png")
    )

    assert outcome == Replied("not_pdf")
    assert fake_bot.messages == [(1, NOT_PDF_TEXT)]
    assert fake_bot.get_file_calls == []
    assert fake_compressor.calls == []


@pytest.mark.anyio
async def test_document_without_mime_type_is_not_pdf(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    handler = _handler(fake_bot, fake_compressor, storage)

    outcome = await handler.handle(document_update(4, mime_type=None))

    assert outcome == Replied("not_pdf")
    assert fake_compressor.calls == []


@pytest.mark.anyio
async def test_pdf_is_compressed_and_sent_back(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    fake_bot.payload = b"%" * 2048
    handler = _handler(fake_bot, fake_compressor, storage)

    outcome = await handler.handle(
        document_update(7, file_name="my report (final)!.PDF", sender_id=42)
    )

    assert isinstance(outcome, TransformSucceeded)
    assert outcome.correlation_id == CID
    assert outcome.result.size_before == 2048
    assert outcome.result.size_after == 1024
    assert fake_bot.get_file_calls == ["file-7"]
    assert fake_bot.download_calls == ["documents/file_1.pdf"]

    incoming = storage.path("incoming/2024-01-02-03-04-05_42_my_report__final__.PDF")
    outgoing = storage.path(
        "outgoing/2024-01-02-03-04-05_42_my_report__final___compressed.pdf"
    )
    assert incoming.read_bytes() == b"%" * 2048
    assert fake_compressor.calls == [(incoming, outgoing)]

    assert fake_bot.messages == []
    [(chat_id, document, caption)] = fake_bot.documents
    assert chat_id == 1
    assert document == LocalPath(outgoing)
    assert caption is not None
    assert "Before: 2.00 KB" in caption
    assert "After: 1.00 KB" in caption
    assert "Saved: 50.0%" in caption
    assert "█" * 10 + "░" * 10 in caption
    assert CID in caption


@pytest.mark.anyio
async def test_resolve_error_is_relayed(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    fake_bot.resolution = FileResolution(
        error=ApiError(code=400, description="Bad Request: file is too big")
    )
    handler = _handler(fake_bot, fake_compressor, storage)

    outcome = await handler.handle(document_update(8))

    assert outcome == Replied("resolve_error")
    [(_, text)] = fake_bot.messages
    assert "Bad Request: file is too big" in text
    assert "400" in text
    assert text.endswith(f"CID: {CID}")
    assert fake_bot.download_calls == []
    assert fake_compressor.calls == []


@pytest.mark.anyio
async def test_download_failure_reports_correlation_id(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    fake_bot.payload = None
    handler = _handler(fake_bot, fake_compressor, storage)

    outcome = await handler.handle(document_update(9))

    assert isinstance(outcome, TransformFailed)
    assert outcome.correlation_id == CID
    [(_, text)] = fake_bot.messages
    assert CID in text
    assert fake_compressor.calls == []


@pytest.mark.anyio
async def test_compression_failure_hides_internal_detail(
    fake_bot: _FakeBot, storage: LocalStorage
) -> None:
    compressor = _FakeCompressor(error=CompressionError("secret upstream detail"))
    handler = _handler(fake_bot, compressor, storage)

    outcome = await handler.handle(document_update(10))

    assert outcome == TransformFailed(
        reason="secret upstream detail", correlation_id=CID
    )
    [(_, text)] = fake_bot.messages
    assert "secret upstream detail" not in text
    assert text.endswith(f"CID: {CID}")
    assert fake_bot.documents == []


@pytest.mark.anyio
async def test_oversized_pdf_warns_and_continues(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    handler = _handler(fake_bot, fake_compressor, storage, max_upload_bytes=100)

    outcome = await handler.handle(document_update(11, file_size=5000))

    assert isinstance(outcome, TransformSucceeded)
    [(_, warning)] = fake_bot.messages
    assert "limit" in warning
    assert CID in warning
    assert len(fake_bot.documents) == 1


@pytest.mark.anyio
async def test_oversized_pdf_stops_when_enforced(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    handler = _handler(
        fake_bot,
        fake_compressor,
        storage,
        max_upload_bytes=100,
        enforce_size_limit=True,
    )

    outcome = await handler.handle(document_update(12, file_size=5000))

    assert outcome == Replied("too_large")
    [(_, text)] = fake_bot.messages
    assert "limit" in text
    assert text.endswith(f"CID: {CID}")
    assert fake_bot.get_file_calls == []


@pytest.mark.anyio
async def test_size_before_comes_from_disk(
    fake_bot: _FakeBot, fake_compressor: _FakeCompressor, storage: LocalStorage
) -> None:
    fake_bot.payload = b"z" * 300
    handler = _handler(fake_bot, fake_compressor, storage)

    outcome = await handler.handle(document_update(13, file_size=999_999))

    assert isinstance(outcome, TransformSucceeded)
    assert outcome.result.size_before == 300


@pytest.mark.anyio
async def test_correlation_id_is_bound_while_handling(
    fake_bot: _FakeBot, storage: LocalStorage
) -> None:
    seen: list[dict] = []

    class _Recorder(_FakeCompressor):
        async def compress(self, input_path, output_path):
            seen.append(structlog.contextvars.get_contextvars())
            return await super().compress(input_path, output_path)

    handler = _handler(fake_bot, _Recorder(), storage)

    await handler.handle(document_update(14))

    assert seen == [{"cid": CID}]
    assert "cid" not in structlog.contextvars.get_contextvars()
