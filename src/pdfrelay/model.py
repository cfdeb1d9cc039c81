"""Data model shared by the poll loop, the update handler and the capabilities."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, TypeAlias

PDF_MIME_TYPE = "application/pdf"


@dataclass(frozen=True, slots=True)
class Attachment:
    file_id: str
    mime_type: str | None
    # Declared by the sender's client; may be stale or missing.
    file_size: int | None
    file_name: str | None

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == PDF_MIME_TYPE


@dataclass(frozen=True, slots=True)
class Message:
    chat_id: int
    sender_id: int | None
    text: str | None = None
    attachment: Attachment | None = None


@dataclass(frozen=True, slots=True)
class Update:
    update_id: int
    message: Message | None = None


@dataclass(frozen=True, slots=True)
class FetchResult:
    ok: bool
    updates: tuple[Update, ...] = ()


@dataclass(frozen=True, slots=True)
class ApiError:
    code: int | None
    description: str


@dataclass(frozen=True, slots=True)
class FileResolution:
    path: str | None = None
    error: ApiError | None = None


@dataclass(frozen=True, slots=True)
class RemoteReference:
    file_id: str


@dataclass(frozen=True, slots=True)
class LocalPath:
    path: Path


@dataclass(frozen=True, slots=True)
class InMemory:
    data: bytes
    filename: str


FileRef: TypeAlias = RemoteReference | LocalPath | InMemory


@dataclass(frozen=True, slots=True)
class CompressionResult:
    size_before: int
    size_after: int

    @property
    def reduced_bytes(self) -> int:
        return max(0, self.size_before - self.size_after)


ReplyKind = Literal["usage", "echo", "not_pdf", "too_large", "resolve_error"]


@dataclass(frozen=True, slots=True)
class Ignored:
    pass


@dataclass(frozen=True, slots=True)
class Replied:
    kind: ReplyKind


@dataclass(frozen=True, slots=True)
class TransformFailed:
    reason: str
    correlation_id: str


@dataclass(frozen=True, slots=True)
class TransformSucceeded:
    result: CompressionResult
    correlation_id: str


HandleOutcome: TypeAlias = Ignored | Replied | TransformFailed | TransformSucceeded
