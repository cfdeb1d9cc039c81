from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import anyio
import httpx
import msgspec

from ..logging import get_logger
from ..model import (
    ApiError,
    FetchResult,
    FileRef,
    FileResolution,
    InMemory,
    LocalPath,
    RemoteReference,
)
from . import api_models
from .parsing import parse_updates

logger = get_logger(__name__)

# getUpdates must outlive the server-side long-poll window.
LONG_POLL_MARGIN_S = 10.0


class BotClient(Protocol):
    async def close(self) -> None: ...

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 25,
    ) -> FetchResult: ...

    async def get_file(self, file_id: str) -> FileResolution: ...

    async def download_file(self, file_path: str) -> bytes | None: ...

    async def send_message(self, chat_id: int, text: str) -> dict | None: ...

    async def send_document(
        self,
        chat_id: int,
        document: FileRef,
        caption: str | None = None,
    ) -> dict | None: ...


@dataclass(frozen=True, slots=True)
class ApiResponse:
    ok: bool
    result: Any = None
    error: ApiError | None = None


def _api_error(payload: dict[str, Any]) -> ApiError:
    code = payload.get("error_code")
    if isinstance(code, bool) or not isinstance(code, int):
        code = None
    description = payload.get("description")
    if not isinstance(description, str) or not description:
        description = "unknown error"
    return ApiError(code=code, description=description)


class TelegramClient:
    def __init__(
        self,
        token: str,
        timeout_s: float = 120,
        client: httpx.AsyncClient | None = None,
        *,
        base_url: str = "https://api.telegram.org",
    ) -> None:
        if not token:
            raise ValueError("Telegram token is empty")
        self._base = f"{base_url}/bot{token}"
        self._file_base = f"{base_url}/file/bot{token}"
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        *,
        json_data: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        timeout_s: float | None = None,
    ) -> ApiResponse:
        logger.debug("telegram.request", method=method, payload=json_data or data)
        kwargs: dict[str, Any] = {}
        if timeout_s is not None:
            kwargs["timeout"] = timeout_s
        try:
            resp = await self._client.post(
                f"{self._base}/{method}",
                json=json_data,
                data=data,
                files=files,
                **kwargs,
            )
        except httpx.HTTPError as e:
            url = getattr(e.request, "url", None) if _has_request(e) else None
            logger.error(
                "telegram.network_error",
                method=method,
                url=str(url) if url is not None else None,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return ApiResponse(ok=False)

        try:
            payload = resp.json()
        except ValueError as e:
            logger.error(
                "telegram.bad_response",
                method=method,
                status=resp.status_code,
                url=str(resp.request.url),
                error=str(e),
                error_type=e.__class__.__name__,
                body=resp.text,
            )
            return ApiResponse(ok=False)

        if not isinstance(payload, dict):
            logger.error(
                "telegram.invalid_payload",
                method=method,
                url=str(resp.request.url),
                payload=payload,
            )
            return ApiResponse(ok=False)

        # Telegram answers errors with a JSON envelope and a 4xx/5xx status.
        if not payload.get("ok") or resp.is_error:
            error = _api_error(payload)
            logger.error(
                "telegram.api_error",
                method=method,
                status=resp.status_code,
                url=str(resp.request.url),
                error_code=error.code,
                description=error.description,
            )
            return ApiResponse(ok=False, error=error)

        logger.debug("telegram.response", method=method, payload=payload)
        return ApiResponse(ok=True, result=payload.get("result"))

    async def _post(self, method: str, json_data: dict[str, Any]) -> Any | None:
        response = await self._request(method, json_data=json_data)
        if not response.ok:
            return None
        return response.result

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 25,
    ) -> FetchResult:
        params: dict[str, Any] = {
            "timeout": timeout_s,
            "allowed_updates": ["message"],
        }
        if offset is not None:
            params["offset"] = offset
        response = await self._request(
            "getUpdates",
            json_data=params,
            timeout_s=timeout_s + LONG_POLL_MARGIN_S,
        )
        if not response.ok or not isinstance(response.result, list):
            return FetchResult(ok=False)
        return FetchResult(ok=True, updates=parse_updates(response.result))

    async def get_file(self, file_id: str) -> FileResolution:
        response = await self._request("getFile", json_data={"file_id": file_id})
        if not response.ok:
            return FileResolution(
                error=response.error
                or ApiError(code=None, description="request failed")
            )
        try:
            info = msgspec.convert(response.result, type=api_models.File)
        except msgspec.ValidationError as exc:
            logger.error("telegram.invalid_file", file_id=file_id, error=str(exc))
            info = None
        file_path = info.file_path if info is not None else None
        if not file_path:
            return FileResolution(
                error=ApiError(code=None, description="file path is unavailable")
            )
        return FileResolution(path=file_path)

    async def download_file(self, file_path: str) -> bytes | None:
        url = f"{self._file_base}/{file_path.lstrip('/')}"
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                "telegram.download_error",
                file_path=file_path,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return None
        return resp.content

    async def send_message(self, chat_id: int, text: str) -> dict | None:
        res = await self._post("sendMessage", {"chat_id": chat_id, "text": text})
        return res if isinstance(res, dict) else None

    async def send_document(
        self,
        chat_id: int,
        document: FileRef,
        caption: str | None = None,
    ) -> dict | None:
        data: dict[str, Any] = {"chat_id": str(chat_id)}
        if caption is not None:
            data["caption"] = caption
        files: dict[str, Any] | None = None
        match document:
            case RemoteReference(file_id=file_id):
                data["document"] = file_id
            case LocalPath(path=path):
                content = await anyio.Path(path).read_bytes()
                files = {"document": (path.name, content, "application/pdf")}
            case InMemory(data=content, filename=filename):
                files = {"document": (filename, content, "application/pdf")}
        response = await self._request("sendDocument", data=data, files=files)
        if not response.ok or not isinstance(response.result, dict):
            return None
        return response.result


def _has_request(exc: httpx.HTTPError) -> bool:
    try:
        exc.request
    except RuntimeError:
        return False
    return True
