from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

import anyio
import httpx

from .config import CompressionLevel
from .logging import get_logger
from .storage import write_bytes_atomic

logger = get_logger(__name__)

ILOVEPDF_API_URL = "https://api.ilovepdf.com"
COMPRESS_TOOL = "compress"


class ILovePdfError(RuntimeError):
    pass


class CompressBackend(Protocol):
    async def compress_into(
        self,
        input_path: Path,
        output_dir: Path,
        compression_level: CompressionLevel,
    ) -> None:
        """Compress `input_path` and write the result somewhere in `output_dir`.

        The backend picks the output filename.
        """
        ...

    async def remaining_quota(self) -> int | None: ...


def _quota_from_payload(payload: dict[str, Any]) -> int | None:
    for key in ("remaining_credits", "remaining_files"):
        value = payload.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


class ILovePdfClient:
    """iLovePDF REST client running one compress task per call."""

    def __init__(
        self,
        public_key: str,
        *,
        timeout_s: float = 120,
        client: httpx.AsyncClient | None = None,
        api_url: str = ILOVEPDF_API_URL,
    ) -> None:
        if not public_key:
            raise ValueError("iLovePDF public key is empty")
        self._public_key = public_key
        self._api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None
        self._token: str | None = None
        self._remaining: int | None = None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def remaining_quota(self) -> int | None:
        return self._remaining

    async def _call(
        self,
        method: str,
        url: str,
        *,
        authorized: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = {}
        if authorized:
            headers["Authorization"] = f"Bearer {await self._auth_token()}"
        try:
            resp = await self._client.request(method, url, headers=headers, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 401:
                self._token = None
            raise ILovePdfError(
                f"iLovePDF {method} {url} failed with status "
                f"{exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ILovePdfError(
                f"iLovePDF {method} {url} failed: {exc.__class__.__name__}: {exc}"
            ) from exc
        return resp

    async def _json(
        self, method: str, url: str, *, authorized: bool = True, **kwargs: Any
    ) -> dict[str, Any]:
        resp = await self._call(method, url, authorized=authorized, **kwargs)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ILovePdfError(f"iLovePDF returned invalid JSON from {url}") from exc
        if not isinstance(payload, dict):
            raise ILovePdfError(f"iLovePDF returned unexpected payload from {url}")
        return payload

    async def _auth_token(self) -> str:
        if self._token is not None:
            return self._token
        payload = await self._json(
            "POST",
            f"{self._api_url}/v1/auth",
            authorized=False,
            json={"public_key": self._public_key},
        )
        token = payload.get("token")
        if not isinstance(token, str) or not token:
            raise ILovePdfError("iLovePDF auth response has no token")
        self._token = token
        return token

    async def compress_into(
        self,
        input_path: Path,
        output_dir: Path,
        compression_level: CompressionLevel,
    ) -> None:
        start = await self._json("GET", f"{self._api_url}/v1/start/{COMPRESS_TOOL}")
        server = start.get("server")
        task = start.get("task")
        if not isinstance(server, str) or not isinstance(task, str):
            raise ILovePdfError("iLovePDF start response is missing server or task")
        quota = _quota_from_payload(start)
        if quota is not None:
            self._remaining = quota
        base = f"https://{server}/v1"

        content = await anyio.Path(input_path).read_bytes()
        upload = await self._json(
            "POST",
            f"{base}/upload",
            data={"task": task},
            files={"file": (input_path.name, content, "application/pdf")},
        )
        server_filename = upload.get("server_filename")
        if not isinstance(server_filename, str) or not server_filename:
            raise ILovePdfError("iLovePDF upload response has no server_filename")

        processed = await self._json(
            "POST",
            f"{base}/process",
            json={
                "task": task,
                "tool": COMPRESS_TOOL,
                "compression_level": compression_level,
                "files": [
                    {"server_filename": server_filename, "filename": input_path.name}
                ],
            },
        )
        logger.debug(
            "ilovepdf.processed",
            task=task,
            status=processed.get("status"),
            download_filename=processed.get("download_filename"),
        )
        download_name = processed.get("download_filename")
        if not isinstance(download_name, str) or not download_name:
            download_name = input_path.name
        # Never let the remote choose a directory.
        download_name = Path(download_name).name

        resp = await self._call("GET", f"{base}/download/{task}")
        write_bytes_atomic(output_dir / download_name, resp.content)
