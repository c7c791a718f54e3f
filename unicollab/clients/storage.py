"""Storage uploads over HTTP."""
from __future__ import annotations

import logging
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable

import httpx

from ..constants import ALLOWED_FILE_TYPES, MAX_FILE_UPLOAD_SIZE_MB
from ..errors import UploadError

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]


@dataclass(frozen=True, slots=True)
class UploadFile:
    """A file picked by the user, ready to be stored."""

    filename: str
    content: bytes
    content_type: str | None = None

    @property
    def resolved_content_type(self) -> str:
        if self.content_type:
            return self.content_type
        guessed, _ = mimetypes.guess_type(self.filename)
        return guessed or "application/octet-stream"


def validate_upload(file: UploadFile, *, max_size_mb: int = MAX_FILE_UPLOAD_SIZE_MB) -> None:
    if not file.content:
        raise UploadError("File is empty")
    if len(file.content) > max_size_mb * 1024 * 1024:
        raise UploadError(f"File exceeds the {max_size_mb} MB limit")
    if file.resolved_content_type not in ALLOWED_FILE_TYPES:
        raise UploadError(f"File type {file.resolved_content_type} is not allowed")


def build_object_key(owner_id: str, filename: str) -> str:
    """Namespace uploads per user with a random object name."""

    suffix = PurePosixPath(filename).suffix.lower()
    return f"{owner_id}/{uuid.uuid4().hex}{suffix}"


class SupabaseStorageClient:
    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        token_provider: TokenProvider | None = None,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = f"{base_url.rstrip('/')}/storage/v1"
        self._anon_key = anon_key
        self._token_provider = token_provider
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self._base_url}/object/public/{bucket}/{key}"

    async def upload(self, bucket: str, key: str, content: bytes, *, content_type: str) -> str:
        token = self._token_provider() if self._token_provider else None
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token or self._anon_key}",
            "Content-Type": content_type,
        }
        url = f"{self._base_url}/object/{bucket}/{key}"
        try:
            response = await self._client.post(url, content=content, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("Storage upload rejected | bucket=%s status=%s", bucket, exc.response.status_code)
            raise UploadError("Failed to upload file", status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            logger.error("Storage transport error | bucket=%s error=%s", bucket, type(exc).__name__)
            raise UploadError("Failed to upload file") from exc
        return self.public_url(bucket, key)


__all__ = ["UploadFile", "validate_upload", "build_object_key", "SupabaseStorageClient"]
