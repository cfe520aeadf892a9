"""Attachment byte resolution from opaque URIs."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import unquote, urlparse

import httpx

from chatgate.errors import AttachmentResolutionError

logger = logging.getLogger(__name__)

GCS_PUBLIC_ENDPOINT = "https://storage.googleapis.com"


@runtime_checkable
class BlobStore(Protocol):
    """Resolve a URI to its bytes and stored content type."""

    async def fetch(self, uri: str) -> tuple[bytes, str | None]:
        """Return ``(data, content_type)``; content type may be unknown."""
        ...


def gcs_to_https(uri: str) -> str:
    """Map ``gs://bucket/object`` to the public storage endpoint."""
    parsed = urlparse(uri)
    if parsed.scheme != "gs" or not parsed.netloc:
        raise AttachmentResolutionError(f"Not a gs:// URI: {uri}")
    return f"{GCS_PUBLIC_ENDPOINT}/{parsed.netloc}{parsed.path}"


class HttpBlobStore:
    """Fetch ``http(s)://`` and ``gs://`` URIs with httpx."""

    def __init__(
        self,
        *,
        bearer_token: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.bearer_token = bearer_token
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def fetch(self, uri: str) -> tuple[bytes, str | None]:
        scheme = urlparse(uri).scheme
        headers: dict[str, str] = {}
        if scheme == "gs":
            url = gcs_to_https(uri)
            if self.bearer_token:
                headers["Authorization"] = f"Bearer {self.bearer_token}"
        elif scheme in {"http", "https"}:
            url = uri
        else:
            raise AttachmentResolutionError(f"Unsupported attachment scheme: {uri}")

        try:
            response = await self._get_client().get(url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise AttachmentResolutionError(
                f"Failed to fetch attachment {uri}: {e}"
            ) from e
        content_type = response.headers.get("content-type")
        return response.content, _bare_mime(content_type)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class LocalBlobStore:
    """Read ``file://`` URIs and plain paths, optionally under a root."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root

    def _path_for(self, uri: str) -> Path:
        parsed = urlparse(uri)
        if parsed.scheme == "file":
            path = Path(unquote(parsed.path))
        elif parsed.scheme == "":
            path = Path(uri)
        else:
            raise AttachmentResolutionError(f"Unsupported attachment scheme: {uri}")
        if self.root is not None and not path.is_absolute():
            path = self.root / path
        return path

    async def fetch(self, uri: str) -> tuple[bytes, str | None]:
        path = self._path_for(uri)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise AttachmentResolutionError(
                f"Failed to read attachment {path}: {e}"
            ) from e
        return data, mimetypes.guess_type(str(path))[0]


class RoutingBlobStore:
    """Dispatch by URI scheme to a remote or local store."""

    def __init__(self, remote: BlobStore, local: BlobStore) -> None:
        self.remote = remote
        self.local = local

    async def fetch(self, uri: str) -> tuple[bytes, str | None]:
        scheme = urlparse(uri).scheme
        if scheme in {"http", "https", "gs"}:
            return await self.remote.fetch(uri)
        return await self.local.fetch(uri)

    async def aclose(self) -> None:
        """Close the remote store if it holds a client."""
        close = getattr(self.remote, "aclose", None)
        if close is not None:
            await close()


def _bare_mime(content_type: str | None) -> str | None:
    if not content_type:
        return None
    return content_type.split(";", 1)[0].strip().lower() or None
