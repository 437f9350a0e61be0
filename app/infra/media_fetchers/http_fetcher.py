# app/infra/media_fetchers/http_fetcher.py
"""
HTTP media fetcher for Instagram CDN URLs.

Two phases per item:
1. HEAD probe reads the declared Content-Length / Content-Type. Oversized
   files are rejected here, before any body is transferred.
2. Streamed GET writes the body to a fresh scratch file. The file is handed
   to the caller only after the stream completes; on any failure the partial
   file is released before the error propagates.
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from urllib.parse import urlparse

import aiohttp

from app.core.engine.domain import DownloadedFile, MediaItem
from app.core.engine.errors import DownloadFailed, MediaTooLarge
from app.infra.http_client import get_fetcher_session
from app.infra.logging_config import get_logger
from app.infra.metrics import RelayMetrics
from app.infra.scratch_storage import ScratchStorage

logger = get_logger(__name__)

URL_EXTENSIONS = (".jpg", ".jpeg", ".png", ".mp4", ".mov")

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
}

DEFAULT_EXTENSION = ".jpg"

CHUNK_SIZE = 64 * 1024


def pick_extension(url: str, content_type: str | None) -> str:
    """URL suffix first, then content type, then ``.jpg``."""
    suffix = Path(urlparse(url).path).suffix.lower()
    if suffix in URL_EXTENSIONS:
        return suffix

    if content_type:
        base_type = content_type.split(";")[0].strip().lower()
        ext = CONTENT_TYPE_EXTENSIONS.get(base_type)
        if ext:
            return ext

    return DEFAULT_EXTENSION


class HttpMediaFetcher:
    """
    Downloads ``MediaItem.source_url`` into scratch storage.

    A session can be injected (tests); otherwise the shared ``fetcher``
    session from ``app.infra.http_client`` is used.
    """

    def __init__(
        self,
        storage: ScratchStorage,
        *,
        max_size_bytes: int,
        user_agent: str,
        metadata_timeout_ms: int = 10_000,
        download_timeout_ms: int = 30_000,
        session: aiohttp.ClientSession | None = None,
    ):
        self.storage = storage
        self.max_size_bytes = max_size_bytes
        self.user_agent = user_agent
        self.metadata_timeout = aiohttp.ClientTimeout(total=metadata_timeout_ms / 1000)
        self.download_timeout = aiohttp.ClientTimeout(total=download_timeout_ms / 1000)
        self._session = session

    @classmethod
    def from_settings(cls, storage: ScratchStorage, s) -> "HttpMediaFetcher":
        return cls(
            storage,
            max_size_bytes=s.max_file_size_bytes,
            user_agent=s.instagram_user_agent,
            metadata_timeout_ms=s.metadata_timeout_ms,
            download_timeout_ms=s.download_timeout_ms,
        )

    @property
    def session(self) -> aiohttp.ClientSession:
        return self._session or get_fetcher_session()

    @property
    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self.user_agent}

    async def fetch(self, item: MediaItem) -> DownloadedFile:
        """
        Download one media item.

        Raises:
            MediaTooLarge: declared or streamed size exceeds the ceiling
            DownloadFailed: probe/transfer error or non-2xx status
        """
        url = item.source_url
        host = urlparse(url).netloc
        logger.debug(f"Downloading {item.kind.value} from {host}")

        declared_size, content_type = await self._probe(url)

        if declared_size is not None and declared_size > self.max_size_bytes:
            RelayMetrics.download_rejected("too_large")
            raise MediaTooLarge(
                f"File is too large: {declared_size / (1024 * 1024):.2f}MB. "
                f"Maximum allowed size is {self.max_size_bytes // (1024 * 1024)}MB.",
                size_bytes=declared_size,
                limit_bytes=self.max_size_bytes,
            )

        try:
            path = self.storage.allocate_path(pick_extension(url, content_type))
        except OSError as e:
            RelayMetrics.download_rejected("disk")
            raise DownloadFailed(f"Scratch storage unavailable: {e}") from e

        try:
            size, content_type = await self._stream_to_file(url, path, content_type)
        except BaseException:
            self.storage.release(path)
            raise

        logger.debug(f"Download complete: {path.name} ({size / 1024:.0f}KB)")
        return DownloadedFile(
            path=path,
            item=item,
            content_type=content_type,
            size_bytes=size,
        )

    async def _probe(self, url: str) -> tuple[int | None, str | None]:
        """
        HEAD request returning (declared length, content type).

        A 405 means the CDN does not support HEAD; the length is then unknown
        and the streamed transfer enforces the ceiling on its own.
        """
        try:
            async with self.session.head(
                url,
                headers=self._headers,
                timeout=self.metadata_timeout,
                allow_redirects=True,
            ) as response:
                if response.status == 405:
                    logger.debug("HEAD not allowed, size unknown until transfer")
                    return None, None
                if not 200 <= response.status < 300:
                    RelayMetrics.download_rejected("probe_status")
                    raise DownloadFailed(
                        f"HEAD probe failed: HTTP {response.status}",
                        status=response.status,
                    )
                length_header = response.headers.get("Content-Length")
                declared = int(length_header) if length_header and length_header.isdigit() else None
                return declared, response.headers.get("Content-Type")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            RelayMetrics.download_rejected("probe_error")
            raise DownloadFailed(f"HEAD probe failed: {e}") from e

    async def _stream_to_file(
        self,
        url: str,
        path: Path,
        probed_type: str | None,
    ) -> tuple[int, str | None]:
        received = 0
        try:
            async with self.session.get(
                url,
                headers=self._headers,
                timeout=self.download_timeout,
            ) as response:
                if not 200 <= response.status < 300:
                    RelayMetrics.download_rejected("transfer_status")
                    raise DownloadFailed(
                        f"Failed to download media: HTTP {response.status}",
                        status=response.status,
                    )

                with open(path, "wb") as fh:
                    async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                        received += len(chunk)
                        if received > self.max_size_bytes:
                            RelayMetrics.download_rejected("too_large")
                            raise MediaTooLarge(
                                f"Transfer exceeded {self.max_size_bytes} bytes",
                                size_bytes=received,
                                limit_bytes=self.max_size_bytes,
                            )
                        fh.write(chunk)

                return received, response.headers.get("Content-Type") or probed_type

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            RelayMetrics.download_rejected("transfer_error")
            raise DownloadFailed(f"Media transfer failed: {e}") from e
        except OSError as e:
            raise DownloadFailed(f"Could not write {path.name}: {e}") from e
