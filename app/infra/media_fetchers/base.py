# app/infra/media_fetchers/base.py
"""
Media fetcher abstraction layer.

Defines the protocol and base error for fetchers that turn a resolved
``MediaItem`` into a file in scratch storage. Concrete size/transport errors
(``MediaTooLarge``, ``DownloadFailed``) live in the relay error taxonomy and
subclass ``MediaFetchError``.
"""
from __future__ import annotations

from typing import Protocol

from app.core.engine.domain import DownloadedFile, MediaItem


class MediaFetchError(Exception):
    """
    Base error for media fetch failures.

    Attributes:
        retryable: Whether the caller should attempt a fallback or retry.
    """

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class MediaFetcher(Protocol):
    """Protocol for media fetchers used by the delivery coordinator."""

    async def fetch(self, item: MediaItem) -> DownloadedFile:
        """
        Download ``item`` into scratch storage.

        Returns:
            DownloadedFile owned by the caller, who must release it.

        Raises:
            MediaFetchError: no file was produced.
        """
        ...
