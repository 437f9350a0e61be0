# app/core/engine/errors.py
"""
Relay error taxonomy.

Only ``InvalidLink`` and ``UpstreamUnavailable`` stop a request early; the
media-level errors are scoped to a single item and never abort siblings.
``NoMediaFound`` is a reportable outcome, not an exception path, and exists
so the engine can map it to user text like the others.
"""
from __future__ import annotations

from app.infra.media_fetchers.base import MediaFetchError


class RelayError(Exception):
    """Base class for relay pipeline errors."""

    user_message: str = "Failed to process Instagram URL. Please try again later."
    retryable: bool = False

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.user_message
        super().__init__(self.detail)


class InvalidLink(RelayError):
    """No shortcode could be extracted from the message."""

    user_message = "Invalid Instagram URL. Could not extract post ID."


class UpstreamUnavailable(RelayError):
    """Metadata call failed or returned no media payload."""


class NoMediaFound(RelayError):
    """The post resolved to zero deliverable items."""

    user_message = "No media found or the post might be private/unavailable."


class MediaTooLarge(RelayError, MediaFetchError):
    """Declared (or streamed) size exceeds the configured ceiling."""

    user_message = "The file is too large to send."

    def __init__(self, detail: str | None = None, *, size_bytes: int = 0, limit_bytes: int = 0):
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        RelayError.__init__(self, detail)
        self.retryable = False


class DownloadFailed(RelayError, MediaFetchError):
    """Transport error while probing or transferring a media file."""

    user_message = "Failed to download media."

    def __init__(self, detail: str | None = None, *, status: int = 0):
        self.status = status
        RelayError.__init__(self, detail)
        self.retryable = False


class DeliveryFailed(RelayError):
    """Both the file send and the direct-URL fallback failed for an item."""

    def __init__(self, kind: str, detail: str | None = None):
        self.kind = kind
        self.user_message = (
            f"Failed to send {kind}. The file might be too large or unavailable."
        )
        super().__init__(detail or self.user_message)
