# app/core/engine/domain.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


# ============================================================================
# MEDIA
# ============================================================================

class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclass(frozen=True)
class MediaItem:
    """One deliverable unit resolved from an Instagram post.

    ``source_url`` is a time-limited CDN link; ``width``/``height`` are 0
    when the upstream does not report them.
    """
    kind: MediaKind
    source_url: str
    width: int = 0
    height: int = 0

    @property
    def is_video(self) -> bool:
        return self.kind is MediaKind.VIDEO


@dataclass(frozen=True)
class ResolvedPost:
    """
    Normalized Instagram post.

    ``media_items`` keeps the upstream display order. An empty tuple means
    there is nothing to deliver.
    """
    shortcode: str
    media_items: tuple[MediaItem, ...] = ()
    caption: str = ""
    post_id: str = ""

    @property
    def media_count(self) -> int:
        return len(self.media_items)

    def has_media(self) -> bool:
        return bool(self.media_items)


@dataclass
class DownloadedFile:
    """A media file in scratch storage, owned by the delivery that fetched it."""
    path: Path
    item: MediaItem
    content_type: Optional[str] = None
    size_bytes: int = 0


# ============================================================================
# DELIVERY STATE
# ============================================================================

class DeliveryState(str, Enum):
    """Lifecycle of one incoming link."""
    RECEIVED = "received"
    RESOLVING = "resolving"
    NO_MEDIA = "no_media"
    RESOLVE_FAILED = "resolve_failed"
    HAS_MEDIA = "has_media"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    PARTIALLY_DELIVERED = "partially_delivered"
    FAILED = "failed"
    CLEANUP = "cleanup"
    DONE = "done"


@dataclass
class DeliveryReport:
    """Outcome of one ``DeliveryCoordinator`` run."""
    total: int
    delivered: int = 0
    failed: int = 0
    groups_sent: int = 0
    state: DeliveryState = DeliveryState.DELIVERING

    def finish(self) -> DeliveryState:
        """Derive the terminal delivery state from the counters."""
        if self.total and self.delivered == self.total:
            self.state = DeliveryState.DELIVERED
        elif self.delivered:
            self.state = DeliveryState.PARTIALLY_DELIVERED
        else:
            self.state = DeliveryState.FAILED
        return self.state


# ============================================================================
# INBOUND MESSAGES
# ============================================================================

@dataclass
class InboundMessage:
    """
    Normalized inbound Telegram text message.
    """
    chat_id: str
    message_id: int
    text: Optional[str] = None
    user_id: Optional[int] = None
    command: Optional[str] = None  # "/start", "/loglevel_debug" (bot suffix stripped)

    def has_text(self) -> bool:
        """Check if message contains text"""
        return bool(self.text and self.text.strip())

    def is_command(self) -> bool:
        return self.command is not None
