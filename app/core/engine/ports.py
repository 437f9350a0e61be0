# app/core/engine/ports.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Optional, Sequence

from app.core.engine.domain import MediaKind


# ============================================================================
# MESSAGING
# ============================================================================

class TelegramSendError(Exception):
    """Error calling the Telegram Bot API.

    Attributes:
        status:     HTTP status code (0 for connection-level errors).
        error_code: Telegram-specific error code from the response body.
        retryable:  Whether the caller may retry later.
    """

    def __init__(
        self,
        status: int,
        error_code: int | None,
        message: str,
        *,
        retryable: bool = False,
    ):
        self.status = status
        self.error_code = error_code
        self.retryable = retryable
        self.description = message
        super().__init__(f"Telegram API error {status} (code={error_code}): {message}")


@dataclass(frozen=True)
class OutboundMedia:
    """One album entry: a local file (Path) or a remote URL (str)."""
    kind: MediaKind
    source: Path | str

    @property
    def telegram_type(self) -> str:
        return "video" if self.kind is MediaKind.VIDEO else "photo"


class MessagingClient(Protocol):
    """
    Subset of the Telegram Bot API used by the relay.

    Every method raises ``TelegramSendError`` on failure; the core does not
    distinguish "unreachable" from "rejected".
    """

    async def send_message(self, chat_id: str, text: str) -> dict: ...

    async def edit_message_text(self, chat_id: str, message_id: int, text: str) -> dict: ...

    async def edit_or_replace_text(self, chat_id: str, message_id: Optional[int], text: str) -> None: ...

    async def delete_message(self, chat_id: str, message_id: int) -> bool: ...

    async def send_photo(self, chat_id: str, photo: Path | str) -> dict: ...

    async def send_video(self, chat_id: str, video: Path | str) -> dict: ...

    async def send_media_group(self, chat_id: str, media: Sequence[OutboundMedia]) -> list: ...


# ============================================================================
# UPSTREAM
# ============================================================================

class PostMetadataSource(Protocol):
    async def fetch_post_metadata(self, shortcode: str) -> Optional[dict]:
        """
        Raw ``xdt_shortcode_media`` payload, or None when the upstream
        returned no media object.
        """
        ...
