# app/transport/telegram_sender.py
"""
Telegram Bot API client.

Uses the Bot API to:
- Send, edit and delete text messages (progress messages, replies)
- Send photos / videos from a local scratch file (multipart) or a direct URL
- Send albums via sendMediaGroup, attaching local files as ``attach://<name>``
- Manage update intake (getUpdates, deleteWebhook, setWebhook)

Error classification (TelegramSendError.retryable):
- Token invalid / bot blocked  → NOT retryable (needs human intervention)
- Bad request                  → NOT retryable
- Rate limiting (429)          → retryable
- Network / timeout            → retryable  (status 0)
- Unknown server error         → retryable  (optimistic)

The relay core treats every TelegramSendError the same way; ``retryable`` is
informational and only the poller uses it (backoff).

HTTP session lifecycle:
- Uses the shared sender session from app.infra.http_client unless one is
  injected. Call close_all_sessions() during application shutdown.
"""
from __future__ import annotations

import asyncio
import json
from contextlib import ExitStack
from pathlib import Path
from typing import Sequence

import aiohttp

from app.core.engine.ports import OutboundMedia, TelegramSendError
from app.infra.http_client import get_sender_session
from app.infra.logging_config import get_logger, mask_chat_id
from app.infra.metrics import inc_counter

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"

# Uploads can be tens of MB; the session-level 60 s total is too tight for them
UPLOAD_TIMEOUT = aiohttp.ClientTimeout(total=300, connect=10)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class TelegramBotClient:
    """
    Thin async wrapper over the Bot API methods the relay uses.

    Args:
        token: Bot token
        session: Injected session (tests); defaults to the shared sender session
    """

    def __init__(self, token: str, session: aiohttp.ClientSession | None = None):
        self._token = token
        self._session = session

    @property
    def session(self) -> aiohttp.ClientSession:
        return self._session or get_sender_session()

    def _bot_url(self, method: str) -> str:
        return f"{TELEGRAM_API_BASE}/bot{self._token}/{method}"

    # -- text ---------------------------------------------------------------

    async def send_message(self, chat_id: str, text: str) -> dict:
        return await self._call("sendMessage", {"chat_id": chat_id, "text": text}, chat_id=chat_id)

    async def edit_message_text(self, chat_id: str, message_id: int, text: str) -> dict:
        payload = {"chat_id": chat_id, "message_id": message_id, "text": text}
        return await self._call("editMessageText", payload, chat_id=chat_id)

    async def edit_or_replace_text(self, chat_id: str, message_id: int | None, text: str) -> None:
        """Edit a message in place; if that fails, send ``text`` as a new message."""
        if message_id is not None:
            try:
                await self.edit_message_text(chat_id, message_id, text)
                return
            except TelegramSendError as exc:
                logger.warning(f"Failed to edit message {message_id}, sending a new one: {exc}")
        await self.send_message(chat_id, text)

    async def delete_message(self, chat_id: str, message_id: int) -> bool:
        body = await self._call(
            "deleteMessage", {"chat_id": chat_id, "message_id": message_id}, chat_id=chat_id
        )
        return bool(body.get("result", True))

    # -- media --------------------------------------------------------------

    async def send_photo(self, chat_id: str, photo: Path | str) -> dict:
        return await self._send_single("sendPhoto", "photo", chat_id, photo)

    async def send_video(self, chat_id: str, video: Path | str) -> dict:
        return await self._send_single("sendVideo", "video", chat_id, video)

    async def send_media_group(self, chat_id: str, media: Sequence[OutboundMedia]) -> list:
        """
        Send 2..10 items as one album.

        Local files are attached as multipart fields and referenced with
        ``attach://file<i>``; URLs are passed through.
        """
        entries: list[dict] = []
        with ExitStack() as stack:
            form = aiohttp.FormData()
            form.add_field("chat_id", str(chat_id))

            for index, entry in enumerate(media):
                if isinstance(entry.source, Path):
                    field_name = f"file{index}"
                    try:
                        fh = stack.enter_context(open(entry.source, "rb"))
                    except OSError as exc:
                        raise TelegramSendError(
                            0, None, f"Upload failed: {exc}", retryable=False
                        ) from exc
                    form.add_field(field_name, fh, filename=entry.source.name)
                    entries.append({"type": entry.telegram_type, "media": f"attach://{field_name}"})
                else:
                    entries.append({"type": entry.telegram_type, "media": entry.source})

            form.add_field("media", json.dumps(entries))
            body = await self._call(
                "sendMediaGroup", form=form, chat_id=chat_id, timeout=UPLOAD_TIMEOUT
            )

        return body.get("result", [])

    async def _send_single(self, method: str, field: str, chat_id: str, source: Path | str) -> dict:
        if not isinstance(source, Path):
            return await self._call(method, {"chat_id": chat_id, field: source}, chat_id=chat_id)

        try:
            fh = open(source, "rb")
        except OSError as exc:
            raise TelegramSendError(0, None, f"Upload failed: {exc}", retryable=False) from exc

        with fh:
            form = aiohttp.FormData()
            form.add_field("chat_id", str(chat_id))
            form.add_field(field, fh, filename=source.name)
            return await self._call(method, form=form, chat_id=chat_id, timeout=UPLOAD_TIMEOUT)

    # -- intake -------------------------------------------------------------

    async def get_updates(self, offset: int | None = None, timeout: int = 30) -> list[dict]:
        """
        Long-poll for updates via getUpdates.

        Returns:
            List of Update dicts
        """
        payload: dict = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset

        body = await self._call(
            "getUpdates",
            payload,
            timeout=aiohttp.ClientTimeout(total=timeout + 10, connect=5),
            quiet=True,
        )
        return body.get("result", [])

    async def delete_webhook(self) -> dict:
        """Remove webhook so polling can work."""
        return await self._call("deleteWebhook", {})

    async def set_webhook(
        self,
        webhook_url: str,
        secret_token: str | None = None,
        max_connections: int = 1,
    ) -> dict:
        """
        Set webhook URL for the bot.

        Args:
            webhook_url: Public HTTPS URL for receiving updates
            secret_token: Value Telegram echoes in X-Telegram-Bot-Api-Secret-Token
            max_connections: Concurrent webhook requests Telegram may open
                (its default is 40; 1 keeps updates strictly sequential)
        """
        payload: dict = {
            "url": webhook_url,
            "allowed_updates": ["message"],
            "max_connections": max_connections,
        }
        if secret_token:
            payload["secret_token"] = secret_token
        return await self._call("setWebhook", payload)

    async def get_me(self) -> dict:
        body = await self._call("getMe", {})
        return body.get("result", {})

    # -- internal -----------------------------------------------------------

    async def _call(
        self,
        method: str,
        payload: dict | None = None,
        *,
        form: aiohttp.FormData | None = None,
        chat_id: str = "system",
        timeout: aiohttp.ClientTimeout | None = None,
        quiet: bool = False,
    ) -> dict:
        """
        Execute a Bot API request with error classification.
        """
        request_kwargs: dict = {"data": form} if form is not None else {"json": payload or {}}
        if timeout is not None:
            request_kwargs["timeout"] = timeout

        try:
            async with self.session.post(self._bot_url(method), **request_kwargs) as resp:
                body = await _safe_response_json(resp)

                if resp.status == 200 and body and body.get("ok"):
                    if not quiet:
                        logger.debug(f"Telegram {method} ok: to={mask_chat_id(str(chat_id))}")
                    inc_counter("telegram_api_calls_total", method=method, outcome="ok")
                    return body

                error_desc = (body or {}).get("description", "Unknown error")
                error_code = (body or {}).get("error_code")
                inc_counter("telegram_api_calls_total", method=method, outcome="error")

                # -- Auth failure: token invalid (DO NOT retry) --------
                if resp.status == 401 or error_code == 401:
                    logger.error(f"Telegram API auth error (token invalid): {error_desc}")
                    raise TelegramSendError(resp.status, error_code, error_desc, retryable=False)

                # -- Forbidden / bad request (DO NOT retry) --------
                if resp.status in (400, 403):
                    logger.warning(f"Telegram {method} rejected: {error_desc}")
                    raise TelegramSendError(resp.status, error_code, error_desc, retryable=False)

                # -- Rate limit --------------
                if resp.status == 429:
                    retry_after = ((body or {}).get("parameters") or {}).get("retry_after", 30)
                    logger.warning(f"Telegram API rate limit on {method}, retry_after={retry_after}s")
                    raise TelegramSendError(resp.status, error_code, error_desc, retryable=True)

                logger.error(
                    f"Telegram API error: method={method}, status={resp.status}, "
                    f"code={error_code}, msg={error_desc}"
                )
                raise TelegramSendError(resp.status, error_code, error_desc, retryable=True)

        except TelegramSendError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error(f"Telegram {method} connection error: {exc}")
            inc_counter("telegram_api_calls_total", method=method, outcome="unreachable")
            raise TelegramSendError(0, None, str(exc) or type(exc).__name__, retryable=True)
        except OSError as exc:
            # local file could not be read while streaming the upload
            raise TelegramSendError(0, None, f"Upload failed: {exc}", retryable=False) from exc


async def _safe_response_json(resp: aiohttp.ClientResponse) -> dict | None:
    """Parse JSON from response, returning None if body is not valid JSON."""
    try:
        return await resp.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        logger.warning(f"Telegram API returned non-JSON body: status={resp.status}")
        return None
