# app/transport/telegram_webhook.py
"""
Telegram Bot API webhook handler.

Handles:
- POST /webhooks/telegram: inbound Updates from Telegram

Security:
- X-Telegram-Bot-Api-Secret-Token header validation (if configured)

Ordering:
- The webhook is registered with max_connections=1, so Telegram keeps a
  single request in flight.
- Updates are additionally serialized per chat with an asyncio.Lock, so two
  links from one conversation never interleave even if Telegram (or a
  reverse proxy) opens more than one connection.
"""
from __future__ import annotations

import asyncio
import hmac
import weakref

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.core.engine.use_cases import LinkRelayEngine
from app.infra.logging_config import LogContext, get_logger
from app.infra.metrics import inc_counter
from app.transport.adapters import TelegramAdapter

logger = get_logger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

# One lock per chat; an entry disappears once no request holds or awaits it
_chat_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def chat_lock(chat_id: str) -> asyncio.Lock:
    lock = _chat_locks.get(chat_id)
    if lock is None:
        lock = asyncio.Lock()
        _chat_locks[chat_id] = lock
    return lock


# -------------------------------------------------------------------------
# Secret Token Verification
# -------------------------------------------------------------------------

def _verify_secret_token(request: Request) -> bool:
    """
    Verify X-Telegram-Bot-Api-Secret-Token header.
    Returns True if valid or if secret token verification is disabled.
    """
    if not settings.telegram_webhook_secret:
        return True

    header_token = request.headers.get(SECRET_HEADER, "")
    if not header_token:
        logger.warning(f"Telegram webhook: missing {SECRET_HEADER} header")
        return False

    return hmac.compare_digest(header_token, settings.telegram_webhook_secret)


# -------------------------------------------------------------------------
# POST: Inbound Updates
# -------------------------------------------------------------------------

async def telegram_webhook_handler(
    request: Request,
    *,
    engine_override: LinkRelayEngine | None = None,
) -> JSONResponse:
    """
    Handle one Telegram Update (POST).

    Returns 200 for anything that passed the secret check, including
    malformed bodies and processing failures, to suppress Telegram retries.
    """
    if not _verify_secret_token(request):
        logger.error("Telegram webhook: secret token verification failed")
        inc_counter("telegram_webhook_rejected")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Telegram webhook: invalid JSON payload, returning 200 to suppress retries")
        inc_counter("telegram_webhook_malformed_payload")
        return JSONResponse({"ok": True}, status_code=200)

    if not isinstance(payload, dict):
        inc_counter("telegram_webhook_malformed_payload")
        return JSONResponse({"ok": True}, status_code=200)

    message = TelegramAdapter().adapt_update(payload)
    if message is None:
        # Non-message update (edited_message, callback_query, etc.), acknowledge
        return JSONResponse({"ok": True}, status_code=200)

    engine: LinkRelayEngine = engine_override or request.app.state.engine
    request_id = getattr(request.state, "request_id", None)
    log_ctx = LogContext(logger, chat_id=message.chat_id, request_id=request_id)
    inc_counter("inbound_messages_total", provider="telegram")

    try:
        async with chat_lock(message.chat_id):
            state = await engine.handle_message(message)
        status = state.value if state is not None else "ignored"
    except Exception as exc:
        log_ctx.error(
            f"Telegram webhook processing failed: {exc.__class__.__name__}",
            exc_info=True,
        )
        status = "error"

    return JSONResponse({"ok": True, "status": status}, status_code=200)
