# app/transport/adapters.py
"""
Adapter to convert Telegram updates into domain models.
Pure converter - no domain logic.
"""
from __future__ import annotations

from app.core.engine.domain import InboundMessage
from app.infra.logging_config import get_logger, mask_chat_id

logger = get_logger(__name__)


class TelegramAdapter:
    """
    Adapter for Telegram Bot API messages.

    Telegram sends JSON Updates with structure:
    {
      "update_id": 123456,
      "message": {
        "message_id": 42,
        "from": {"id": 123, "first_name": "User", "username": "user", ...},
        "chat": {"id": 123, "type": "private", ...},
        "date": 1234567890,
        "text": "https://www.instagram.com/reel/Cx1Y2Z3/"
      }
    }

    Only ``message`` updates carrying text are relevant to the relay.
    """

    def adapt_update(self, update: dict) -> InboundMessage | None:
        """
        Convert a Telegram Update dict to an InboundMessage.
        Returns None for anything that is not a text message.
        """
        message = update.get("message")
        if not message:
            logger.debug(f"Telegram update: no 'message' field, ignoring (keys={list(update.keys())})")
            return None

        chat = message.get("chat", {})
        chat_id = str(chat.get("id", ""))
        if not chat_id:
            logger.warning("Telegram message: missing chat.id, ignoring")
            return None

        text = message.get("text")
        if not text:
            logger.debug(f"Telegram message: no text, ignoring (type keys: {list(message.keys())})")
            return None

        sender = message.get("from") or {}
        user_id = sender.get("id")

        # Bot commands: strip bot mention suffix ("/start@MyBot" → "/start")
        command = None
        if text.startswith("/"):
            parts = text.split()
            command = parts[0].split("@")[0]
            text = " ".join([command, *parts[1:]])

        logger.debug(
            f"Telegram message: from={mask_chat_id(chat_id)}, msg_id={message.get('message_id')}, "
            f"command={command}"
        )

        return InboundMessage(
            chat_id=chat_id,
            message_id=int(message.get("message_id", 0)),
            text=text,
            user_id=int(user_id) if user_id is not None else None,
            command=command,
        )
