# app/transport/telegram_polling.py
"""
Telegram Bot API long-polling handler.

Default intake mode. Calls getUpdates in a loop with long-polling; no public
URL or TLS needed.

Usage:
    poller = TelegramPoller(client=client, engine=engine)
    await poller.start()
    # ... on shutdown:
    await poller.stop()
"""
from __future__ import annotations

import asyncio

from app.core.engine.use_cases import LinkRelayEngine
from app.infra.logging_config import LogContext, get_logger
from app.infra.metrics import inc_counter
from app.transport.adapters import TelegramAdapter
from app.transport.telegram_sender import TelegramBotClient, TelegramSendError

logger = get_logger(__name__)

MAX_BACKOFF_SECONDS = 30


class TelegramPoller:
    """
    Long-polling loop for receiving Telegram updates.

    Each update is awaited through the relay engine before the next one is
    handled, so one chat's link is fully delivered before the following
    message is looked at.

    Error handling:
    - On API errors: exponential backoff (1s → 2s → 4s → ... → 30s max)
    - On processing errors: log and continue (the offset is already advanced)
    - On cancellation: graceful shutdown
    """

    def __init__(
        self,
        client: TelegramBotClient,
        engine: LinkRelayEngine,
        poll_timeout: int = 30,
    ):
        self.client = client
        self.engine = engine
        self.poll_timeout = poll_timeout
        self._adapter = TelegramAdapter()
        self._task: asyncio.Task | None = None
        self._offset: int | None = None
        self._running = False
        self._backoff = 1  # seconds, doubles on error, max 30

    @property
    def offset(self) -> int | None:
        return self._offset

    async def start(self) -> None:
        """Start the polling loop as a background task."""
        if self._running:
            logger.warning("Telegram poller already running")
            return

        # Remove any existing webhook so polling can work
        try:
            await self.client.delete_webhook()
            logger.info("Telegram webhook removed (polling mode)")
        except TelegramSendError as e:
            logger.warning(f"Could not delete Telegram webhook: {e}")

        self._running = True
        self._task = asyncio.create_task(self._poll_loop(), name="tg_poller")
        logger.info(f"Telegram poller started (timeout={self.poll_timeout}s)")

    async def stop(self) -> None:
        """Stop the polling loop gracefully."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Telegram poller stopped")

    async def poll_once(self) -> int:
        """
        Fetch one batch of updates and process it.

        Returns:
            Number of updates received.
        """
        updates = await self.client.get_updates(offset=self._offset, timeout=self.poll_timeout)
        self._backoff = 1

        for update in updates:
            # Acknowledge before processing so a crashing update is not redelivered forever
            self._offset = int(update.get("update_id", 0)) + 1
            await self._process_update(update)

        return len(updates)

    async def _poll_loop(self) -> None:
        """Main polling loop."""
        while self._running:
            try:
                await self.poll_once()

            except TelegramSendError as e:
                if not self._running:
                    break
                logger.error(f"Telegram polling error: {e}, backing off {self._backoff}s")
                await asyncio.sleep(self._backoff)
                self._backoff = min(self._backoff * 2, MAX_BACKOFF_SECONDS)

            except asyncio.CancelledError:
                break

            except Exception as e:
                if not self._running:
                    break
                logger.error(f"Telegram polling unexpected error: {e}", exc_info=True)
                await asyncio.sleep(self._backoff)
                self._backoff = min(self._backoff * 2, MAX_BACKOFF_SECONDS)

    async def _process_update(self, update: dict) -> None:
        """Process a single Telegram Update through the relay engine."""
        message = self._adapter.adapt_update(update)
        if message is None:
            return

        log_ctx = LogContext(logger, chat_id=message.chat_id)
        inc_counter("inbound_messages_total", provider="telegram")
        try:
            await self.engine.handle_message(message)
        except Exception as exc:
            log_ctx.error(
                f"Telegram poll processing failed: {exc.__class__.__name__}",
                exc_info=True,
            )
