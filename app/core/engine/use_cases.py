# app/core/engine/use_cases.py
import uuid

from app.admin.service import CommandService, RelayActivity
from app.core.delivery.coordinator import DeliveryCoordinator
from app.core.engine.domain import DeliveryState, InboundMessage
from app.core.engine.errors import InvalidLink, NoMediaFound, RelayError, UpstreamUnavailable
from app.core.engine.ports import MessagingClient, TelegramSendError
from app.core.instagram.links import extract_shortcode, find_instagram_url, is_supported_url
from app.core.instagram.resolver import PostResolver
from app.core.texts import error_text, get_text
from app.infra.logging_config import LogContext, get_logger
from app.infra.metrics import RelayMetrics

logger = get_logger(__name__)


class LinkRelayEngine:
    """
    Application service / use-case layer.
    Workflow: classify -> progress message -> resolve -> deliver -> report.

    One message is processed to completion before the caller hands over the
    next update. Every exception stops here: the caller never sees one.
    """

    def __init__(
        self,
        *,
        client: MessagingClient,
        resolver: PostResolver,
        coordinator: DeliveryCoordinator,
        commands: CommandService,
        activity: RelayActivity | None = None,
    ) -> None:
        self.client = client
        self.resolver = resolver
        self.coordinator = coordinator
        self.commands = commands
        self.activity = activity or commands.activity

    async def handle_message(self, message: InboundMessage) -> DeliveryState | None:
        """
        Process one inbound message.

        Returns:
            Terminal state for Instagram links, None for anything else.
        """
        if message.is_command():
            await self._handle_command(message)
            return None

        if not message.has_text() or not is_supported_url(message.text):
            return None

        request_id = uuid.uuid4().hex[:8]
        log = LogContext(logger, chat_id=message.chat_id, request_id=request_id)
        log.info(f"Instagram URL detected: {find_instagram_url(message.text)}")

        RelayMetrics.link_received()
        self.activity.started()
        try:
            state = await self._relay(message, log)
        finally:
            self.activity.finished()

        RelayMetrics.request_finished(state.value)
        return state

    async def _relay(self, message: InboundMessage, log: LogContext) -> DeliveryState:
        chat_id = message.chat_id
        progress_id = await self._send_progress(chat_id, log)

        try:
            shortcode = extract_shortcode(message.text)
            if not shortcode:
                raise InvalidLink()

            log = log.bind(shortcode=shortcode)
            await self._update_progress(chat_id, progress_id, get_text("fetching"), log)

            with RelayMetrics.track_processing_time("resolve"):
                post = await self.resolver.resolve(shortcode)

            if not post.has_media():
                raise NoMediaFound()

            log.info(f"Resolved {post.media_count} media item(s)")

            if progress_id is not None:
                await self._delete_quietly(chat_id, progress_id, log)
                progress_id = None

            with RelayMetrics.track_processing_time("deliver"):
                report = await self.coordinator.deliver_with_report(
                    chat_id, post.media_items, origin_message_id=message.message_id
                )
            return report.state

        except InvalidLink as e:
            await self._report_failure(chat_id, progress_id, e, log)
            return DeliveryState.RESOLVE_FAILED
        except NoMediaFound as e:
            await self._report_failure(chat_id, progress_id, e, log)
            return DeliveryState.NO_MEDIA
        except UpstreamUnavailable as e:
            log.error(f"Error processing Instagram URL: {e.detail}")
            await self._report_failure(chat_id, progress_id, e, log)
            return DeliveryState.RESOLVE_FAILED
        except Exception as e:
            log.error(f"Unexpected error processing Instagram URL: {e}", exc_info=True)
            await self._report_failure(chat_id, progress_id, RelayError(), log)
            return DeliveryState.FAILED

    async def _handle_command(self, message: InboundMessage) -> None:
        try:
            reply = await self.commands.handle(message)
            if reply:
                await self.client.send_message(message.chat_id, reply)
        except Exception as e:
            logger.error(f"Command {message.command} failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Progress message
    # ------------------------------------------------------------------

    async def _send_progress(self, chat_id: str, log: LogContext) -> int | None:
        try:
            body = await self.client.send_message(chat_id, get_text("processing"))
            return (body.get("result") or {}).get("message_id")
        except TelegramSendError as e:
            log.warning(f"Could not send processing message: {e}")
            return None

    async def _update_progress(
        self, chat_id: str, progress_id: int | None, text: str, log: LogContext
    ) -> None:
        if progress_id is None:
            return
        try:
            await self.client.edit_message_text(chat_id, progress_id, text)
        except TelegramSendError as e:
            log.warning(f"Failed to update processing message: {e}")

    async def _report_failure(
        self, chat_id: str, progress_id: int | None, error: RelayError, log: LogContext
    ) -> None:
        log.info(f"Request failed: {type(error).__name__}")
        try:
            await self.client.edit_or_replace_text(chat_id, progress_id, error_text(error.user_message))
        except TelegramSendError as e:
            log.error(f"Error updating processing message: {e}")

    async def _delete_quietly(self, chat_id: str, message_id: int, log: LogContext) -> None:
        try:
            await self.client.delete_message(chat_id, message_id)
        except TelegramSendError as e:
            log.warning(f"Failed to delete processing message {message_id}: {e}")
