# app/core/delivery/coordinator.py
"""
Delivery coordinator: ordered media items -> messages in the origin chat.

Policy
------
- One item: download and send from file; on a download or send failure send
  by direct URL; if that fails too, tell the user the item could not be sent.
  An item over the size ceiling is skipped and reported with no fallback and
  contributes nothing to the delivered count.
- Several items with media groups enabled: ordered groups of at most
  ``max_group_size``. Each group is downloaded concurrently and sent as one
  album. If any download in the group fails, or the album is rejected, every
  item of that group is sent individually (single-item policy) with the
  inter-item delay between them. Groups are separated by twice that delay.
- Several items with media groups disabled: individually, in order.

Every file downloaded for the request is released, and the origin message is
deleted, in a ``finally`` block. Per-item failures of any kind are counted and
logged, never raised to the caller.
"""
from __future__ import annotations

import asyncio
from typing import Sequence

from app.config import RuntimeConfig
from app.core.engine.domain import (
    DeliveryReport,
    DeliveryState,
    DownloadedFile,
    MediaItem,
)
from app.core.engine.errors import DeliveryFailed, MediaTooLarge, RelayError
from app.core.engine.ports import MessagingClient, OutboundMedia, TelegramSendError
from app.infra.logging_config import LogContext, get_logger
from app.infra.media_fetchers.base import MediaFetcher, MediaFetchError
from app.infra.metrics import RelayMetrics
from app.infra.scratch_storage import ScratchStorage

logger = get_logger(__name__)


def partition(items: Sequence[MediaItem], size: int) -> list[list[MediaItem]]:
    """Split ``items`` into consecutive groups of at most ``size``, preserving order."""
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class DeliveryCoordinator:
    def __init__(
        self,
        client: MessagingClient,
        fetcher: MediaFetcher,
        storage: ScratchStorage,
        runtime_config: RuntimeConfig,
    ):
        self.client = client
        self.fetcher = fetcher
        self.storage = storage
        self.runtime_config = runtime_config

    async def deliver(
        self,
        chat_id: str,
        media_items: Sequence[MediaItem],
        origin_message_id: int | None = None,
    ) -> int:
        """Deliver ``media_items`` to ``chat_id``. Returns the number delivered."""
        report = await self.deliver_with_report(chat_id, media_items, origin_message_id)
        return report.delivered

    async def deliver_with_report(
        self,
        chat_id: str,
        media_items: Sequence[MediaItem],
        origin_message_id: int | None = None,
    ) -> DeliveryReport:
        report = DeliveryReport(total=len(media_items))
        if not media_items:
            report.finish()
            return report

        run = _DeliveryRun(self, chat_id, report)
        # Toggles are read once per request so a flip mid-delivery cannot mix modes
        use_groups = self.runtime_config.use_media_groups
        group_size = self.runtime_config.max_group_size
        delay = self.runtime_config.inter_item_delay_seconds

        try:
            if len(media_items) == 1:
                await run.send_single(media_items[0])
            elif use_groups:
                groups = partition(media_items, group_size)
                run.log.debug(f"Split {len(media_items)} items into {len(groups)} group(s)")
                for index, group in enumerate(groups):
                    if index:
                        await asyncio.sleep(delay * 2)
                    await run.send_group(group, delay)
            else:
                await run.send_individually(media_items, delay)
        finally:
            report.state = DeliveryState.CLEANUP
            run.release_all()
            if origin_message_id is not None:
                await self._delete_origin(chat_id, origin_message_id, run.log)
            report.finish()

        RelayMetrics.items_delivered(report.delivered)
        if report.failed:
            RelayMetrics.items_failed(report.failed)
        run.log.info(
            f"Delivered {report.delivered}/{report.total} item(s) "
            f"({report.groups_sent} album(s)), state={report.state.value}"
        )
        return report

    async def _delete_origin(self, chat_id: str, message_id: int, log: LogContext) -> None:
        try:
            await self.client.delete_message(chat_id, message_id)
            log.debug(f"Deleted original message {message_id}")
        except TelegramSendError as exc:
            log.error(f"Failed to delete original message {message_id}: {exc}")


class _DeliveryRun:
    """State of one ``deliver`` call: counters and the files it owns."""

    def __init__(self, coordinator: DeliveryCoordinator, chat_id: str, report: DeliveryReport):
        self.client = coordinator.client
        self.fetcher = coordinator.fetcher
        self.storage = coordinator.storage
        self.chat_id = chat_id
        self.report = report
        self.owned: list[DownloadedFile] = []
        self.log = LogContext(logger, chat_id=chat_id)

    # -- downloads ------------------------------------------------------------

    async def download(self, item: MediaItem) -> DownloadedFile:
        downloaded = await self.fetcher.fetch(item)
        self.owned.append(downloaded)
        return downloaded

    def release(self, downloaded: DownloadedFile) -> None:
        self.storage.release(downloaded.path)
        if downloaded in self.owned:
            self.owned.remove(downloaded)

    def release_all(self) -> None:
        for downloaded in list(self.owned):
            self.release(downloaded)

    # -- single item ----------------------------------------------------------

    async def send_single(self, item: MediaItem, downloaded: DownloadedFile | None = None) -> bool:
        """
        Send one item from file, falling back to its direct URL.

        ``downloaded`` may carry a file already fetched for a failed album.
        An oversized item is skipped and reported without a fallback.
        """
        try:
            if downloaded is None:
                downloaded = await self.download(item)
            await self._send_one(item, downloaded.path)
            self.report.delivered += 1
            return True
        except MediaTooLarge as exc:
            await self.skip_too_large(item, exc)
            return False
        except (MediaFetchError, TelegramSendError) as exc:
            self.log.warning(f"Sending {item.kind.value} from file failed: {exc}")
        except Exception as exc:
            self.log.error(f"Unexpected error sending {item.kind.value} from file: {exc}", exc_info=True)
        finally:
            if downloaded is not None:
                self.release(downloaded)

        self.log.info("Falling back to direct URL method")
        try:
            await self._send_one(item, item.source_url)
            self.report.delivered += 1
            return True
        except TelegramSendError as exc:
            self.log.error(f"Fallback method failed too: {exc}")
            failure = DeliveryFailed(item.kind.value, str(exc))
        except Exception as exc:
            self.log.error(f"Fallback method failed with unexpected error: {exc}", exc_info=True)
            failure = DeliveryFailed(item.kind.value, str(exc))

        self.report.failed += 1
        await self._notify_failure(failure)
        return False

    async def skip_too_large(self, item: MediaItem, exc: MediaTooLarge) -> None:
        self.log.warning(f"Skipping {item.kind.value}: {exc}")
        self.report.failed += 1
        await self._notify_failure(exc)

    async def send_individually(self, items: Sequence[MediaItem], delay: float) -> None:
        for index, item in enumerate(items):
            if index:
                await asyncio.sleep(delay)
            await self.send_single(item)

    async def _send_one(self, item: MediaItem, source) -> None:
        if item.is_video:
            await self.client.send_video(self.chat_id, source)
        else:
            await self.client.send_photo(self.chat_id, source)

    async def _notify_failure(self, failure: RelayError) -> None:
        try:
            await self.client.send_message(self.chat_id, failure.user_message)
        except TelegramSendError as exc:
            self.log.error(f"Could not report failed item to chat: {exc}")

    # -- groups ---------------------------------------------------------------

    async def send_group(self, group: list[MediaItem], delay: float) -> None:
        if len(group) == 1:
            await self.send_single(group[0])
            return

        results = await asyncio.gather(
            *(self.download(item) for item in group),
            return_exceptions=True,
        )
        downloads: dict[int, DownloadedFile] = {}
        too_large: dict[int, MediaTooLarge] = {}
        for index, result in enumerate(results):
            if isinstance(result, DownloadedFile):
                downloads[index] = result
            elif isinstance(result, MediaTooLarge):
                too_large[index] = result
            elif isinstance(result, Exception):
                self.log.warning(f"Download of item {index + 1} in group failed: {result}")
            else:
                raise result

        if len(downloads) == len(group):
            media = [OutboundMedia(d.item.kind, d.path) for d in downloads.values()]
            try:
                self.log.info(f"Sending media group with {len(media)} items")
                await self.client.send_media_group(self.chat_id, media)
            except TelegramSendError as exc:
                self.log.error(f"Error sending media group: {exc}")
            except Exception as exc:
                self.log.error(f"Unexpected error sending media group: {exc}", exc_info=True)
            else:
                self.report.delivered += len(group)
                self.report.groups_sent += 1
                for downloaded in downloads.values():
                    self.release(downloaded)
                return

        self.log.info("Falling back to individual messages")
        for index, item in enumerate(group):
            if index:
                await asyncio.sleep(delay)
            if index in too_large:
                await self.skip_too_large(item, too_large[index])
            else:
                await self.send_single(item, downloads.get(index))
