# tests/test_coordinator.py
"""Tests for the delivery coordinator: grouping, fallbacks and cleanup"""
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from conftest import ADMIN_ID, FakeFetcher, image, make_settings, video
from app.config import RuntimeConfig
from app.core.delivery.coordinator import DeliveryCoordinator, partition
from app.core.engine.domain import DeliveryState
from app.core.engine.errors import DownloadFailed, MediaTooLarge
from app.core.engine.ports import OutboundMedia
from app.infra.scratch_storage import ScratchStorage

ORIGIN_ID = 42


@pytest.fixture
def coordinator(telegram, fetcher, scratch, runtime_config):
    return DeliveryCoordinator(telegram, fetcher, scratch, runtime_config)


def leftover_files(scratch) -> list[Path]:
    if not scratch.directory.exists():
        return []
    return list(scratch.directory.iterdir())


def album_sizes(telegram) -> list[int]:
    return [len(media) for _, media in telegram.calls_to("send_media_group")]


class TestPartition:
    def test_preserves_order_and_sizes(self):
        items = [image(i) for i in range(23)]
        groups = partition(items, 10)

        assert [len(g) for g in groups] == [10, 10, 3]
        assert [item for group in groups for item in group] == items

    @pytest.mark.parametrize("count", [2, 9, 10, 11, 20, 21])
    def test_group_count_is_ceiling(self, count):
        groups = partition([image(i) for i in range(count)], 10)
        assert len(groups) == -(-count // 10)
        assert all(len(g) <= 10 for g in groups)

    def test_empty(self):
        assert partition([], 10) == []


class TestSingleItem:
    @pytest.mark.asyncio
    async def test_reel_is_sent_as_video_file(self, coordinator, telegram, scratch, chat_id):
        delivered = await coordinator.deliver(chat_id, [video(1)], origin_message_id=ORIGIN_ID)

        assert delivered == 1
        assert telegram.methods() == ["send_video", "delete_message"]
        sent_chat, source = telegram.calls_to("send_video")[0]
        assert sent_chat == chat_id
        assert isinstance(source, Path)
        assert telegram.calls_to("delete_message") == [(chat_id, ORIGIN_ID)]
        assert leftover_files(scratch) == []

    @pytest.mark.asyncio
    async def test_too_large_is_skipped_without_url_fallback(
        self, coordinator, telegram, fetcher, chat_id
    ):
        item = video(1)
        fetcher.errors[item.source_url] = MediaTooLarge("too big", size_bytes=99, limit_bytes=10)

        report = await coordinator.deliver_with_report(chat_id, [item], origin_message_id=ORIGIN_ID)

        assert report.delivered == 0
        assert report.failed == 1
        assert report.state is DeliveryState.FAILED
        assert "send_video" not in telegram.methods()
        texts = [text for _, text in telegram.calls_to("send_message")]
        assert texts == ["The file is too large to send."]
        assert telegram.calls_to("delete_message") == [(chat_id, ORIGIN_ID)]

    @pytest.mark.asyncio
    async def test_falls_back_to_url_when_download_fails(
        self, coordinator, telegram, fetcher, chat_id
    ):
        item = video(1)
        fetcher.errors[item.source_url] = DownloadFailed("HTTP 500", status=500)

        report = await coordinator.deliver_with_report(chat_id, [item])

        assert report.delivered == 1
        assert report.state is DeliveryState.DELIVERED
        assert telegram.calls_to("send_video") == [(chat_id, item.source_url)]

    @pytest.mark.asyncio
    async def test_falls_back_to_url_when_upload_rejected(
        self, coordinator, telegram, scratch, chat_id
    ):
        item = image(1)
        telegram.failures["send_photo"] = lambda chat, photo: isinstance(photo, Path)

        report = await coordinator.deliver_with_report(chat_id, [item])

        assert report.delivered == 1
        sources = [photo for _, photo in telegram.calls_to("send_photo")]
        assert isinstance(sources[0], Path)
        assert sources[1] == item.source_url
        assert leftover_files(scratch) == []

    @pytest.mark.asyncio
    async def test_both_paths_fail_reports_to_chat(self, coordinator, telegram, fetcher, chat_id):
        item = video(1)
        fetcher.errors[item.source_url] = DownloadFailed("HTTP 403", status=403)
        telegram.failures["send_video"] = True

        report = await coordinator.deliver_with_report(chat_id, [item], origin_message_id=ORIGIN_ID)

        assert report.delivered == 0
        assert report.failed == 1
        assert report.state is DeliveryState.FAILED
        texts = [text for _, text in telegram.calls_to("send_message")]
        assert texts == ["Failed to send video. The file might be too large or unavailable."]
        assert telegram.calls_to("delete_message") == [(chat_id, ORIGIN_ID)]


class TestGroups:
    @pytest.mark.asyncio
    async def test_twelve_items_become_two_albums(self, coordinator, telegram, scratch, chat_id):
        items = [image(i) if i % 3 else video(i) for i in range(12)]

        report = await coordinator.deliver_with_report(chat_id, items, origin_message_id=ORIGIN_ID)

        assert report.delivered == 12
        assert report.groups_sent == 2
        assert album_sizes(telegram) == [10, 2]
        assert "send_photo" not in telegram.methods()
        assert telegram.methods()[-1] == "delete_message"
        assert leftover_files(scratch) == []

    @pytest.mark.asyncio
    async def test_album_keeps_order_and_kinds(self, coordinator, telegram, chat_id):
        items = [image(1), video(2), image(3)]

        await coordinator.deliver(chat_id, items)

        _, media = telegram.calls_to("send_media_group")[0]
        assert all(isinstance(m, OutboundMedia) for m in media)
        assert [m.kind for m in media] == [i.kind for i in items]

    @pytest.mark.asyncio
    async def test_trailing_group_of_one_is_sent_singly(
        self, coordinator, telegram, chat_id
    ):
        items = [image(i) for i in range(11)]

        report = await coordinator.deliver_with_report(chat_id, items)

        assert report.delivered == 11
        assert album_sizes(telegram) == [10]
        assert len(telegram.calls_to("send_photo")) == 1

    @pytest.mark.asyncio
    async def test_rejected_album_falls_back_to_individual_sends(
        self, coordinator, telegram, fetcher, scratch, chat_id
    ):
        items = [image(1), image(2), video(3)]
        telegram.failures["send_media_group"] = True

        report = await coordinator.deliver_with_report(chat_id, items)

        assert report.delivered == 3
        assert report.groups_sent == 0
        assert len(telegram.calls_to("send_photo")) == 2
        assert len(telegram.calls_to("send_video")) == 1
        # Files fetched for the album are reused, not downloaded twice
        assert len(fetcher.fetched) == 3
        assert leftover_files(scratch) == []

    @pytest.mark.asyncio
    async def test_one_failed_download_does_not_abort_siblings(
        self, coordinator, telegram, fetcher, scratch, chat_id
    ):
        items = [image(1), video(2), image(3)]
        fetcher.errors[items[1].source_url] = DownloadFailed("HTTP 403", status=403)

        report = await coordinator.deliver_with_report(chat_id, items, origin_message_id=ORIGIN_ID)

        assert report.delivered == 3
        assert "send_media_group" not in telegram.methods()
        assert telegram.calls_to("send_video") == [(chat_id, items[1].source_url)]
        photos = [photo for _, photo in telegram.calls_to("send_photo")]
        assert len(photos) == 2 and all(isinstance(p, Path) for p in photos)
        assert leftover_files(scratch) == []

    @pytest.mark.asyncio
    async def test_oversized_item_in_group_contributes_nothing(
        self, coordinator, telegram, fetcher, scratch, chat_id
    ):
        items = [image(1), video(2), image(3)]
        fetcher.errors[items[1].source_url] = MediaTooLarge("too big")

        report = await coordinator.deliver_with_report(chat_id, items)

        assert report.delivered == 2
        assert report.failed == 1
        assert report.state is DeliveryState.PARTIALLY_DELIVERED
        assert "send_video" not in telegram.methods()
        assert [text for _, text in telegram.calls_to("send_message")] == [
            "The file is too large to send."
        ]
        # The oversized item is fetched only once
        assert fetcher.fetched.count(items[1]) == 1
        assert leftover_files(scratch) == []

    @pytest.mark.asyncio
    async def test_partial_delivery_counts_failures(self, coordinator, telegram, fetcher, chat_id):
        items = [image(1), image(2), image(3)]
        fetcher.errors[items[2].source_url] = DownloadFailed("gone", status=404)
        telegram.failures["send_photo"] = lambda chat, photo: photo == items[2].source_url

        report = await coordinator.deliver_with_report(chat_id, items)

        assert report.delivered == 2
        assert report.failed == 1
        assert report.state is DeliveryState.PARTIALLY_DELIVERED
        assert len(telegram.calls_to("send_message")) == 1

    @pytest.mark.asyncio
    async def test_groups_are_separated_by_double_delay(self, telegram, fetcher, scratch, chat_id):
        config = RuntimeConfig(make_settings(inter_item_delay_ms=1500))
        coordinator = DeliveryCoordinator(telegram, fetcher, scratch, config)

        with patch("asyncio.sleep", new=AsyncMock()) as sleep:
            await coordinator.deliver(chat_id, [image(i) for i in range(22)])

        assert album_sizes(telegram) == [10, 10]
        assert [call.args[0] for call in sleep.await_args_list] == [3.0, 3.0]

    @pytest.mark.asyncio
    async def test_max_group_size_is_honored(self, telegram, fetcher, scratch, chat_id):
        config = RuntimeConfig(make_settings(max_group_size=4))
        coordinator = DeliveryCoordinator(telegram, fetcher, scratch, config)

        await coordinator.deliver(chat_id, [image(i) for i in range(9)])

        assert album_sizes(telegram) == [4, 4]
        assert len(telegram.calls_to("send_photo")) == 1


class TestIndividualMode:
    @pytest.mark.asyncio
    async def test_grouping_disabled_sends_each_item(
        self, coordinator, telegram, runtime_config, scratch, chat_id
    ):
        runtime_config.apply(ADMIN_ID, use_media_groups=False)
        items = [image(1), video(2), image(3)]

        with patch("asyncio.sleep", new=AsyncMock()) as sleep:
            delivered = await coordinator.deliver(chat_id, items)

        assert delivered == 3
        assert "send_media_group" not in telegram.methods()
        assert telegram.methods() == ["send_photo", "send_video", "send_photo"]
        assert sleep.await_count == 2
        assert leftover_files(scratch) == []


class TestCleanup:
    @pytest.mark.asyncio
    async def test_empty_list_sends_nothing(self, coordinator, telegram, chat_id):
        report = await coordinator.deliver_with_report(chat_id, [], origin_message_id=ORIGIN_ID)

        assert report.delivered == 0
        assert telegram.calls == []

    @pytest.mark.asyncio
    async def test_origin_delete_failure_is_not_raised(self, coordinator, telegram, chat_id):
        telegram.failures["delete_message"] = True

        delivered = await coordinator.deliver(chat_id, [image(1)], origin_message_id=ORIGIN_ID)

        assert delivered == 1
        assert telegram.calls_to("delete_message") == [(chat_id, ORIGIN_ID)]

    @pytest.mark.asyncio
    async def test_unexpected_album_error_falls_back_to_individual_sends(
        self, coordinator, telegram, fetcher, scratch, chat_id
    ):
        async def broken(chat, media):
            raise RuntimeError("connection reset")

        telegram.send_media_group = broken

        delivered = await coordinator.deliver(
            chat_id, [image(1), image(2)], origin_message_id=ORIGIN_ID
        )

        assert delivered == 2
        assert len(fetcher.produced) == 2
        assert len(telegram.calls_to("send_photo")) == 2
        assert leftover_files(scratch) == []
        assert telegram.calls_to("delete_message") == [(chat_id, ORIGIN_ID)]

    @pytest.mark.asyncio
    async def test_unexpected_fetch_error_falls_back_to_url(
        self, coordinator, telegram, fetcher, scratch, chat_id
    ):
        fetcher.errors[image(1).source_url] = ValueError("boom")

        delivered = await coordinator.deliver(chat_id, [image(1)])

        assert delivered == 1
        assert telegram.calls_to("send_photo") == [(chat_id, image(1).source_url)]
        assert leftover_files(scratch) == []

    @pytest.mark.asyncio
    async def test_unusable_scratch_dir_does_not_abort_delivery(
        self, telegram, runtime_config, tmp_path, chat_id
    ):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file")
        broken_storage = ScratchStorage(blocker / "scratch")
        coordinator = DeliveryCoordinator(
            telegram, FakeFetcher(broken_storage), broken_storage, runtime_config
        )
        runtime_config.apply(ADMIN_ID, use_media_groups=False)
        items = [image(1), video(2), image(3)]

        delivered = await coordinator.deliver(chat_id, items, origin_message_id=ORIGIN_ID)

        assert delivered == 3
        assert telegram.methods() == ["send_photo", "send_video", "send_photo", "delete_message"]
        assert [source for _, source in telegram.calls_to("send_photo")] == [
            items[0].source_url, items[2].source_url
        ]

    @pytest.mark.asyncio
    async def test_unexpected_url_fallback_error_is_reported(
        self, coordinator, telegram, fetcher, chat_id
    ):
        item = image(1)
        fetcher.errors[item.source_url] = DownloadFailed("gone", status=404)

        async def broken(chat, photo):
            raise RuntimeError("socket closed")

        telegram.send_photo = broken

        report = await coordinator.deliver_with_report(chat_id, [item])

        assert report.delivered == 0
        assert report.failed == 1
        assert [text for _, text in telegram.calls_to("send_message")] == [
            "Failed to send image. The file might be too large or unavailable."
        ]
