# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.config import RuntimeConfig, Settings  # noqa: E402
from app.core.engine.domain import DownloadedFile, MediaItem, MediaKind  # noqa: E402
from app.infra.scratch_storage import ScratchStorage  # noqa: E402
from app.core.engine.ports import TelegramSendError  # noqa: E402

ADMIN_ID = 1001
USER_ID = 2002


def make_settings(**overrides) -> Settings:
    """Settings isolated from the environment and any .env file."""
    values = {
        "telegram_bot_token": "123:test-token",
        "admin_ids": str(ADMIN_ID),
        "inter_item_delay_ms": 0,
        "scratch_dir": "./temp-tests",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def image(n: int) -> MediaItem:
    return MediaItem(MediaKind.IMAGE, f"https://cdn.example.com/img{n}.jpg", 1080, 1080)


def video(n: int) -> MediaItem:
    return MediaItem(MediaKind.VIDEO, f"https://cdn.example.com/vid{n}.mp4", 720, 1280)


class FakeTelegramClient:
    """
    In-memory stand-in for TelegramBotClient.

    ``calls`` records (method, args) in order. ``failures`` maps a method name
    to True (always fail) or a predicate over the call args.
    """

    def __init__(self):
        self.calls: list[tuple[str, tuple]] = []
        self.failures: dict = {}
        self._next_message_id = 500

    def _maybe_fail(self, method: str, *args) -> None:
        rule = self.failures.get(method)
        if rule is True or (callable(rule) and rule(*args)):
            raise TelegramSendError(400, 400, f"{method} rejected")

    def _message(self) -> dict:
        self._next_message_id += 1
        return {"ok": True, "result": {"message_id": self._next_message_id}}

    def methods(self) -> list[str]:
        return [name for name, _ in self.calls]

    def calls_to(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    async def send_message(self, chat_id, text):
        self.calls.append(("send_message", (chat_id, text)))
        self._maybe_fail("send_message", chat_id, text)
        return self._message()

    async def edit_message_text(self, chat_id, message_id, text):
        self.calls.append(("edit_message_text", (chat_id, message_id, text)))
        self._maybe_fail("edit_message_text", chat_id, message_id, text)
        return self._message()

    async def edit_or_replace_text(self, chat_id, message_id, text):
        if message_id is not None:
            try:
                await self.edit_message_text(chat_id, message_id, text)
                return
            except TelegramSendError:
                pass
        await self.send_message(chat_id, text)

    async def delete_message(self, chat_id, message_id):
        self.calls.append(("delete_message", (chat_id, message_id)))
        self._maybe_fail("delete_message", chat_id, message_id)
        return True

    async def send_photo(self, chat_id, photo):
        self.calls.append(("send_photo", (chat_id, photo)))
        self._maybe_fail("send_photo", chat_id, photo)
        return self._message()

    async def send_video(self, chat_id, video):
        self.calls.append(("send_video", (chat_id, video)))
        self._maybe_fail("send_video", chat_id, video)
        return self._message()

    async def send_media_group(self, chat_id, media):
        self.calls.append(("send_media_group", (chat_id, list(media))))
        self._maybe_fail("send_media_group", chat_id, media)
        return [self._message()["result"] for _ in media]


class FakeFetcher:
    """
    Writes a small real file per item into scratch storage.

    ``errors`` maps a source URL to the exception its fetch raises.
    """

    def __init__(self, storage: ScratchStorage):
        self.storage = storage
        self.errors: dict[str, Exception] = {}
        self.fetched: list[MediaItem] = []
        self.produced: list[Path] = []

    async def fetch(self, item: MediaItem) -> DownloadedFile:
        self.fetched.append(item)
        if item.source_url in self.errors:
            raise self.errors[item.source_url]
        ext = ".mp4" if item.is_video else ".jpg"
        path = self.storage.allocate_path(ext)
        path.write_bytes(b"media-bytes")
        self.produced.append(path)
        return DownloadedFile(path=path, item=item, size_bytes=11)


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def runtime_config():
    return RuntimeConfig(make_settings())


@pytest.fixture
def scratch(tmp_path) -> ScratchStorage:
    return ScratchStorage(tmp_path / "scratch")


@pytest.fixture
def telegram():
    return FakeTelegramClient()


@pytest.fixture
def fetcher(scratch):
    return FakeFetcher(scratch)


@pytest.fixture
def chat_id():
    """Default chat ID for tests"""
    return "987654321"
