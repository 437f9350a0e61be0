# tests/test_scratch_storage.py
"""Tests for scratch storage and the TTL sweeper"""
import asyncio
import os
import time

import pytest

from app.infra.scratch_storage import ScratchStorage, ScratchSweeper

TTL_MS = 30 * 60 * 1000


def _age(path, seconds: float) -> None:
    past = time.time() - seconds
    os.utime(path, (past, past))


class TestScratchStorage:
    def test_allocate_path_creates_directory(self, tmp_path):
        storage = ScratchStorage(tmp_path / "nested" / "scratch")
        path = storage.allocate_path(".mp4")

        assert storage.directory.is_dir()
        assert path.parent == storage.directory
        assert path.name.startswith("instagram_")
        assert path.suffix == ".mp4"
        assert not path.exists()

    def test_allocate_path_is_unique(self, scratch):
        paths = {scratch.allocate_path(".jpg") for _ in range(200)}
        assert len(paths) == 200

    def test_allocate_path_normalizes_extension(self, scratch):
        assert scratch.allocate_path("png").suffix == ".png"

    def test_release_is_idempotent(self, scratch):
        path = scratch.allocate_path(".jpg")
        path.write_bytes(b"x")

        assert scratch.release(path) is True
        assert not path.exists()
        assert scratch.release(path) is False
        assert scratch.release(None) is False

    def test_sweep_removes_only_expired_files(self, scratch):
        old = scratch.allocate_path(".jpg")
        fresh = scratch.allocate_path(".mp4")
        old.write_bytes(b"old")
        fresh.write_bytes(b"fresh")
        _age(old, 31 * 60)
        _age(fresh, 5 * 60)
        (scratch.directory / "subdir").mkdir()

        assert scratch.sweep(TTL_MS) == 1
        assert not old.exists()
        assert fresh.exists()
        assert (scratch.directory / "subdir").is_dir()

    def test_sweep_missing_directory(self, tmp_path):
        assert ScratchStorage(tmp_path / "absent").sweep(TTL_MS) == 0


class TestScratchSweeper:
    @pytest.mark.asyncio
    async def test_sweeps_immediately_on_start(self, scratch, tmp_path):
        debug = ScratchStorage(tmp_path / "debug")
        stale = scratch.allocate_path(".jpg")
        stale_dump = debug.allocate_path(".json")
        stale.write_bytes(b"x")
        stale_dump.write_text("{}")
        _age(stale, 3600)
        _age(stale_dump, 3600)

        sweeper = ScratchSweeper([scratch, debug], interval_seconds=3600, max_age_ms=TTL_MS)
        await sweeper.start()
        try:
            for _ in range(100):
                if not stale.exists() and not stale_dump.exists():
                    break
                await asyncio.sleep(0.01)
        finally:
            await sweeper.stop()

        assert not stale.exists()
        assert not stale_dump.exists()
        assert sweeper.running is False

    @pytest.mark.asyncio
    async def test_sweep_once_counts_all_directories(self, scratch, tmp_path):
        other = ScratchStorage(tmp_path / "other")
        for storage in (scratch, other):
            path = storage.allocate_path(".jpg")
            path.write_bytes(b"x")
            _age(path, 3600)

        sweeper = ScratchSweeper([scratch, other], interval_seconds=3600, max_age_ms=TTL_MS)
        assert await sweeper.sweep_once() == 2

    @pytest.mark.asyncio
    async def test_stop_without_start(self, scratch):
        sweeper = ScratchSweeper([scratch], interval_seconds=1, max_age_ms=TTL_MS)
        await sweeper.stop()
        assert sweeper.running is False
