# app/infra/scratch_storage.py
"""
Scratch storage for in-flight media downloads.

Files are created by the media fetcher and released by the delivery
coordinator as soon as the send that consumed them finishes. Anything left
behind (crash, cancelled task) is reclaimed by ``ScratchSweeper`` once it is
older than the configured TTL.
"""
from __future__ import annotations

import asyncio
import secrets
import time
from pathlib import Path

from app.infra.logging_config import get_logger
from app.infra.metrics import RelayMetrics

logger = get_logger(__name__)

FILE_PREFIX = "instagram_"


class ScratchStorage:
    """Owns one scratch directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def ensure_directory(self) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.directory

    def allocate_path(self, extension: str = ".jpg") -> Path:
        """
        Return a fresh file path inside the scratch directory.

        Names come from random bytes, never from upstream identifiers, so
        concurrent deliveries of the same post cannot collide.
        """
        if extension and not extension.startswith("."):
            extension = f".{extension}"
        self.ensure_directory()
        return self.directory / f"{FILE_PREFIX}{secrets.token_hex(8)}{extension}"

    def release(self, path: str | Path | None) -> bool:
        """
        Delete one file. Missing files are not an error.

        Returns:
            True if a file was deleted.
        """
        if path is None:
            return False
        try:
            Path(path).unlink()
            logger.debug(f"Scratch file released: {Path(path).name}")
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning(f"Could not delete scratch file {Path(path).name}: {exc}")
            return False

    def sweep(self, max_age_ms: int, *, now: float | None = None) -> int:
        """
        Delete regular files whose mtime is older than ``max_age_ms``.

        Per-file errors are logged and skipped.

        Returns:
            Number of files deleted.
        """
        if not self.directory.is_dir():
            return 0

        cutoff = (now if now is not None else time.time()) - max_age_ms / 1000
        deleted = 0

        try:
            entries = list(self.directory.iterdir())
        except OSError as exc:
            logger.error(f"Scratch sweep could not list {self.directory}: {exc}")
            return 0

        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                if entry.stat().st_mtime >= cutoff:
                    continue
                entry.unlink()
                deleted += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.debug(f"Scratch sweep skipped {entry.name}: {exc}")

        if deleted:
            logger.info(
                f"Scratch sweep removed {deleted} file(s) older than "
                f"{max_age_ms // 60000} min from {self.directory}"
            )
        return deleted


class ScratchSweeper:
    """
    Background TTL eviction for one or more scratch directories.

    Usage:
        sweeper = ScratchSweeper([storage], interval_seconds=900, max_age_ms=1_800_000)
        await sweeper.start()
        # ... on shutdown:
        await sweeper.stop()
    """

    def __init__(
        self,
        storages: list[ScratchStorage],
        interval_seconds: float,
        max_age_ms: int,
    ):
        self.storages = storages
        self.interval_seconds = interval_seconds
        self.max_age_ms = max_age_ms
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep loop as a background task."""
        if self._running:
            logger.warning("Scratch sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop(), name="scratch_sweeper")
        logger.info(
            f"Scratch sweeper started (interval={self.interval_seconds}s, "
            f"ttl={self.max_age_ms // 1000}s)"
        )

    async def stop(self) -> None:
        """Stop the sweep loop gracefully."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Scratch sweeper stopped")

    async def sweep_once(self) -> int:
        """Sweep every directory once, off the event loop."""
        total = 0
        for storage in self.storages:
            total += await asyncio.to_thread(storage.sweep, self.max_age_ms)
        if total:
            RelayMetrics.scratch_files_swept(total)
        return total

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error(f"Scratch sweep failed: {exc}", exc_info=True)

            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break
