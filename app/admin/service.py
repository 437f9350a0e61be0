# app/admin/service.py
"""
Chat command service: the single orchestration point for bot commands.

Responsibilities:
    1. Answer public commands (/start, /help)
    2. Gate admin commands on the ADMIN_IDS allow-list
    3. Apply runtime toggles through ``RuntimeConfig.apply`` (never directly)
    4. Render /stats from the in-process metrics

The transport layer stays a thin adapter:
    adapt update → call service → send the returned reply (if any).
"""
from __future__ import annotations

import resource
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone

from app.admin.errors import AdminError, ForbiddenError
from app.config import RuntimeConfig
from app.core.engine.domain import InboundMessage
from app.core.texts import get_text
from app.infra.logging_config import get_logger
from app.infra.metrics import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)

LOG_LEVEL_COMMANDS = {
    "/loglevel_none": "NONE",
    "/loglevel_error": "ERROR",
    "/loglevel_warn": "WARN",
    "/loglevel_info": "INFO",
    "/loglevel_debug": "DEBUG",
}


@dataclass
class RelayActivity:
    """Request counters shown by /stats. Owned by the relay engine."""
    active: int = 0
    processed: int = 0
    last_used: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def started(self) -> None:
        self.active += 1
        self.last_used = datetime.now(timezone.utc)

    def finished(self) -> None:
        self.active = max(0, self.active - 1)
        self.processed += 1


def _rss_megabytes() -> int:
    """Peak resident set size of this process in MiB."""
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, KiB elsewhere
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(usage / divisor)


def _format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


class CommandService:
    """
    Handles bot commands.

    ``handle(message)`` returns the reply text, or None when the command is
    unknown and the bot should stay silent.
    """

    def __init__(
        self,
        runtime_config: RuntimeConfig,
        activity: RelayActivity | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.runtime_config = runtime_config
        self.activity = activity or RelayActivity()
        self.metrics = metrics or get_metrics_collector()

    @property
    def commands(self) -> dict:
        return {
            "/start": (self._start, False),
            "/help": (self._help, False),
            "/stats": (self._stats, True),
            "/loglevel": (self._loglevel_menu, True),
            "/mediagroups": (self._mediagroups_menu, True),
            "/mediagroups_on": (self._mediagroups_on, True),
            "/mediagroups_off": (self._mediagroups_off, True),
            **{cmd: (self._set_loglevel, True) for cmd in LOG_LEVEL_COMMANDS},
        }

    async def handle(self, message: InboundMessage) -> str | None:
        entry = self.commands.get((message.command or "").lower())
        if entry is None:
            logger.debug(f"Ignoring unknown command {message.command}")
            return None

        handler, admin_only = entry
        try:
            if admin_only and not self.runtime_config.is_admin(message.user_id):
                raise ForbiddenError(get_text("admin_only"))
            return handler(message)
        except AdminError as e:
            logger.info(f"Command {message.command} rejected for user {message.user_id}: {e.detail}")
            return e.detail

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def _start(self, message: InboundMessage) -> str:
        return get_text("start")

    def _help(self, message: InboundMessage) -> str:
        return get_text("help")

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def _stats(self, message: InboundMessage) -> str:
        return get_text(
            "stats",
            active=self.activity.active,
            processed=self.activity.processed,
            last_used=self.activity.last_used.isoformat(),
            uptime=_format_uptime(self.metrics.uptime_seconds),
            memory_mb=_rss_megabytes(),
            environment=self.runtime_config.settings.app_env,
            log_level=self.runtime_config.log_level,
            media_groups=self._groups_state(),
        )

    def _loglevel_menu(self, message: InboundMessage) -> str:
        return get_text("loglevel_menu", level=self.runtime_config.log_level)

    def _set_loglevel(self, message: InboundMessage) -> str:
        level = LOG_LEVEL_COMMANDS[message.command.lower()]
        self.runtime_config.apply(message.user_id, log_level=level)
        logger.warning(f"Log level changed to {level} by admin {message.user_id}")
        return get_text("loglevel_set", level=level)

    def _mediagroups_menu(self, message: InboundMessage) -> str:
        return get_text("mediagroups_menu", state=self._groups_state())

    def _mediagroups_on(self, message: InboundMessage) -> str:
        self.runtime_config.apply(message.user_id, use_media_groups=True)
        logger.info(f"Media groups enabled by admin {message.user_id}")
        return get_text("mediagroups_on")

    def _mediagroups_off(self, message: InboundMessage) -> str:
        self.runtime_config.apply(message.user_id, use_media_groups=False)
        logger.info(f"Media groups disabled by admin {message.user_id}")
        return get_text("mediagroups_off")

    def _groups_state(self) -> str:
        return "Enabled" if self.runtime_config.use_media_groups else "Disabled"
