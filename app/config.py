# app/config.py
from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.admin.errors import ForbiddenError, ValidationError
from app.infra.logging_config import set_log_level

# Telegram refuses albums larger than this
TELEGRAM_MAX_GROUP_SIZE = 10

# Admin log level names -> logging levels ("none" silences everything)
LOG_LEVELS: dict[str, int] = {
    "NONE": 60,
    "ERROR": 40,
    "WARN": 30,
    "INFO": 20,
    "DEBUG": 10,
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool = False
    http_host: str = "0.0.0.0"
    http_port: int = 8099

    # Telegram
    telegram_bot_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("telegram_bot_token", "bot_token"),
    )
    telegram_mode: Literal["polling", "webhook"] = "polling"
    telegram_webhook_url: str | None = None  # Public URL, e.g. https://bot.example.com/webhooks/telegram
    telegram_webhook_secret: str | None = None  # X-Telegram-Bot-Api-Secret-Token
    telegram_poll_timeout: int = 30

    # Admins: comma-separated numeric Telegram user ids
    admin_ids: str = ""

    # Instagram upstream
    instagram_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    )
    instagram_app_id: str = "936619743392459"
    instagram_doc_id: str = "8845758582119845"
    metadata_timeout_ms: int = 10_000

    # Media download
    max_file_size_mb: int = 50
    download_timeout_ms: int = 30_000

    # Delivery
    use_media_groups: bool = True
    inter_item_delay_ms: int = 1500
    max_group_size: int = TELEGRAM_MAX_GROUP_SIZE

    # Scratch storage
    scratch_dir: str = "./temp"
    scratch_ttl_ms: int = 30 * 60 * 1000  # 30 minutes
    scratch_sweep_interval_seconds: int = 15 * 60

    # Dev-only upstream response dumps
    debug_dump_enabled: bool = False
    debug_dir: str = "./debug"

    # Monitoring
    metrics_token: str | None = None

    @field_validator("max_group_size")
    @classmethod
    def group_size_within_platform_cap(cls, v: int) -> int:
        if not 2 <= v <= TELEGRAM_MAX_GROUP_SIZE:
            raise ValueError(
                f"max_group_size must be between 2 and {TELEGRAM_MAX_GROUP_SIZE}"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_known(cls, v: str) -> str:
        level = v.strip().upper()
        if level == "WARNING":
            level = "WARN"
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_development(self) -> bool:
        return self.app_env == "dev"

    @property
    def admin_id_set(self) -> frozenset[int]:
        """Parsed ADMIN_IDS; malformed entries are ignored."""
        ids: set[int] = set()
        for part in self.admin_ids.split(","):
            part = part.strip()
            if part.lstrip("-").isdigit():
                ids.add(int(part))
        return frozenset(ids)

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    def validate_required(self) -> list[str]:
        """Return the names of required settings that are missing."""
        missing = []
        if not self.telegram_bot_token:
            missing.append("TELEGRAM_BOT_TOKEN")
        if self.telegram_mode == "webhook" and not self.telegram_webhook_url:
            missing.append("TELEGRAM_WEBHOOK_URL")
        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if not s.admin_id_set:
        warnings.append("admin_ids is empty: admin commands are disabled.")

    if s.telegram_mode == "webhook" and not s.telegram_webhook_secret:
        warnings.append(
            "telegram_mode=webhook but telegram_webhook_secret is not set "
            "(anyone can post updates to the webhook)."
        )

    if s.is_production and s.debug_dump_enabled:
        warnings.append("prod: debug_dump_enabled=True is ignored outside dev.")

    if s.is_production and not s.metrics_token:
        warnings.append("prod: metrics_token is not set (/metrics is public).")

    if s.inter_item_delay_ms < 500:
        warnings.append(
            "inter_item_delay_ms < 500: individual sends may hit Telegram rate limits."
        )

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    Warn about risky settings. Required settings are checked at startup
    (see http_app lifespan), not at import time.
    """
    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


class RuntimeConfig:
    """
    Runtime-mutable options that admins can toggle from chat.

    Components hold a reference to this store and read it at the start of
    each operation. The only way to change a value is ``apply()``, which
    checks the actor against the admin allow-list.
    """

    def __init__(self, s: Settings):
        self._settings = s
        self._use_media_groups = s.use_media_groups
        self._log_level = s.log_level

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def use_media_groups(self) -> bool:
        return self._use_media_groups

    @property
    def log_level(self) -> str:
        return self._log_level

    @property
    def max_group_size(self) -> int:
        return min(self._settings.max_group_size, TELEGRAM_MAX_GROUP_SIZE)

    @property
    def inter_item_delay_seconds(self) -> float:
        return self._settings.inter_item_delay_ms / 1000

    def is_admin(self, user_id: int | None) -> bool:
        if user_id is None:
            return False
        return user_id in self._settings.admin_id_set

    def apply(
        self,
        actor_id: int | None,
        *,
        use_media_groups: bool | None = None,
        log_level: str | None = None,
    ) -> None:
        """
        Change runtime options on behalf of ``actor_id``.

        Raises:
            ForbiddenError: actor is not an administrator
            ValidationError: unknown log level
        """
        if not self.is_admin(actor_id):
            raise ForbiddenError("This command is only available to administrators.")

        if log_level is not None:
            level = log_level.strip().upper()
            if level not in LOG_LEVELS:
                raise ValidationError(f"Unknown log level: {log_level}")
            set_log_level(LOG_LEVELS[level])
            self._log_level = level

        if use_media_groups is not None:
            self._use_media_groups = use_media_groups


settings = Settings()
validate_or_warn(settings)
