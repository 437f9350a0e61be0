# app/transport/http_app.py
"""
HTTP application and process lifecycle.

Endpoints:
1. Public: GET /health
2. Validated: POST /webhooks/telegram (secret header; webhook mode only)
3. Protected: GET /metrics (METRICS_TOKEN bearer, if configured)

The lifespan hook wires every component, starts the scratch sweeper and
either the long-polling loop or the Telegram webhook, and tears everything
down in reverse order on shutdown.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from app.admin.service import CommandService, RelayActivity
from app.config import RuntimeConfig, Settings, settings
from app.core.delivery.coordinator import DeliveryCoordinator
from app.core.engine.use_cases import LinkRelayEngine
from app.core.instagram.resolver import PostResolver
from app.infra.http_client import close_all_sessions
from app.infra.instagram_api import InstagramApiClient
from app.infra.logging_config import get_logger, setup_logging
from app.infra.media_fetchers.http_fetcher import HttpMediaFetcher
from app.infra.metrics import get_metrics_collector
from app.infra.scratch_storage import ScratchStorage, ScratchSweeper
from app.transport.middleware import ErrorHandlingMiddleware, RequestIDMiddleware
from app.transport.security import require_metrics_auth
from app.transport.telegram_polling import TelegramPoller
from app.transport.telegram_sender import TelegramBotClient, TelegramSendError
from app.transport.telegram_webhook import telegram_webhook_handler

logger = get_logger(__name__)


# ============================================================================
# WIRING
# ============================================================================

@dataclass
class RelayComponents:
    client: TelegramBotClient
    engine: LinkRelayEngine
    runtime_config: RuntimeConfig
    storage: ScratchStorage
    sweeper: ScratchSweeper


def build_components(s: Settings) -> RelayComponents:
    """Construct the relay object graph from settings. No I/O."""
    runtime_config = RuntimeConfig(s)
    client = TelegramBotClient(s.telegram_bot_token or "")
    storage = ScratchStorage(s.scratch_dir)

    api = InstagramApiClient.from_settings(s)
    fetcher = HttpMediaFetcher.from_settings(storage, s)
    coordinator = DeliveryCoordinator(client, fetcher, storage, runtime_config)

    activity = RelayActivity()
    engine = LinkRelayEngine(
        client=client,
        resolver=PostResolver(api),
        coordinator=coordinator,
        commands=CommandService(runtime_config, activity),
        activity=activity,
    )

    swept = [storage]
    if api.debug_dir is not None:
        swept.append(ScratchStorage(api.debug_dir))
    sweeper = ScratchSweeper(
        swept,
        interval_seconds=s.scratch_sweep_interval_seconds,
        max_age_ms=s.scratch_ttl_ms,
    )

    return RelayComponents(
        client=client,
        engine=engine,
        runtime_config=runtime_config,
        storage=storage,
        sweeper=sweeper,
    )


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    setup_logging(level=settings.log_level, use_json=settings.log_json or settings.is_production)
    logger.info(f"Starting application: env={settings.app_env}, mode={settings.telegram_mode}")

    missing = settings.validate_required()
    if missing:
        logger.critical(f"Missing required settings: {missing}")
        raise RuntimeError(f"Missing required config: {missing}")

    components = build_components(settings)
    components.storage.ensure_directory()
    fastapi_app.state.engine = components.engine
    fastapi_app.state.runtime_config = components.runtime_config

    try:
        me = await components.client.get_me()
        logger.info(f"Bot @{me.get('username', '?')} authenticated")
    except TelegramSendError as e:
        logger.critical(f"Telegram bot token rejected: {e}")
        await close_all_sessions()
        raise RuntimeError("Telegram bot token rejected") from e

    await components.sweeper.start()

    poller: TelegramPoller | None = None
    if settings.telegram_mode == "polling":
        poller = TelegramPoller(
            client=components.client,
            engine=components.engine,
            poll_timeout=settings.telegram_poll_timeout,
        )
        await poller.start()
    else:
        await components.client.set_webhook(
            settings.telegram_webhook_url,
            secret_token=settings.telegram_webhook_secret,
            max_connections=1,
        )
        logger.info(f"Telegram webhook set: {settings.telegram_webhook_url}")

    logger.info(
        f"Relay settings: media_groups={components.runtime_config.use_media_groups}, "
        f"max_group_size={components.runtime_config.max_group_size}, "
        f"max_file_size={settings.max_file_size_mb}MB"
    )
    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")

    if poller is not None:
        await poller.stop()

    await components.sweeper.stop()
    await close_all_sessions()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Instagram Relay Bot",
    description="Relays Instagram posts, reels and carousels into Telegram chats",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestIDMiddleware)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """
    Basic health check - PUBLIC endpoint.
    Returns minimal information.
    """
    return {"status": "healthy"}


@app.post("/webhooks/telegram")
async def webhook_telegram(request: Request):
    """
    Telegram webhook endpoint - PUBLIC but VALIDATED.
    Only routed to when TELEGRAM_MODE=webhook; in polling mode updates
    never arrive here.
    """
    if settings.telegram_mode != "webhook":
        raise HTTPException(status_code=404, detail="Not found")
    return await telegram_webhook_handler(request)


@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics():
    """
    Metrics endpoint.
    Access: METRICS_TOKEN bearer when configured.
    """
    return get_metrics_collector().get_metrics()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.transport.http_app:app",
        host=settings.http_host,
        port=settings.http_port,
        log_level="info" if settings.log_level == "NONE" else settings.log_level.replace("WARN", "warning").lower(),
        access_log=False,
        server_header=False,
        date_header=False,
    )
