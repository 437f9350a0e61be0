# app/core/engine/__init__.py
"""
Core engine -- relay pipeline domain logic.

This package contains the domain models, the relay error taxonomy, the
messaging port, and the per-message use-case orchestrator (LinkRelayEngine).

Canonical imports:
    from app.core.engine.domain import MediaItem, ResolvedPost, InboundMessage
    from app.core.engine.errors import RelayError, MediaTooLarge
    from app.core.engine.use_cases import LinkRelayEngine
"""
from app.core.engine.domain import (  # noqa: F401
    MediaKind,
    MediaItem,
    ResolvedPost,
    DownloadedFile,
    DeliveryState,
    DeliveryReport,
    InboundMessage,
)
