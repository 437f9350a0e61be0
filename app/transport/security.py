# app/transport/security.py
"""
Security helpers for the HTTP surface.

Only two endpoints exist besides /health: the Telegram webhook (secret
header, see telegram_webhook.py) and /metrics (bearer token, below).
"""
from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings
from app.infra.logging_config import get_logger

logger = get_logger(__name__)

metrics_bearer_scheme = HTTPBearer(auto_error=False)


def require_metrics_auth(
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
) -> None:
    """
    Dependency for the metrics endpoint.

    If METRICS_TOKEN is set, a matching Bearer token is required. Without a
    token the endpoint is open (``validate_or_warn`` flags this in prod).

    Usage:
        @app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
        def metrics():
            ...

    Client example:
        curl -H "Authorization: Bearer your-metrics-token" http://host/metrics
    """
    if not settings.metrics_token:
        return

    if not credentials:
        logger.warning("Metrics endpoint accessed without token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(credentials.credentials, settings.metrics_token):
        logger.warning("Invalid metrics token attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
