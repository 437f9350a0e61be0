# app/infra/instagram_api.py
"""
Instagram post metadata via the public web GraphQL endpoint.

Provides ``InstagramApiClient.fetch_post_metadata(shortcode)`` which returns
the raw ``xdt_shortcode_media`` object. The endpoint is undocumented: it
expects the browser header set below and the web app id, and it answers 200
with ``{"data": {"xdt_shortcode_media": null}}`` for private or deleted posts.

In development, every response can be dumped to ``debug_dir`` (a simplified
view and the full body). Dumps share the scratch TTL and are evicted by the
scratch sweeper.
"""
from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path

import aiohttp

from app.infra.http_client import get_upstream_session
from app.infra.logging_config import get_logger

logger = get_logger(__name__)

GRAPHQL_URL = "https://www.instagram.com/graphql/query/"


class InstagramApiError(Exception):
    """Metadata call failed (transport, HTTP status or malformed body)."""

    def __init__(self, message: str, status: int = 0):
        self.status = status
        super().__init__(message)


def build_query_params(shortcode: str, doc_id: str) -> dict[str, str]:
    variables = {
        "shortcode": shortcode,
        "fetch_tagged_user_count": None,
        "hoisted_comment_id": None,
        "hoisted_reply_id": None,
    }
    return {
        "doc_id": doc_id,
        "variables": json.dumps(variables, separators=(",", ":")),
    }


def simplify_payload(media: dict) -> dict:
    """Reduced view of a media payload for debug dumps."""
    edges = (media.get("edge_sidecar_to_children") or {}).get("edges") or []
    return {
        "mediaType": media.get("__typename"),
        "shortcode": media.get("shortcode"),
        "isVideo": media.get("is_video"),
        "displayUrl": media.get("display_url"),
        "videoUrl": media.get("video_url"),
        "dimensions": media.get("dimensions"),
        "carousel": [
            {
                "type": (edge.get("node") or {}).get("__typename"),
                "isVideo": (edge.get("node") or {}).get("is_video"),
                "displayUrl": (edge.get("node") or {}).get("display_url"),
                "videoUrl": (edge.get("node") or {}).get("video_url"),
                "dimensions": (edge.get("node") or {}).get("dimensions"),
            }
            for edge in edges
            if isinstance(edge, dict)
        ] or None,
    }


class InstagramApiClient:
    """
    Client for the single metadata call the relay needs.

    Args:
        user_agent: Browser User-Agent sent with every request
        app_id: Value of the ``X-IG-App-ID`` header
        doc_id: GraphQL persisted query id
        timeout_ms: Per-call timeout
        debug_dir: Directory for response dumps, or None to disable
        session: Injected session (tests); defaults to the shared upstream session
    """

    def __init__(
        self,
        *,
        user_agent: str,
        app_id: str,
        doc_id: str,
        timeout_ms: int = 10_000,
        debug_dir: str | Path | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.user_agent = user_agent
        self.app_id = app_id
        self.doc_id = doc_id
        self.timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)
        self.debug_dir = Path(debug_dir) if debug_dir else None
        self._session = session

    @classmethod
    def from_settings(cls, s) -> "InstagramApiClient":
        dump_dir = s.debug_dir if (s.is_development and s.debug_dump_enabled) else None
        return cls(
            user_agent=s.instagram_user_agent,
            app_id=s.instagram_app_id,
            doc_id=s.instagram_doc_id,
            timeout_ms=s.metadata_timeout_ms,
            debug_dir=dump_dir,
        )

    @property
    def session(self) -> aiohttp.ClientSession:
        return self._session or get_upstream_session()

    @property
    def headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": "*/*",
            "Accept-Language": "en-US,en;q=0.9",
            "X-IG-App-ID": self.app_id,
            "X-Requested-With": "XMLHttpRequest",
            "Referer": "https://www.instagram.com/",
            "Sec-Fetch-Dest": "empty",
            "Sec-Fetch-Mode": "cors",
            "Sec-Fetch-Site": "same-origin",
        }

    async def fetch_post_metadata(self, shortcode: str) -> dict | None:
        """
        Fetch the media object for ``shortcode``.

        Returns:
            ``data.xdt_shortcode_media`` or None when the upstream has no
            media object for the shortcode.

        Raises:
            InstagramApiError: transport error, non-200 status, invalid JSON
        """
        params = build_query_params(shortcode, self.doc_id)
        logger.debug(f"Requesting metadata for {shortcode}")

        try:
            async with self.session.get(
                GRAPHQL_URL,
                params=params,
                headers=self.headers,
                timeout=self.timeout,
            ) as resp:
                if resp.status != 200:
                    raise InstagramApiError(
                        f"Instagram API returned HTTP {resp.status}", status=resp.status
                    )
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise InstagramApiError(f"Instagram API request failed: {e}") from e
        except ValueError as e:
            raise InstagramApiError(f"Instagram API returned invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise InstagramApiError("Instagram API returned an unexpected body")

        if self.debug_dir is not None:
            self._dump(shortcode, body)

        media = (body.get("data") or {}).get("xdt_shortcode_media")
        if not media:
            logger.warning(f"No media object in Instagram response for {shortcode}")
            return None

        logger.debug(f"Fetched metadata for {shortcode} ({media.get('__typename', '?')})")
        return media

    def _dump(self, shortcode: str, body: dict) -> None:
        """Write simplified and full response dumps. Failures are only logged."""
        media = (body.get("data") or {}).get("xdt_shortcode_media")
        stamp = int(time.time() * 1000)
        try:
            self.debug_dir.mkdir(parents=True, exist_ok=True)
            if isinstance(media, dict):
                simple_path = self.debug_dir / f"instagram_{shortcode}_{stamp}_simple.json"
                simple_path.write_text(json.dumps(simplify_payload(media), indent=2))
            full_path = self.debug_dir / f"instagram_{shortcode}_{stamp}_full.json"
            full_path.write_text(json.dumps(body, indent=2))
            logger.debug(f"Saved debug dump for {shortcode} to {self.debug_dir}")
        except OSError as e:
            logger.error(f"Failed to save debug dump for {shortcode}: {e}")
