# app/core/instagram/resolver.py
"""
Post resolver: shortcode -> ResolvedPost.

The upstream media object comes in three shapes. ``classify_payload`` picks
exactly one, in precedence order:

1. Carousel: non-empty ``edge_sidecar_to_children.edges``
2. Video: ``__typename`` GraphVideo / XDTGraphVideo, or ``is_video``
3. Image: anything else

Each shape is then flattened into ordered ``MediaItem``s. Missing sources
produce fewer items, never guessed ones.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Union

from app.core.engine.domain import MediaItem, MediaKind, ResolvedPost
from app.core.engine.errors import UpstreamUnavailable
from app.core.engine.ports import PostMetadataSource
from app.infra.logging_config import get_logger

logger = get_logger(__name__)

VIDEO_TYPENAMES = frozenset({"GraphVideo", "XDTGraphVideo"})


class UnrecognizedPostShape(Exception):
    """Payload is not a media object at all."""


# ============================================================================
# POST SHAPES
# ============================================================================

@dataclass(frozen=True)
class CarouselPost:
    children: tuple[Mapping[str, Any], ...]


@dataclass(frozen=True)
class VideoPost:
    payload: Mapping[str, Any]


@dataclass(frozen=True)
class ImagePost:
    payload: Mapping[str, Any]


PostShape = Union[CarouselPost, VideoPost, ImagePost]


def classify_payload(payload: Any) -> PostShape:
    if not isinstance(payload, Mapping):
        raise UnrecognizedPostShape(f"expected a mapping, got {type(payload).__name__}")

    sidecar = payload.get("edge_sidecar_to_children")
    edges = sidecar.get("edges") if isinstance(sidecar, Mapping) else None
    if isinstance(edges, list):
        children = tuple(
            edge["node"]
            for edge in edges
            if isinstance(edge, Mapping) and isinstance(edge.get("node"), Mapping)
        )
        return CarouselPost(children=children)

    if payload.get("__typename") in VIDEO_TYPENAMES or payload.get("is_video"):
        return VideoPost(payload=payload)

    return ImagePost(payload=payload)


# ============================================================================
# EXTRACTION
# ============================================================================

def _dimensions(source: Mapping[str, Any]) -> tuple[int, int]:
    dims = source.get("dimensions")
    if not isinstance(dims, Mapping):
        return 0, 0
    return int(dims.get("width") or 0), int(dims.get("height") or 0)


def _first_entry(source: Mapping[str, Any], *path: str) -> Mapping[str, Any] | None:
    """``source[path...][0]`` when that is a mapping with a url."""
    node: Any = source
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    if isinstance(node, list) and node and isinstance(node[0], Mapping) and node[0].get("url"):
        return node[0]
    return None


def _carousel_items(children: tuple[Mapping[str, Any], ...]) -> list[MediaItem]:
    items: list[MediaItem] = []
    for index, child in enumerate(children):
        width, height = _dimensions(child)
        if child.get("is_video") and child.get("video_url"):
            items.append(MediaItem(MediaKind.VIDEO, child["video_url"], width, height))
        elif child.get("display_url"):
            items.append(MediaItem(MediaKind.IMAGE, child["display_url"], width, height))
        else:
            logger.debug(f"Carousel child {index} has no media source, skipped")
    return items


def _video_items(payload: Mapping[str, Any]) -> list[MediaItem]:
    if payload.get("video_url"):
        width, height = _dimensions(payload)
        return [MediaItem(MediaKind.VIDEO, payload["video_url"], width, height)]

    version = _first_entry(payload, "video_versions")
    if version:
        return [MediaItem(
            MediaKind.VIDEO,
            version["url"],
            int(version.get("width") or 0),
            int(version.get("height") or 0),
        )]

    logger.error("Could not find a video URL in media data")
    return []


def _image_items(payload: Mapping[str, Any]) -> list[MediaItem]:
    if payload.get("display_url"):
        width, height = _dimensions(payload)
        return [MediaItem(MediaKind.IMAGE, payload["display_url"], width, height)]

    candidate = _first_entry(payload, "image_versions2", "candidates")
    if candidate:
        return [MediaItem(
            MediaKind.IMAGE,
            candidate["url"],
            int(candidate.get("width") or 0),
            int(candidate.get("height") or 0),
        )]

    logger.error("Could not find an image URL in media data")
    return []


def extract_media_items(shape: PostShape) -> list[MediaItem]:
    match shape:
        case CarouselPost(children=children):
            return _carousel_items(children)
        case VideoPost(payload=payload):
            return _video_items(payload)
        case ImagePost(payload=payload):
            return _image_items(payload)


def extract_caption(payload: Mapping[str, Any]) -> str:
    edges = (payload.get("edge_media_to_caption") or {}).get("edges")
    if isinstance(edges, list) and edges:
        text = ((edges[0] or {}).get("node") or {}).get("text")
        if text:
            return text

    caption = payload.get("caption")
    if isinstance(caption, Mapping) and caption.get("text"):
        return caption["text"]

    return ""


# ============================================================================
# RESOLVER
# ============================================================================

class PostResolver:
    """Turns a shortcode into a normalized post using a metadata source."""

    def __init__(self, api: PostMetadataSource):
        self.api = api

    async def resolve(self, shortcode: str) -> ResolvedPost:
        """
        Raises:
            UpstreamUnavailable: metadata call failed or returned no media
        """
        try:
            payload = await self.api.fetch_post_metadata(shortcode)
        except Exception as e:
            logger.error(f"Metadata fetch failed for {shortcode}: {e}")
            raise UpstreamUnavailable(str(e)) from e

        if payload is None:
            raise UpstreamUnavailable(f"No media payload for {shortcode}")

        try:
            shape = classify_payload(payload)
        except UnrecognizedPostShape as e:
            logger.error(f"Unrecognized payload for {shortcode}: {e}")
            return ResolvedPost(shortcode=shortcode)

        items = extract_media_items(shape)
        logger.debug(
            f"Resolved {shortcode} as {type(shape).__name__} with {len(items)} item(s)"
        )

        return ResolvedPost(
            shortcode=shortcode,
            media_items=tuple(items),
            caption=extract_caption(payload),
            post_id=str(payload.get("id") or ""),
        )
