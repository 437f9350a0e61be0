"""
Media fetchers.

``HttpMediaFetcher`` (``app.infra.media_fetchers.http_fetcher``) streams
Instagram CDN URLs into scratch storage. It is imported from its module
directly: the relay error taxonomy depends on ``base``, and the fetcher
depends on the taxonomy.
"""
from app.infra.media_fetchers.base import (
    MediaFetchError,
    MediaFetcher,
)

__all__ = [
    "MediaFetchError",
    "MediaFetcher",
]
