# app/core/instagram/links.py
"""
Instagram link classifier.

Pure functions over message text. A supported link is
``instagram.com/p/<code>``, ``/reel/<code>`` or ``/tv/<code>`` anywhere in the
text, in any letter case. The shortcode ends at the next ``/``, ``?`` or
whitespace.
"""
from __future__ import annotations

import re

INSTAGRAM_URL_RE = re.compile(
    r"(?:https?://)?(?:www\.)?instagram\.com/(p|reel|tv)/([^/?\s]+)",
    re.IGNORECASE,
)


def is_supported_url(text: str | None) -> bool:
    if not text:
        return False
    return INSTAGRAM_URL_RE.search(text) is not None


def extract_shortcode(text: str | None) -> str | None:
    """
    Return the shortcode of the first supported link in ``text``.

    >>> extract_shortcode("https://www.instagram.com/reel/Cx1Y2Z3/?igsh=abc")
    'Cx1Y2Z3'
    """
    if not text:
        return None
    match = INSTAGRAM_URL_RE.search(text)
    return match.group(2) if match else None


def find_instagram_url(text: str | None) -> str | None:
    """Matched link text, for logging."""
    if not text:
        return None
    match = INSTAGRAM_URL_RE.search(text)
    return match.group(0) if match else None
