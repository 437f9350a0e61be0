# app/core/texts.py
"""
User-facing texts.

Provides ``get_text(key, **params)``. Unknown keys return the key itself so a
missing text is visible in chat rather than crashing a handler.
"""
from __future__ import annotations

TEXTS: dict[str, str] = {
    # commands
    "start": (
        "Welcome to Instagram Reels Downloader Bot! 🎬\n\n"
        "Send me an Instagram link to a reel, video, or carousel post, "
        "and I will download it for you.\n\n"
        "Just paste the link and I'll do the rest!"
    ),
    "help": (
        "How to use this bot:\n\n"
        "1. Copy an Instagram link (post, reel, video, or carousel)\n"
        "2. Paste it here\n"
        "3. Wait for the download to complete\n\n"
        "If you have any issues, contact the administrator."
    ),
    "admin_only": "This command is only available to administrators.",

    # relay progress
    "processing": "Processing your Instagram link...",
    "fetching": "Fetching media from Instagram...",

    # admin
    "stats": (
        "Bot Statistics:\n\n"
        "Active Requests: {active}\n"
        "Total Processed: {processed}\n"
        "Last Used: {last_used}\n"
        "Uptime: {uptime}\n"
        "Memory: {memory_mb} MB\n"
        "Environment: {environment}\n"
        "Log Level: {log_level}\n"
        "Media Groups: {media_groups}"
    ),
    "loglevel_menu": (
        "Current log level: {level}\n\n"
        "Available commands:\n"
        "/loglevel_none - Disable all logging\n"
        "/loglevel_error - Show only errors\n"
        "/loglevel_warn - Show warnings and errors\n"
        "/loglevel_info - Show info, warnings, and errors\n"
        "/loglevel_debug - Show all logs including debug"
    ),
    "loglevel_set": "Log level set to: {level}",
    "mediagroups_menu": (
        "Media Groups: {state}\n\n"
        "Available commands:\n"
        "/mediagroups_on - Enable media groups\n"
        "/mediagroups_off - Disable media groups"
    ),
    "mediagroups_on": "Media groups enabled. Multiple images/videos will be sent as albums.",
    "mediagroups_off": "Media groups disabled. Images/videos will be sent individually.",
}


def get_text(key: str, **params) -> str:
    text = TEXTS.get(key)
    if text is None:
        return key
    return text.format(**params) if params else text


def error_text(message: str) -> str:
    """Prefix used for failures shown in the progress message."""
    return f"❌ {message}"
