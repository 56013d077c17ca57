"""
Channel handle parsing for registration.

Accepts whatever participants paste into the form (bare handles, @handles,
profile URLs) and reduces it to the identifier the content fetchers use:
  - TikTok:  handle            e.g. "https://www.tiktok.com/@moon.fan" → "moon.fan"
  - YouTube: channel id/handle e.g. "https://youtube.com/channel/UC123" → "UC123"
"""

import re
from typing import Optional

YOUTUBE_URL_PATTERNS = [
    re.compile(r"youtube\.com/channel/([a-zA-Z0-9_-]+)"),
    re.compile(r"youtube\.com/c/([a-zA-Z0-9_-]+)"),
    re.compile(r"youtube\.com/user/([a-zA-Z0-9_-]+)"),
    re.compile(r"youtube\.com/@([a-zA-Z0-9_.-]+)"),
]
TIKTOK_URL_PATTERN = re.compile(r"tiktok\.com/@?([a-zA-Z0-9_.]+)")
TIKTOK_HANDLE_PATTERN = re.compile(r"^[a-zA-Z0-9_.]+$")


def extract_youtube_channel_id(url_or_id: str) -> Optional[str]:
    value = (url_or_id or "").strip()
    if not value:
        return None

    # Bare channel id
    if "/" not in value and "?" not in value:
        return value.lstrip("@") or None

    for pattern in YOUTUBE_URL_PATTERNS:
        match = pattern.search(value)
        if match:
            return match.group(1)
    return None


def extract_tiktok_handle(url_or_handle: str) -> Optional[str]:
    value = (url_or_handle or "").strip()
    if not value:
        return None

    if "tiktok.com" in value:
        match = TIKTOK_URL_PATTERN.search(value)
        return match.group(1) if match else None

    handle = value.lstrip("@")
    if TIKTOK_HANDLE_PATTERN.match(handle):
        return handle
    return None


def tiktok_profile_url(handle: str) -> str:
    return f"https://www.tiktok.com/@{handle}"


def youtube_channel_url(channel_id: str) -> str:
    return f"https://www.youtube.com/channel/{channel_id}"
