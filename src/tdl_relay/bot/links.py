"""Link extraction from inbound message text."""

from __future__ import annotations

import re

TELEGRAM_LINK_RE = re.compile(r"(?:https?://)?t\.me/\S+", re.IGNORECASE)
HTTP_LINK_RE = re.compile(r"https?://\S+")


def extract_telegram_links(text: str) -> list[str]:
    """Return distinct `t.me` links in order of appearance, normalized to `https://`.

    Duplicates are detected case-insensitively and ignoring a trailing slash.
    """

    links: list[str] = []
    seen: set[str] = set()
    for raw in TELEGRAM_LINK_RE.findall(text):
        link = normalize_link(raw)
        key = link.lower().rstrip("/")
        if key in seen:
            continue
        seen.add(key)
        links.append(link)
    return links


def normalize_link(raw: str) -> str:
    link = raw.strip()
    if not link.lower().startswith("http"):
        link = f"https://{link}"
    return link


def find_subscription_link(text: str) -> str | None:
    """First http(s) link in the text unless it points at Telegram."""

    match = HTTP_LINK_RE.search(text)
    if match is None or "t.me" in match.group(0):
        return None
    return match.group(0)
