"""Deterministic classification of runner output lines into control events."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

STATUS_TAG = "[STATUS]"
LOGIN_LINK_TAG = "[QRCODE]"
QR_SCAN_MARKER = "Scan QR code"
QR_BLOCK_CHARACTERS: tuple[str, ...] = ("█",)


class LineKind(str, Enum):
    """What a runner output line means to the executor."""

    LOGIN_CONSOLE = "login_console"
    LOGIN_LINK = "login_link"
    STATUS = "status"
    NOISE = "noise"


@dataclass(frozen=True, slots=True)
class LineEvent:
    """Classified output line; `payload` is the status text or the login link."""

    kind: LineKind
    payload: str = ""


def classify_line(line: str, *, qr_seen: bool) -> LineEvent | None:
    """Classify one runner line; None for blank lines.

    The console QR prompt is one-shot: once `qr_seen` is set, further QR art is noise.
    """

    stripped = line.strip()
    if not stripped:
        return None
    if not qr_seen and _looks_like_qr(stripped):
        return LineEvent(kind=LineKind.LOGIN_CONSOLE)
    if LOGIN_LINK_TAG in stripped:
        return LineEvent(
            kind=LineKind.LOGIN_LINK,
            payload=stripped.replace(LOGIN_LINK_TAG, "").strip(),
        )
    if STATUS_TAG in stripped:
        return LineEvent(kind=LineKind.STATUS, payload=strip_status_tag(stripped))
    return LineEvent(kind=LineKind.NOISE, payload=stripped)


def strip_status_tag(text: str) -> str:
    return text.replace(STATUS_TAG, "").strip()


def _looks_like_qr(line: str) -> bool:
    if QR_SCAN_MARKER in line:
        return True
    return any(char in line for char in QR_BLOCK_CHARACTERS)
