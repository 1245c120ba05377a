"""Compact progress rows and shared-display bookkeeping."""

from __future__ import annotations

import logging
import re
from typing import Protocol

from tdl_relay import texts
from tdl_relay.orchestrator.models import Controls, DisplayRef, QueuedItem
from tdl_relay.orchestrator.registry import TaskRegistry

logger = logging.getLogger(__name__)

MAX_EXCERPT_CHARS = 200
ROW_SEPARATOR = "\n\n"
_LEADING_SEPARATORS = " -–—:："
_LINK_MARKERS = ("http", "t.me")


class DisplaySurface(Protocol):
    """Message surface progress is rendered into.

    Implementations log their own failures and report them through the return value.
    """

    def send(
        self,
        chat_id: int,
        text: str,
        controls: Controls | None = None,
        reply_to: int | None = None,
    ) -> DisplayRef | None:
        """Post a new message; None when the surface rejected it."""

    def edit(self, ref: DisplayRef, text: str, controls: Controls | None = None) -> bool:
        """Replace the message body; `controls=None` removes any attached controls."""

    def delete(self, ref: DisplayRef) -> bool:
        """Remove the message."""


def progress_excerpt(task_id: int, text: str) -> str:
    """Pick the most informative single line out of a status text."""

    text = _strip_task_prefix(task_id, text)
    segments = [segment.strip() for segment in text.splitlines()]
    candidates = [segment for segment in segments if segment and not _looks_like_link(segment)]
    if candidates:
        excerpt = candidates[-1]
    else:
        excerpt = segments[0] if segments else ""
    if len(excerpt) > MAX_EXCERPT_CHARS:
        excerpt = excerpt[:MAX_EXCERPT_CHARS] + "..."
    return excerpt


def format_line(item: QueuedItem, text: str, *, with_ordinal: bool | None = None) -> str:
    """Render `[#id] target — excerpt`, numbered when the item is a batch row."""

    if with_ordinal is None:
        with_ordinal = item.shared
    line = f"[#{item.task_id}] {item.target} — {progress_excerpt(item.task_id, text)}"
    if with_ordinal:
        return f"{item.index + 1}. {line}"
    return line


def render(lines: list[str]) -> str:
    return ROW_SEPARATOR.join(lines)


def _strip_task_prefix(task_id: int, text: str) -> str:
    match = re.search(rf"task #{task_id}(?!\d)", text, flags=re.IGNORECASE)
    if match is None:
        return text
    return text[match.end() :].lstrip(_LEADING_SEPARATORS)


def _looks_like_link(segment: str) -> bool:
    lowered = segment.lower()
    return any(marker in lowered for marker in _LINK_MARKERS)


class DisplayAggregator:
    """Re-renders display units from the registry's cached rows."""

    def __init__(self, *, registry: TaskRegistry, surface: DisplaySurface) -> None:
        self.registry = registry
        self.surface = surface

    def update_row(self, item: QueuedItem, text: str) -> bool:
        """Push an intermediate status into the item's row, keeping controls attached."""

        display = item.display
        if display is None:
            return False
        line = format_line(item, text)
        lines, controls, updated = self.registry.update_line(display, item.index, line)
        if lines is None:
            return self.surface.edit(display, line)
        if not updated:
            logger.debug("Row %d of %s already resolved, dropping update", item.index, display)
            return False
        return self.surface.edit(display, render(lines), controls)

    def finish_row(self, item: QueuedItem, text: str) -> bool:
        """Render the terminal line of a row exactly once.

        Returns False when another caller already resolved the row.
        """

        display = item.display
        if display is None:
            return False
        if not self.registry.claim_row(display, item.index):
            logger.debug("Row %d of %s already resolved", item.index, display)
            return False
        line = format_line(item, text)
        lines, _, _ = self.registry.update_line(display, item.index, line, final=True)
        if lines is None:
            self.surface.edit(display, line)
            return True
        remaining = self.registry.decrement_pending(display)
        lines = self.registry.get_lines(display) or lines
        controls = self.registry.get_controls(display) if remaining > 0 else None
        self.surface.edit(display, render(lines), controls)
        return True

    def show_notice(self, item: QueuedItem, text: str) -> None:
        """Surface an out-of-band notice (login prompts) for a running item."""

        display = item.display
        if display is None:
            return
        if item.shared:
            self.surface.send(display.chat_id, text, reply_to=display.message_id)
            self.update_row(item, texts.login_row(item.task_id))
            return
        self.surface.edit(display, text, self.registry.get_controls(display))
