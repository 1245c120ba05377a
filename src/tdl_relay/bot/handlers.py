"""Message and button handlers: the submission and cancellation entry points."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from tdl_relay import texts
from tdl_relay.bot.callbacks import (
    CANCEL_TASK_PREFIX,
    cancel_batch_payload,
    cancel_task_payload,
    parse_cancel_payload,
)
from tdl_relay.bot.links import extract_telegram_links, find_subscription_link
from tdl_relay.bot.updates import CallbackQueryEvent, IncomingMessage, Update
from tdl_relay.config import Settings
from tdl_relay.http.subscription import SubscriptionClient
from tdl_relay.http.telegram import TelegramApiError, TelegramClient
from tdl_relay.orchestrator.display import DisplayAggregator, DisplaySurface, format_line, render
from tdl_relay.orchestrator.models import Controls, DisplayRef, QueuedItem
from tdl_relay.orchestrator.registry import QueueClosedError, QueueFullError, TaskRegistry

logger = logging.getLogger(__name__)

WARNING_TTL_SECONDS = 5.0

Scheduler = Callable[[float, Callable[[], None]], None]


def schedule_in_background(delay_seconds: float, action: Callable[[], None]) -> None:
    timer = threading.Timer(delay_seconds, action)
    timer.daemon = True
    timer.start()


class BotHandlers:
    """Routes parsed updates to commands, submissions, subscriptions and cancellations."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        registry: TaskRegistry,
        aggregator: DisplayAggregator,
        surface: DisplaySurface,
        client: TelegramClient,
        subscriptions: SubscriptionClient | None = None,
        warning_ttl_seconds: float = WARNING_TTL_SECONDS,
        scheduler: Scheduler = schedule_in_background,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.aggregator = aggregator
        self.surface = surface
        self.client = client
        self.subscriptions = subscriptions
        self.warning_ttl_seconds = warning_ttl_seconds
        self.scheduler = scheduler

    def dispatch(self, update: Update) -> None:
        if isinstance(update, IncomingMessage):
            self.handle_message(update)
        elif isinstance(update, CallbackQueryEvent):
            self.handle_callback(update)

    # -- messages ---------------------------------------------------------------

    def handle_message(self, message: IncomingMessage) -> None:
        if not self.settings.telegram.is_allowed(message.user_id):
            logger.warning(
                "Unauthorized user %d (%s) tried to use the bot",
                message.user_id,
                message.username,
            )
            self._reply(message, texts.NOT_ALLOWED)
            return

        command = message.command
        if command is not None:
            self.handle_command(message, command)
            return

        logger.info("Message from user %d: %.100s", message.user_id, message.text)
        links = extract_telegram_links(message.text)
        if links:
            self.submit_links(message, links)
            return
        subscription_link = find_subscription_link(message.text)
        if subscription_link is not None:
            self.add_subscription(message, subscription_link)
            return
        self.reject_message(message)

    def handle_command(self, message: IncomingMessage, command: str) -> None:
        if command == "start":
            self._reply(message, texts.welcome(message.first_name))
        elif command == "help":
            self._reply(message, texts.HELP)
        elif command == "status":
            self._reply(message, self.status_text(message.user_id))
        else:
            self._reply(message, texts.UNKNOWN_COMMAND)

    def status_text(self, user_id: int) -> str:
        current = self.registry.get_current()
        script_path = self.settings.runner.script_path
        return texts.status_report(
            script_path=str(script_path),
            script_exists=script_path.is_file(),
            subscription_host=self.settings.subscription.api_host,
            user_id=user_id,
            queue_size=self.registry.queue_size(),
            current_task_id=current.task_id if current is not None else None,
            current_user_id=current.user_id if current is not None else None,
        )

    def submit_links(self, message: IncomingMessage, links: list[str]) -> list[QueuedItem]:
        """Queue one item per link behind a single display message."""

        logger.info("Detected %d Telegram link(s) from user %d", len(links), message.user_id)
        shared = len(links) > 1
        base_position = self.registry.queue_size()
        items = [
            QueuedItem(
                target=link,
                user_id=message.user_id,
                task_id=self.registry.next_id(message.user_id),
                index=index,
                shared=shared,
            )
            for index, link in enumerate(links)
        ]
        lines = [
            format_line(item, texts.queued(item.task_id, item.target, base_position + index + 1))
            for index, item in enumerate(items)
        ]
        if shared:
            controls = Controls.single(
                texts.CANCEL_ALL_LABEL,
                cancel_batch_payload(message.user_id),
            )
        else:
            controls = Controls.single(
                texts.CANCEL_TASK_LABEL,
                cancel_task_payload(message.user_id, items[0].task_id),
            )

        display = self.surface.send(
            message.chat_id,
            render(lines),
            controls,
            reply_to=message.message_id,
        )
        if display is None:
            logger.warning(
                "Dropping %d submission(s): status message could not be sent",
                len(items),
            )
            return []
        self.registry.init_display(display, lines, controls)

        for item in items:
            item.display = display
            try:
                self.registry.enqueue_item(
                    item,
                    timeout=self.settings.queue.enqueue_timeout_seconds,
                )
            except QueueFullError:
                self.aggregator.finish_row(item, texts.queue_full(item.task_id))
            except QueueClosedError:
                self.aggregator.finish_row(item, texts.shutting_down(item.task_id))
        return items

    def add_subscription(self, message: IncomingMessage, link: str) -> None:
        logger.info("Detected subscription link from user %d: %s", message.user_id, link)
        if self.subscriptions is None:
            self._reply(message, texts.SUBSCRIPTION_NOT_CONFIGURED)
            return
        display = self._reply(message, texts.ADDING_SUBSCRIPTION)
        if display is None:
            return
        result = self.subscriptions.add(link)
        self.surface.edit(display, result.message)

    def reject_message(self, message: IncomingMessage) -> None:
        """Warn about an unsupported message, then clean both up after a short delay."""

        logger.info("User %d sent an unsupported message", message.user_id)
        warning = self._reply(message, texts.INVALID_MESSAGE)
        if warning is None:
            return
        original = DisplayRef(chat_id=message.chat_id, message_id=message.message_id)

        def _cleanup() -> None:
            self.surface.delete(warning)
            self.surface.delete(original)

        self.scheduler(self.warning_ttl_seconds, _cleanup)

    # -- buttons ----------------------------------------------------------------

    def handle_callback(self, event: CallbackQueryEvent) -> None:
        if not event.data.startswith(CANCEL_TASK_PREFIX):
            return
        if not self.settings.telegram.is_allowed(event.user_id):
            self._answer(event, texts.NOT_ALLOWED, alert=True)
            return
        request = parse_cancel_payload(event.data)
        if request is None:
            self._answer(event, texts.CALLBACK_INVALID, alert=True)
            return

        if request.task_id is None:
            if request.user_id != event.user_id:
                self._answer(event, texts.CALLBACK_FOREIGN_BATCH, alert=True)
                return
            if event.chat_id is not None and event.message_id is not None:
                display = DisplayRef(chat_id=event.chat_id, message_id=event.message_id)
                self.cancel_batch(request.user_id, display)
            self._answer(event, texts.CALLBACK_BATCH_CANCELLED)
            return

        if request.user_id != event.user_id:
            self._answer(event, texts.CALLBACK_FOREIGN_TASK, alert=True)
            return
        if self.cancel_item(request.user_id, request.task_id):
            self._answer(event, texts.CALLBACK_TASK_CANCELLED)
        else:
            self._answer(event, texts.CALLBACK_NOT_FOUND, alert=True)

    def cancel_batch(self, user_id: int, display: DisplayRef) -> int:
        """Cancel every unresolved row of one batch display; returns how many were hit."""

        count = 0
        for item in self.registry.queued_items_for_display(user_id, display):
            if self.registry.cancel_queued_item(user_id, item.task_id):
                count += 1
            self.aggregator.finish_row(item, texts.cancelled_from_batch(item.task_id))
        for task in self.registry.active_tasks_for_display(user_id, display):
            if self.registry.cancel_task(user_id, task.task_id):
                count += 1
        logger.info("User %d cancelled %d task(s) of batch %s", user_id, count, display)
        return count

    def cancel_item(self, user_id: int, task_id: int) -> bool:
        running = self.registry.is_active(user_id, task_id)
        item = self.registry.get_queued_item(user_id, task_id)
        if item is not None and self.registry.cancel_queued_item(user_id, task_id):
            logger.info("User %d cancelled queued task #%d", user_id, task_id)
            if running:
                text = texts.terminated_by_user(task_id)
            else:
                text = texts.cancelled_from_queue(task_id)
            self.aggregator.finish_row(item, text)
            return True
        if self.registry.cancel_task(user_id, task_id):
            logger.info("User %d terminated running task #%d", user_id, task_id)
            return True
        return False

    # -- helpers ----------------------------------------------------------------

    def _reply(self, message: IncomingMessage, text: str) -> DisplayRef | None:
        return self.surface.send(message.chat_id, text, reply_to=message.message_id)

    def _answer(self, event: CallbackQueryEvent, text: str = "", *, alert: bool = False) -> None:
        try:
            self.client.answer_callback_query(event.callback_id, text=text, show_alert=alert)
        except TelegramApiError as error:
            logger.warning("Failed to answer callback %s: %s", event.callback_id, error)
