from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import allure
import pytest

from tdl_relay import texts
from tdl_relay.bot.handlers import BotHandlers
from tdl_relay.bot.updates import CallbackQueryEvent, IncomingMessage
from tdl_relay.config import QueueSettings, RunnerSettings, Settings, TelegramSettings
from tdl_relay.http.subscription import SubscriptionClient, SubscriptionResult
from tdl_relay.http.telegram import TelegramClient
from tdl_relay.orchestrator.display import DisplayAggregator
from tdl_relay.orchestrator.models import Controls, DisplayRef, Task
from tdl_relay.orchestrator.registry import TaskRegistry

pytestmark = [
    allure.epic("Bot Front-End"),
    allure.feature("Submission & Cancellation"),
]

CHAT_ID = 500
USER_ID = 7


def _message(text: str, *, user_id: int = USER_ID, message_id: int = 40) -> IncomingMessage:
    return IncomingMessage(
        update_id=1,
        chat_id=CHAT_ID,
        message_id=message_id,
        user_id=user_id,
        username="alice",
        first_name="Alice",
        text=text,
    )


def _press(data: str, display: DisplayRef | None = None, *, user_id: int = USER_ID):
    return CallbackQueryEvent(
        update_id=2,
        callback_id="cb-1",
        user_id=user_id,
        data=data,
        chat_id=display.chat_id if display else None,
        message_id=display.message_id if display else None,
    )


class _Scheduler:
    def __init__(self) -> None:
        self.calls: list[tuple[float, object]] = []

    def __call__(self, delay, action) -> None:
        self.calls.append((delay, action))


@pytest.fixture()
def client() -> MagicMock:
    return MagicMock(spec=TelegramClient)


@pytest.fixture()
def scheduler() -> _Scheduler:
    return _Scheduler()


@pytest.fixture()
def make_handlers(registry, aggregator, surface, client, scheduler):
    def _factory(*, settings: Settings | None = None, subscriptions=None, **overrides):
        return BotHandlers(
            settings=settings or Settings(),
            registry=overrides.get("registry", registry),
            aggregator=overrides.get("aggregator", aggregator),
            surface=surface,
            client=client,
            subscriptions=subscriptions,
            scheduler=scheduler,
        )

    return _factory


def test_batch_submission_renders_one_numbered_display(make_handlers, surface, registry) -> None:
    handlers = make_handlers()

    handlers.handle_message(
        _message("https://t.me/c/1 https://t.me/c/2\nt.me/c/3"),
    )

    assert len(surface.sent) == 1
    chat_id, text, controls, reply_to = surface.sent[0]
    assert chat_id == CHAT_ID
    assert reply_to == 40
    assert text == (
        "1. [#1] https://t.me/c/1 — ⚡ About to start\n\n"
        "2. [#2] https://t.me/c/2 — 📋 Queue position: 2\n\n"
        "3. [#3] https://t.me/c/3 — 📋 Queue position: 3"
    )
    assert controls == Controls.single(texts.CANCEL_ALL_LABEL, "cancel_summary_7")
    display = DisplayRef(chat_id=CHAT_ID, message_id=101)
    assert registry.pending_count(display) == 3
    assert registry.queue_size() == 3
    assert [registry.next_item(timeout=1).task_id for _ in range(3)] == [1, 2, 3]


def test_duplicate_links_collapse_to_a_standalone_display(make_handlers, surface) -> None:
    handlers = make_handlers()

    items = handlers.submit_links(_message("x"), ["https://t.me/c/1"])

    assert len(items) == 1
    assert not items[0].shared
    _, text, controls, _ = surface.sent[0]
    assert text == "[#1] https://t.me/c/1 — ⚡ About to start"
    assert controls == Controls.single(texts.CANCEL_TASK_LABEL, "cancel_7_1")

    handlers.handle_message(_message("https://t.me/c/9 and again https://t.me/c/9/"))

    _, text, controls, _ = surface.sent[1]
    assert text == "[#2] https://t.me/c/9 — 📋 Queue position: 2"
    assert controls == Controls.single(texts.CANCEL_TASK_LABEL, "cancel_7_2")


def test_full_queue_rejects_the_overflowing_row(make_handlers, surface) -> None:
    settings = Settings(queue=QueueSettings(capacity=1, enqueue_timeout_seconds=0))
    registry = TaskRegistry(queue_capacity=1)
    handlers = make_handlers(
        settings=settings,
        registry=registry,
        aggregator=DisplayAggregator(registry=registry, surface=surface),
    )

    handlers.handle_message(_message("https://t.me/c/1 https://t.me/c/2"))

    display = DisplayRef(chat_id=CHAT_ID, message_id=101)
    assert registry.queue_size() == 1
    assert surface.last_text(display).endswith(
        "2. [#2] https://t.me/c/2 — rejected: queue is full, try again later",
    )
    assert surface.last_controls(display) is not None
    assert registry.pending_count(display) == 1


def test_submission_after_shutdown_is_dropped(make_handlers, surface, registry) -> None:
    registry.close_queue()

    make_handlers().handle_message(_message("https://t.me/c/1"))

    display = DisplayRef(chat_id=CHAT_ID, message_id=101)
    assert surface.last_text(display) == "[#1] https://t.me/c/1 — dropped: bot is shutting down"
    assert surface.last_controls(display) is None


def test_batch_cancel_stops_running_and_queued_rows(
    make_handlers, surface, registry, client, make_handle
) -> None:
    handlers = make_handlers()
    handlers.handle_message(_message("https://t.me/c/1 https://t.me/c/2 https://t.me/c/3"))
    display = DisplayRef(chat_id=CHAT_ID, message_id=101)
    running = registry.next_item(timeout=1)
    handle = make_handle(hang=True)
    registry.register_task(Task(task_id=running.task_id, user_id=USER_ID, display=display))
    registry.attach_process(USER_ID, running.task_id, handle, handle.pgid)

    handlers.handle_callback(_press("cancel_summary_7", display))

    assert handle.kill_calls
    assert running.cancelled
    assert registry.queue_size() == 2
    assert registry.count_user_tasks(USER_ID) == 0
    assert registry.pending_count(display) == 0
    assert surface.last_controls(display) is None
    assert surface.last_text(display) == (
        "1. [#1] https://t.me/c/1 — cancelled with the batch\n\n"
        "2. [#2] https://t.me/c/2 — cancelled with the batch\n\n"
        "3. [#3] https://t.me/c/3 — cancelled with the batch"
    )
    client.answer_callback_query.assert_called_once_with(
        "cb-1",
        text=texts.CALLBACK_BATCH_CANCELLED,
        show_alert=False,
    )


def test_cancelling_a_queued_item_resolves_its_row(make_handlers, surface, client) -> None:
    handlers = make_handlers()
    handlers.handle_message(_message("https://t.me/c/1"))
    display = DisplayRef(chat_id=CHAT_ID, message_id=101)

    handlers.handle_callback(_press("cancel_7_1", display))

    assert surface.last_text(display) == "[#1] https://t.me/c/1 — removed from queue"
    assert surface.last_controls(display) is None
    client.answer_callback_query.assert_called_once_with(
        "cb-1",
        text=texts.CALLBACK_TASK_CANCELLED,
        show_alert=False,
    )


def test_cancelling_a_running_task_kills_it(make_handlers, registry, client, make_handle) -> None:
    handle = make_handle(hang=True)
    registry.register_task(Task(task_id=4, user_id=USER_ID))
    registry.attach_process(USER_ID, 4, handle, handle.pgid)

    make_handlers().handle_callback(_press("cancel_7_4"))

    assert handle.kill_calls == [(4242, 0.0)]
    assert not registry.is_active(USER_ID, 4)
    client.answer_callback_query.assert_called_once_with(
        "cb-1",
        text=texts.CALLBACK_TASK_CANCELLED,
        show_alert=False,
    )


@pytest.mark.parametrize(
    ("data", "answer"),
    [
        ("cancel_8_1", texts.CALLBACK_FOREIGN_TASK),
        ("cancel_summary_8", texts.CALLBACK_FOREIGN_BATCH),
        ("cancel_x", texts.CALLBACK_INVALID),
        ("cancel_7_99", texts.CALLBACK_NOT_FOUND),
    ],
)
def test_rejected_cancel_requests_answer_with_an_alert(
    make_handlers, registry, client, make_handle, data, answer
) -> None:
    handle = make_handle(hang=True)
    registry.register_task(Task(task_id=1, user_id=8))
    registry.attach_process(8, 1, handle, handle.pgid)

    make_handlers().handle_callback(_press(data))

    client.answer_callback_query.assert_called_once_with("cb-1", text=answer, show_alert=True)
    assert registry.is_active(8, 1)
    assert handle.kill_calls == []


def test_unrelated_button_data_is_ignored(make_handlers, client) -> None:
    make_handlers().handle_callback(_press("noop"))

    client.answer_callback_query.assert_not_called()


def test_users_outside_allow_list_are_refused(make_handlers, surface, registry, client) -> None:
    settings = Settings(telegram=TelegramSettings(allowed_users=frozenset({1})))
    handlers = make_handlers(settings=settings)

    handlers.handle_message(_message("https://t.me/c/1"))
    handlers.handle_callback(_press("cancel_7_1"))

    assert [text for _, text, _, _ in surface.sent] == [texts.NOT_ALLOWED]
    assert registry.queue_size() == 0
    client.answer_callback_query.assert_called_once_with(
        "cb-1",
        text=texts.NOT_ALLOWED,
        show_alert=True,
    )


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("/start", texts.welcome("Alice")),
        ("/help@RelayBot", texts.HELP),
        ("/shrug", texts.UNKNOWN_COMMAND),
    ],
)
def test_commands_reply_with_fixed_texts(make_handlers, surface, text, expected) -> None:
    make_handlers().handle_message(_message(text))

    assert surface.sent == [(CHAT_ID, expected, None, 40)]


def test_status_reports_queue_and_script(make_handlers, surface, registry, tmp_path: Path) -> None:
    script = tmp_path / "tdl.sh"
    script.write_text("#!/bin/bash\n")
    settings = Settings(runner=RunnerSettings(script_path=script))
    registry.set_current(Task(task_id=3, user_id=9))
    handlers = make_handlers(settings=settings)
    handlers.handle_message(_message("https://t.me/c/1"))

    handlers.handle_message(_message("/status"))

    status = surface.sent[-1][1]
    assert f"{script} (✅ found)" in status
    assert "👤 Your user id: 7" in status
    assert "📋 Waiting: 1 task(s)" in status
    assert "task #3 (user 9)" in status


def test_subscription_link_is_forwarded_to_the_api(make_handlers, surface) -> None:
    subscriptions = MagicMock(spec=SubscriptionClient)
    subscriptions.add.return_value = SubscriptionResult(ok=True, message="✅ Subscription added")

    make_handlers(subscriptions=subscriptions).handle_message(
        _message("please add https://sub.example.com/s?token=1"),
    )

    subscriptions.add.assert_called_once_with("https://sub.example.com/s?token=1")
    assert surface.sent[0][1] == texts.ADDING_SUBSCRIPTION
    assert surface.last_text(DisplayRef(chat_id=CHAT_ID, message_id=101)) == (
        "✅ Subscription added"
    )


def test_subscription_without_api_is_reported(make_handlers, surface) -> None:
    make_handlers().handle_message(_message("https://sub.example.com/s"))

    assert surface.sent[0][1] == texts.SUBSCRIPTION_NOT_CONFIGURED


def test_unsupported_message_is_cleaned_up_later(make_handlers, surface, scheduler) -> None:
    make_handlers().handle_message(_message("hello there", message_id=41))

    assert surface.sent[0][1] == texts.INVALID_MESSAGE
    assert surface.deleted == []
    ((delay, cleanup),) = scheduler.calls
    assert delay == 5.0

    cleanup()

    assert surface.deleted == [
        DisplayRef(chat_id=CHAT_ID, message_id=101),
        DisplayRef(chat_id=CHAT_ID, message_id=41),
    ]
