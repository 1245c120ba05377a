from __future__ import annotations

import time
from unittest.mock import MagicMock

import allure
import pytest

from tdl_relay import texts
from tdl_relay.bot import service as service_module
from tdl_relay.bot.service import RelayService
from tdl_relay.config import Settings, TelegramSettings
from tdl_relay.http.telegram import TelegramApiError, TelegramClient

pytestmark = [
    allure.epic("Bot Front-End"),
    allure.feature("Relay Service"),
]


def _text_update(update_id: int, text: str, *, message_id: int = 40) -> dict:
    return {
        "update_id": update_id,
        "message": {
            "message_id": message_id,
            "from": {"id": 7, "username": "alice", "first_name": "Alice"},
            "chat": {"id": 500},
            "text": text,
        },
    }


@pytest.fixture()
def client() -> MagicMock:
    client = MagicMock(spec=TelegramClient)
    client.get_me.return_value = {"username": "relay_bot"}
    client.send_message.return_value = {"message_id": 77}
    return client


@pytest.fixture()
def settings() -> Settings:
    return Settings(telegram=TelegramSettings(bot_token="123:abc", handler_threads=2))


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition not reached in time"
        time.sleep(0.01)


def test_poll_once_dispatches_updates_and_advances_offset(client, settings, make_runner) -> None:
    service = RelayService(settings=settings, client=client, runner=make_runner())
    client.get_updates.return_value = [
        _text_update(10, "/help"),
        {"update_id": 11, "edited_message": {"text": "ignored"}},
    ]

    assert service.poll_once() == 2
    client.get_updates.return_value = []
    service.poll_once()

    client.send_message.assert_called_once_with(
        500,
        texts.HELP,
        reply_markup=None,
        reply_to_message_id=40,
    )
    assert client.get_updates.call_args_list[-1].kwargs == {"offset": 12, "timeout": 30}
    assert service.summary().updates == 1


def test_stop_cancels_everything_still_queued(client, settings, make_runner) -> None:
    runner = make_runner()
    service = RelayService(settings=settings, client=client, runner=runner)
    client.get_updates.return_value = [_text_update(1, "https://t.me/c/1 https://t.me/c/2")]
    service.poll_once()

    service.stop()

    assert service.summary().cancelled_on_stop == 2
    assert service.registry.closed
    assert runner.started == []


def test_submitted_link_runs_to_completion(client, settings, make_runner, make_handle) -> None:
    runner = make_runner([make_handle(["[STATUS] forwarded 3 messages"])])
    service = RelayService(settings=settings, client=client, runner=runner)
    service.start()
    client.get_updates.return_value = [_text_update(1, "https://t.me/c/1")]
    try:
        service.poll_once()
        _wait_for(lambda: service.worker.summary.processed == 1)
    finally:
        service.stop()

    assert runner.started == [("https://t.me/c/1", "7_1")]
    assert service.worker.summary.succeeded == 1
    assert not service.worker.running
    final_edit = client.edit_message_text.call_args_list[-1]
    assert final_edit.args == (500, 77, "[#1] https://t.me/c/1 — forwarded 3 messages")
    assert final_edit.kwargs == {"reply_markup": None}


def test_run_forever_stops_on_request(client, settings, make_runner) -> None:
    service = RelayService(settings=settings, client=client, runner=make_runner())

    def _poll(**_: object) -> list:
        service.request_stop(signal_name="SIGTERM")
        return []

    client.get_updates.side_effect = _poll

    summary = service.run_forever()

    assert summary.updates == 0
    assert service.registry.closed
    assert not service.worker.running


def test_run_forever_survives_polling_errors(client, settings, make_runner, monkeypatch) -> None:
    monkeypatch.setattr(service_module, "POLL_ERROR_BACKOFF_SECONDS", 0.01)
    service = RelayService(settings=settings, client=client, runner=make_runner())
    calls: list[int] = []

    def _poll(**_: object) -> list:
        calls.append(1)
        if len(calls) == 1:
            raise TelegramApiError("getUpdates", "Bad Gateway", error_code=502)
        service.request_stop()
        return []

    client.get_updates.side_effect = _poll

    service.run_forever()

    assert len(calls) == 2
