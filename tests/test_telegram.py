import queue

import pytest
import requests

from dryer_control.chat.telegram import (
    INLINE_KEYBOARD,
    TelegramApi,
    TelegramError,
    TelegramReceiver,
    TelegramSender,
    parse_update,
)
from dryer_control.models import OutgoingMessage, RequestKind


class FakeResponse:
    def __init__(self, body, status=200):
        self.body = body
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.body


class FakeSession:
    def __init__(self, responses=None):
        self.calls = []
        self.responses = list(responses or [])

    def post(self, url, json=None, timeout=None):
        self.calls.append((url, json))
        if self.responses:
            return self.responses.pop(0)
        return FakeResponse({"ok": True, "result": []})


def message_update(update_id, user_id, chat_id, message_id=1):
    return {
        "update_id": update_id,
        "message": {"message_id": message_id, "from": {"id": user_id}, "chat": {"id": chat_id}, "text": "oi"},
    }


def callback_update(update_id, user_id, chat_id, data):
    return {
        "update_id": update_id,
        "callback_query": {
            "id": "cb",
            "from": {"id": user_id},
            "data": data,
            "message": {"message_id": 5, "chat": {"id": chat_id}},
        },
    }


def test_parse_message_is_status():
    request = parse_update(message_update(1, 42, 100, message_id=9))
    assert request.kind is RequestKind.STATUS
    assert (request.user_id, request.chat_ref, request.message_ref) == (42, 100, 9)


def test_parse_buttons():
    assert parse_update(callback_update(1, 42, 100, "Turn On")).kind is RequestKind.TURN_ON
    assert parse_update(callback_update(1, 42, 100, "Update")).kind is RequestKind.UPDATE
    assert parse_update(callback_update(1, 42, 100, "Other")) is None
    assert parse_update({"update_id": 3, "edited_message": {}}) is None


def test_send_message_payload():
    session = FakeSession()
    api = TelegramApi("TOKEN", session=session)
    api.send_message(OutgoingMessage(chat_ref=100, text="olá", reply_to=9, offer_buttons=True))
    url, payload = session.calls[0]
    assert url.endswith("/botTOKEN/sendMessage")
    assert payload["chat_id"] == 100
    assert payload["reply_to_message_id"] == 9
    assert payload["reply_markup"] == INLINE_KEYBOARD


def test_api_error():
    api = TelegramApi("TOKEN", session=FakeSession([FakeResponse({"ok": False, "description": "bad"})]))
    with pytest.raises(TelegramError, match="bad"):
        api.send_message(OutgoingMessage(chat_ref=1, text="x"))


def test_http_error():
    api = TelegramApi("TOKEN", session=FakeSession([FakeResponse({}, status=502)]))
    with pytest.raises(TelegramError):
        api.get_updates(None)


def test_receiver_advances_offset_and_queues():
    updates = [message_update(10, 1, 1), callback_update(11, 2, 2, "Turn On")]
    session = FakeSession([FakeResponse({"ok": True, "result": updates})])
    requests_queue = queue.Queue(maxsize=50)
    receiver = TelegramReceiver(TelegramApi("TOKEN", session=session), requests_queue)
    assert receiver.poll_once() == 2
    assert receiver.next_offset == 12
    assert requests_queue.get_nowait().kind is RequestKind.STATUS
    assert requests_queue.get_nowait().kind is RequestKind.TURN_ON

    receiver.poll_once()
    assert session.calls[-1][1]["offset"] == 12


def test_receiver_drops_when_queue_full():
    updates = [message_update(i, i, i) for i in range(3)]
    session = FakeSession([FakeResponse({"ok": True, "result": updates})])
    requests_queue = queue.Queue(maxsize=1)
    receiver = TelegramReceiver(TelegramApi("TOKEN", session=session), requests_queue)
    assert receiver.poll_once() == 1


def test_skip_pending_updates():
    session = FakeSession([FakeResponse({"ok": True, "result": [message_update(30, 1, 1)]})])
    receiver = TelegramReceiver(TelegramApi("TOKEN", session=session), queue.Queue())
    receiver.skip_pending_updates()
    assert receiver.next_offset == 31
    assert session.calls[0][1]["offset"] == -1
    assert session.calls[1][1]["offset"] == 31


def test_sender_survives_send_errors():
    session = FakeSession([FakeResponse({"ok": False, "description": "blocked"})])
    outbox = queue.Queue()
    outbox.put(OutgoingMessage(chat_ref=1, text="a"))
    sender = TelegramSender(TelegramApi("TOKEN", session=session), outbox)
    assert sender.send_pending(wait_s=0.0)
    assert not sender.send_pending(wait_s=0.0)
