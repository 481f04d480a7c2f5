"""
telegram.py

Chat collaborator built on the Telegram Bot HTTP API.

TelegramReceiver long-polls getUpdates in a background thread and offers
parsed UserRequests to the bounded request queue without blocking.
TelegramSender drains the outbox in another background thread. Replies can
carry two inline buttons whose callback tokens map back to request kinds.
Only one receiver may poll a bot token at a time.
"""

import logging
import queue
import threading
from typing import Any, Dict, List, Optional

import requests

from dryer_control.control_loop import offer
from dryer_control.errors import DryerControlError
from dryer_control.models import OutgoingMessage, RequestKind, UserRequest

API_BASE = "https://api.telegram.org"

TURN_ON_TOKEN = "Turn On"
UPDATE_TOKEN = "Update"

CALLBACK_KINDS = {
    TURN_ON_TOKEN: RequestKind.TURN_ON,
    UPDATE_TOKEN: RequestKind.UPDATE,
}

INLINE_KEYBOARD = {
    "inline_keyboard": [[
        {"text": "Ligar", "callback_data": TURN_ON_TOKEN},
        {"text": "Atualizar", "callback_data": UPDATE_TOKEN},
    ]]
}

logger = logging.getLogger(__name__)


class TelegramError(DryerControlError):
    """A Bot API call failed."""


def parse_update(update: Dict[str, Any]) -> Optional[UserRequest]:
    """
    Converts one getUpdates entry into a UserRequest.

    Plain messages become status requests; button presses become the request
    named by their callback token. Anything else is ignored.
    """
    message = update.get("message")
    if message is not None:
        sender = message.get("from")
        if sender is None:
            logger.warning(f"Message update with no sender: {update!r}")
            return None
        return UserRequest(
            user_id=sender["id"],
            chat_ref=message["chat"]["id"],
            kind=RequestKind.STATUS,
            message_ref=message.get("message_id"),
        )

    callback = update.get("callback_query")
    if callback is None:
        return None
    kind = CALLBACK_KINDS.get(callback.get("data"))
    callback_message = callback.get("message")
    if kind is None or callback_message is None:
        return None
    return UserRequest(
        user_id=callback["from"]["id"],
        chat_ref=callback_message["chat"]["id"],
        kind=kind,
        message_ref=callback_message.get("message_id"),
    )


class TelegramApi:
    """
    Minimal Bot API client.
    """

    def __init__(self, token: str, session: Optional[requests.Session] = None,
                 base_url: str = API_BASE, request_timeout: float = 15.0):
        self.token = token
        self.session = session or requests.Session()
        self.base_url = base_url
        self.request_timeout = request_timeout

    def _call(self, method: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        url = f"{self.base_url}/bot{self.token}/{method}"
        try:
            resp = self.session.post(url, json=payload, timeout=timeout or self.request_timeout)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise TelegramError(f"{method} failed: {e}") from e
        if not body.get("ok"):
            raise TelegramError(f"{method} rejected: {body.get('description')}")
        return body.get("result")

    def get_updates(self, offset: Optional[int], poll_timeout: int = 10) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {
            "timeout": poll_timeout,
            "allowed_updates": ["message", "callback_query"],
        }
        if offset is not None:
            payload["offset"] = offset
        return self._call("getUpdates", payload, timeout=poll_timeout + self.request_timeout) or []

    def send_message(self, message: OutgoingMessage) -> None:
        payload: Dict[str, Any] = {"chat_id": message.chat_ref, "text": message.text}
        if message.reply_to is not None:
            payload["reply_to_message_id"] = message.reply_to
            payload["allow_sending_without_reply"] = True
        if message.offer_buttons:
            payload["reply_markup"] = INLINE_KEYBOARD
        self._call("sendMessage", payload)


class TelegramReceiver:
    """
    Background poller feeding the request queue.
    """

    def __init__(self, api: TelegramApi, requests_queue: queue.Queue,
                 poll_timeout: int = 10, error_backoff_s: float = 10.0,
                 logger: Optional[logging.Logger] = None):
        self.api = api
        self.requests_queue = requests_queue
        self.poll_timeout = poll_timeout
        self.error_backoff_s = error_backoff_s
        self.logger = logger or logging.getLogger(__name__)
        self.next_offset: Optional[int] = None
        self.thread: Optional[threading.Thread] = None

    def skip_pending_updates(self) -> None:
        """Discards updates received while the program was not running."""
        updates = self.api.get_updates(offset=-1, poll_timeout=0)
        if updates:
            self.next_offset = max(u["update_id"] for u in updates) + 1
            self.api.get_updates(offset=self.next_offset, poll_timeout=0)

    def poll_once(self) -> int:
        """
        Fetches one batch of updates and queues the parsed requests.

        Returns:
            The number of requests queued.
        """
        updates = self.api.get_updates(self.next_offset, self.poll_timeout)
        if not updates:
            return 0
        self.next_offset = max(u["update_id"] for u in updates) + 1
        queued = 0
        for update in updates:
            request = parse_update(update)
            if request is not None and offer(self.requests_queue, request, "user request"):
                queued += 1
        return queued

    def start(self, stop_event: threading.Event) -> threading.Thread:
        self.thread = threading.Thread(
            target=self._run, args=(stop_event,), name="TelegramUpdateReceiver", daemon=True
        )
        self.thread.start()
        return self.thread

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.poll_once()
            except TelegramError as e:
                self.logger.error(f"Error polling updates, sleeping {self.error_backoff_s}s: {e}")
                stop_event.wait(self.error_backoff_s)


class TelegramSender:
    """
    Background sender draining the outbox.
    """

    def __init__(self, api: TelegramApi, outbox: queue.Queue, logger: Optional[logging.Logger] = None):
        self.api = api
        self.outbox = outbox
        self.logger = logger or logging.getLogger(__name__)
        self.thread: Optional[threading.Thread] = None

    def send_pending(self, wait_s: float = 1.0) -> bool:
        """
        Sends at most one queued message.

        Returns:
            True if a message was taken from the outbox.
        """
        try:
            message = self.outbox.get(timeout=wait_s)
        except queue.Empty:
            return False
        try:
            self.api.send_message(message)
        except TelegramError as e:
            self.logger.error(f"Failed to send message to chat {message.chat_ref}: {e}")
        return True

    def start(self, stop_event: threading.Event) -> threading.Thread:
        self.thread = threading.Thread(
            target=self._run, args=(stop_event,), name="TelegramMessageSender", daemon=True
        )
        self.thread.start()
        return self.thread

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.send_pending()
        # Flush what the control loop queued while shutting down.
        while self.send_pending(wait_s=0.0):
            pass
