"""
console.py

Terminal stand-in for the chat transport, used with --simulate.

Each input line is "<user_id> <status|on|update>"; replies are printed.
"""

import logging
import queue
import sys
import threading
from typing import Optional, TextIO

from dryer_control.control_loop import offer
from dryer_control.models import OutgoingMessage, RequestKind, UserRequest

COMMANDS = {
    "status": RequestKind.STATUS,
    "on": RequestKind.TURN_ON,
    "update": RequestKind.UPDATE,
}

logger = logging.getLogger(__name__)


def parse_line(line: str) -> Optional[UserRequest]:
    parts = line.split()
    if len(parts) != 2 or parts[1].lower() not in COMMANDS:
        return None
    try:
        user_id = int(parts[0])
    except ValueError:
        return None
    return UserRequest(user_id=user_id, chat_ref=user_id, kind=COMMANDS[parts[1].lower()])


class ConsoleReceiver:
    def __init__(self, requests_queue: queue.Queue, stream: TextIO = sys.stdin):
        self.requests_queue = requests_queue
        self.stream = stream

    def start(self, stop_event: threading.Event) -> threading.Thread:
        thread = threading.Thread(target=self._run, args=(stop_event,), name="ConsoleReceiver", daemon=True)
        thread.start()
        return thread

    def _run(self, stop_event: threading.Event) -> None:
        for line in self.stream:
            if stop_event.is_set():
                return
            request = parse_line(line)
            if request is None:
                print("usage: <user_id> <status|on|update>")
                continue
            offer(self.requests_queue, request, "console request")


class ConsoleSender:
    def __init__(self, outbox: queue.Queue, stream: TextIO = sys.stdout):
        self.outbox = outbox
        self.stream = stream

    def start(self, stop_event: threading.Event) -> threading.Thread:
        thread = threading.Thread(target=self._run, args=(stop_event,), name="ConsoleSender", daemon=True)
        thread.start()
        return thread

    def write(self, message: OutgoingMessage) -> None:
        self.stream.write(f"[chat {message.chat_ref}] {message.text}\n")
        self.stream.flush()

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set() or not self.outbox.empty():
            try:
                message = self.outbox.get(timeout=0.5)
            except queue.Empty:
                continue
            self.write(message)
