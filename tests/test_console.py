import io
import queue

from dryer_control.chat.console import ConsoleSender, parse_line
from dryer_control.models import OutgoingMessage, RequestKind


def test_parse_line():
    request = parse_line("1 on")
    assert request.user_id == request.chat_ref == 1
    assert request.kind is RequestKind.TURN_ON
    assert parse_line("2 STATUS").kind is RequestKind.STATUS
    assert parse_line("x on") is None
    assert parse_line("1 dance") is None
    assert parse_line("") is None


def test_sender_writes_messages():
    stream = io.StringIO()
    ConsoleSender(queue.Queue(), stream=stream).write(OutgoingMessage(chat_ref=3, text="Ligada"))
    assert stream.getvalue() == "[chat 3] Ligada\n"
