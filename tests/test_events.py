import logging

import pytest

from async_whatsapp_queue.events import EventHub
from async_whatsapp_queue.models import QueueStats


def test_callbacks_receive_arguments_in_registration_order():
    hub = EventHub()
    calls = []
    hub.on_failed(lambda msg, err: calls.append(("first", msg, err)))
    hub.on_failed(lambda msg, err: calls.append(("second", msg, err)))

    hub.emit_failed("message", "Max attempts (3) exceeded: boom")

    assert calls == [
        ("first", "message", "Max attempts (3) exceeded: boom"),
        ("second", "message", "Max attempts (3) exceeded: boom"),
    ]


def test_raising_subscriber_is_isolated_and_logged(caplog):
    hub = EventHub(logging.getLogger("test.events"))
    received = []

    def broken(stats):
        raise RuntimeError("ui crashed")

    hub.on_stats_changed(broken)
    hub.on_stats_changed(received.append)

    with caplog.at_level(logging.ERROR, logger="test.events"):
        hub.emit_stats(QueueStats(pending=1, total=1))

    assert received == [QueueStats(pending=1, total=1)]
    assert "stats event" in caplog.text
    assert "ui crashed" in caplog.text


def test_unsubscribe_is_idempotent():
    hub = EventHub()
    received = []
    unsubscribe = hub.on_sent(received.append)
    hub.emit_sent("one")
    unsubscribe()
    unsubscribe()
    hub.emit_sent("two")
    assert received == ["one"]


def test_subscriber_may_unsubscribe_during_notification():
    hub = EventHub()
    received = []
    unsubscribe = None

    def once(message):
        received.append(message)
        unsubscribe()

    unsubscribe = hub.on_sent(once)
    hub.on_sent(received.append)
    hub.emit_sent("a")
    hub.emit_sent("b")
    assert received == ["a", "a", "b"]


def test_non_callable_rejected():
    with pytest.raises(TypeError):
        EventHub().on_sent("not a function")
