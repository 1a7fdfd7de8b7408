"""Tests for routing daemon signals to notification handlers"""

import gc
import threading
import time

import pytest

from notifybus import ActionEvent, CloseEvent, CloseReason, EventCorrelator, Notification, NotificationClient
from notifybus.bus import NOTIFICATION_INTERFACE


def test_action_reaches_only_its_handler(client, daemon):
    build = client.send(Notification("Build failed", body="3 errors", urgency=2, timeout=5000))
    other = client.send(Notification("Something else"))
    build_actions, other_actions = [], []
    build.on_action(build_actions.append)
    other.on_action(other_actions.append)

    daemon.invoke_action(build.id, "default")

    assert build_actions == ["default"]
    assert other_actions == []


def test_close_reasons(client, daemon):
    handle = client.send(Notification("Hello"))
    reasons = []
    handle.on_close(reasons.append)

    handle.close()

    assert reasons == [CloseReason.CLOSE_CALLED]


@pytest.mark.parametrize(
    "code, reason",
    [
        (1, CloseReason.EXPIRED),
        (2, CloseReason.DISMISSED),
        (3, CloseReason.CLOSE_CALLED),
        (4, CloseReason.UNDEFINED),
        (0, CloseReason.UNDEFINED),
        (17, CloseReason.UNDEFINED),
    ],
)
def test_unknown_close_codes_are_undefined(client, daemon, code, reason):
    handle = client.send(Notification("Hello"))
    reasons = []
    handle.on_close(reasons.append)
    daemon.close_notification(handle.id, code)
    assert reasons == [reason]


def test_one_subscription_per_transport(transport, daemon, config):
    first = NotificationClient(transport, config=config)
    second = NotificationClient(transport, config=config)
    first.send(Notification("One")).on_action(lambda key: None)
    second.send(Notification("Two")).on_close(lambda reason: None)

    members = sorted(sub.member for sub, _ in transport.subscriptions)
    assert members == ["ActionInvoked", "NotificationClosed"]


def test_no_subscription_until_needed(client, transport):
    client.send(Notification("Hello"))
    assert transport.subscriptions == []
    assert not client.events.subscribed


def test_last_handler_wins(client, daemon):
    handle = client.send(Notification("Hello"))
    first, second = [], []
    handle.on_action(first.append)
    handle.on_action(second.append)

    daemon.invoke_action(handle.id, "open")

    assert first == []
    assert second == ["open"]


def test_detach(client, daemon):
    handle = client.send(Notification("Hello"))
    received = []
    handle.on_action(received.append)
    handle.on_close(received.append)
    handle.detach()

    daemon.invoke_action(handle.id, "open")
    handle.close()

    assert received == []
    assert not client.events.has_handlers(handle.id)


def test_detach_with_owner_leaves_other_handlers(transport):
    events = EventCorrelator.for_transport(transport)
    mine, theirs = object(), object()
    events.set_action_handler(7, lambda key: None, owner=mine)
    events.set_close_handler(7, lambda reason: None, owner=theirs)

    events.detach(7, owner=mine)

    assert events.has_handlers(7)
    events.detach(7)
    assert not events.has_handlers(7)


def test_events_without_handler_are_dropped(client, daemon, transport):
    client.send(Notification("Hello")).on_action(lambda key: None)
    transport.emit(NOTIFICATION_INTERFACE, "ActionInvoked", [999, "default"])
    transport.emit(NOTIFICATION_INTERFACE, "NotificationClosed", [999, 1])


def test_malformed_signals_are_dropped(client, daemon, transport, caplog):
    handle = client.send(Notification("Hello"))
    received = []
    handle.on_action(received.append)

    transport.emit(NOTIFICATION_INTERFACE, "ActionInvoked", [handle.id])
    transport.emit(NOTIFICATION_INTERFACE, "NotificationClosed", ["x", "y"])
    daemon.invoke_action(handle.id, "default")

    assert received == ["default"]
    assert "Dropping malformed ActionInvoked" in caplog.text


def test_failing_handler_does_not_stop_delivery(client, daemon):
    broken = client.send(Notification("Broken"))
    working = client.send(Notification("Working"))
    received = []

    def explode(key):
        raise RuntimeError("boom")

    broken.on_action(explode)
    working.on_action(received.append)

    daemon.invoke_action(broken.id, "default")
    daemon.invoke_action(working.id, "default")

    assert received == ["default"]


def test_events_arrive_in_order(client, daemon):
    handle = client.send(Notification("Hello"))
    received = []
    handle.on_action(received.append)
    for key in ("a", "b", "c"):
        daemon.invoke_action(handle.id, key)
    assert received == ["a", "b", "c"]


def test_listeners_see_every_event(client, daemon):
    events = []
    client.events.add_listener(events.append)
    handle = client.send(Notification("Hello"))

    daemon.invoke_action(handle.id, "default")
    handle.close()
    client.events.remove_listener(events.append)
    daemon.invoke_action(handle.id, "late")

    assert events == [
        ActionEvent(handle.id, "default"),
        CloseEvent(handle.id, CloseReason.CLOSE_CALLED),
    ]


def test_dropping_the_handle_releases_its_handlers(client, daemon):
    handle = client.send(Notification("Hello"))
    id = handle.id
    handle.on_action(lambda key: None)
    assert client.events.has_handlers(id)

    del handle
    gc.collect()

    assert not client.events.has_handlers(id)
    assert id in daemon.notifications


def test_dropping_a_handle_keeps_handlers_of_another_owner(client, daemon):
    handle = client.send(Notification("Hello"))
    id = handle.id
    handle.on_action(lambda key: None)
    replacement = client.handle(id)
    replacement.on_action(lambda key: None)

    del handle
    gc.collect()

    assert client.events.has_handlers(id)


def test_shutdown_closes_subscriptions(client, daemon, transport):
    client.send(Notification("Hello")).on_action(lambda key: None)
    client.events.shutdown()
    assert transport.subscriptions == []


def _emit_when_waiting(events, emit):
    deadline = time.monotonic() + 5
    while not events._listeners and time.monotonic() < deadline:
        time.sleep(0.001)
    emit()


def test_wait_for_action(client, daemon):
    handle = client.send(Notification("Hello"))
    received = []
    thread = threading.Thread(
        target=_emit_when_waiting,
        args=(client.events, lambda: daemon.invoke_action(handle.id, "default")),
    )

    thread.start()
    assert handle.wait_for_action(received.append, timeout=5)
    thread.join()

    assert received == ["default"]


def test_wait_for_action_reports_close(client, daemon):
    handle = client.send(Notification("Hello"))
    received = []
    thread = threading.Thread(
        target=_emit_when_waiting,
        args=(client.events, lambda: daemon.close_notification(handle.id, 2)),
    )

    thread.start()
    assert handle.wait_for_action(received.append, timeout=5)
    thread.join()

    assert received == [CloseReason.DISMISSED]


def test_wait_for_action_timeout(client, daemon):
    handle = client.send(Notification("Hello"))
    received = []
    assert not handle.wait_for_action(received.append, timeout=0.01)
    assert received == []
    assert client.events._listeners == []
