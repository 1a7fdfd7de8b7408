"""
Routing of the daemon's signals back to the notification they are about.

The daemon broadcasts ActionInvoked and NotificationClosed for every
notification it shows, so one subscription per transport feeds an
id keyed registry of handlers.
"""

from enum import IntEnum
import logging
import threading
import weakref

from notifybus.bus import NOTIFICATION_INTERFACE

logger = logging.getLogger(__name__)


class CloseReason(IntEnum):
    EXPIRED = 1
    DISMISSED = 2
    CLOSE_CALLED = 3
    UNDEFINED = 4

    @classmethod
    def from_code(cls, code):
        """Unknown codes from non compliant daemons become UNDEFINED"""
        try:
            return cls(code)
        except ValueError:
            return cls.UNDEFINED


class ActionEvent:
    __slots__ = ("id", "action_key")

    def __init__(self, id, action_key):
        self.id = id
        self.action_key = action_key

    def __eq__(self, other):
        if not isinstance(other, ActionEvent):
            return NotImplemented
        return (self.id, self.action_key) == (other.id, other.action_key)

    def __repr__(self):
        return f"ActionEvent(id={self.id}, action_key={self.action_key!r})"


class CloseEvent:
    __slots__ = ("id", "reason")

    def __init__(self, id, reason):
        self.id = id
        self.reason = reason

    def __eq__(self, other):
        if not isinstance(other, CloseEvent):
            return NotImplemented
        return (self.id, self.reason) == (other.id, other.reason)

    def __repr__(self):
        return f"CloseEvent(id={self.id}, reason={self.reason.name})"


class _Entry:
    __slots__ = ("on_action", "on_close", "action_owner", "close_owner")

    def __init__(self):
        self.on_action = None
        self.on_close = None
        self.action_owner = None
        self.close_owner = None

    def empty(self):
        return self.on_action is None and self.on_close is None


class EventCorrelator:
    """
    Delivers ActionInvoked and NotificationClosed signals to the
    handlers registered for the notification id they carry.

    Use for_transport() so every client on a transport shares one
    correlator and therefore one subscription per signal.
    """

    _instances = weakref.WeakKeyDictionary()
    _instances_lock = threading.Lock()

    def __init__(self, transport):
        # Weak, the registry of instances is keyed on the transport
        self._transport = weakref.ref(transport)
        self._lock = threading.RLock()
        # Held while subscribing, never while dispatching
        self._subscribe_lock = threading.Lock()
        self._entries = {}
        self._listeners = []
        self._subscriptions = []

    @property
    def transport(self):
        transport = self._transport()
        if transport is None:
            raise RuntimeError("The transport of this correlator is gone")
        return transport

    @classmethod
    def for_transport(cls, transport):
        with cls._instances_lock:
            correlator = cls._instances.get(transport)
            if correlator is None:
                correlator = cls(transport)
                cls._instances[transport] = correlator
            return correlator

    @property
    def subscribed(self):
        subscriptions = self._subscriptions
        return bool(subscriptions) and not any(sub.closed for sub in subscriptions)

    def _ensure_subscribed(self):
        """Subscribe to both signals, again if the transport closed the old subscriptions"""
        with self._subscribe_lock:
            if self.subscribed:
                return
            for stale in self._subscriptions:
                stale.close()
            action = self.transport.subscribe(
                NOTIFICATION_INTERFACE, "ActionInvoked", self.handle_action_invoked
            )
            try:
                closed = self.transport.subscribe(
                    NOTIFICATION_INTERFACE, "NotificationClosed", self.handle_notification_closed
                )
            except Exception:
                action.close()
                with self._lock:
                    self._subscriptions = []
                raise
            logger.debug("Subscribed to the notification signals")
            with self._lock:
                self._subscriptions = [action, closed]

    def set_action_handler(self, id, handler, owner=None):
        """
        Call handler(action_key) when an action of notification `id` is invoked.
        Replaces any action handler already set for that id.
        """
        self._ensure_subscribed()
        with self._lock:
            entry = self._entries.setdefault(id, _Entry())
            entry.on_action = handler
            entry.action_owner = owner

    def set_close_handler(self, id, handler, owner=None):
        """
        Call handler(CloseReason) when notification `id` is closed.
        Replaces any close handler already set for that id.
        """
        self._ensure_subscribed()
        with self._lock:
            entry = self._entries.setdefault(id, _Entry())
            entry.on_close = handler
            entry.close_owner = owner

    def detach(self, id, owner=None):
        """
        Remove the handlers of notification `id`.
        With an owner, only the handlers that owner registered go.
        """
        with self._lock:
            entry = self._entries.get(id)
            if entry is None:
                return
            if owner is None or entry.action_owner is owner:
                entry.on_action = None
                entry.action_owner = None
            if owner is None or entry.close_owner is owner:
                entry.on_close = None
                entry.close_owner = None
            if entry.empty():
                del self._entries[id]

    def rekey(self, old_id, new_id):
        """Move the handlers of `old_id` to `new_id`, used when an update got a new id"""
        if old_id == new_id:
            return
        with self._lock:
            entry = self._entries.pop(old_id, None)
            if entry is not None:
                self._entries[new_id] = entry

    def has_handlers(self, id):
        with self._lock:
            return id in self._entries

    def add_listener(self, listener):
        """Call listener(event) for every ActionEvent and CloseEvent, whatever the id"""
        self._ensure_subscribed()
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def handle_action_invoked(self, body):
        try:
            id, action_key = int(body[0]), str(body[1])
        except (IndexError, TypeError, ValueError):
            logger.warning("Dropping malformed ActionInvoked signal: %r", body)
            return
        with self._lock:
            entry = self._entries.get(id)
            handler = entry.on_action if entry else None
            listeners = list(self._listeners)
        logger.debug("ActionInvoked id=%s action=%r", id, action_key)
        self._dispatch(handler, action_key, listeners, ActionEvent(id, action_key))

    def handle_notification_closed(self, body):
        try:
            id, code = int(body[0]), int(body[1])
        except (IndexError, TypeError, ValueError):
            logger.warning("Dropping malformed NotificationClosed signal: %r", body)
            return
        reason = CloseReason.from_code(code)
        with self._lock:
            entry = self._entries.get(id)
            handler = entry.on_close if entry else None
            listeners = list(self._listeners)
        logger.debug("NotificationClosed id=%s reason=%s", id, reason.name)
        self._dispatch(handler, reason, listeners, CloseEvent(id, reason))

    def _dispatch(self, handler, argument, listeners, event):
        if handler is not None:
            try:
                handler(argument)
            except Exception:
                logger.exception("Handler for notification %s failed", event.id)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener %r failed on %r", listener, event)

    def shutdown(self):
        """Close the signal subscriptions and forget every handler"""
        with self._lock:
            subscriptions, self._subscriptions = self._subscriptions, []
            self._entries.clear()
            self._listeners.clear()
        for subscription in subscriptions:
            subscription.close()
