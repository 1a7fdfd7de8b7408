import itertools
import logging
import threading
import weakref
from typing import NamedTuple

from dbus_next import Variant

from notifybus.bus import (
    NOTIFICATION_INTERFACE,
    NOTIFICATION_OBJECTPATH,
    NOTIFICATION_PORTAL_INTERFACE,
    NOTIFICATION_PORTAL_OBJECTPATH,
    PROPERTIES_INTERFACE,
    NotificationBus,
)
from notifybus.config import load_config
from notifybus.dbus_transport import DBusNextTransport
from notifybus.errors import EncodingError, NotifyError, ProtocolError
from notifybus.events import ActionEvent, EventCorrelator
from notifybus.hints import INT32_MAX, UINT32_MAX, encode_hints
from notifybus.notification import timeout_ms
from notifybus.urgency import Urgency

logger = logging.getLogger(__name__)

NOTIFY_SIGNATURE = "susssasa{sv}i"

PORTAL_PRIORITIES = {
    Urgency.LOW: "low",
    Urgency.NORMAL: "normal",
    Urgency.CRITICAL: "urgent",
}

# The portal doesn't hand out ids, they are ours to pick
_portal_ids = itertools.count(1)
_portal_ids_lock = threading.Lock()

_default_transports = {}
_default_transports_lock = threading.Lock()


def default_transport(config):
    """One shared dbus_next connection per bus type for the whole process"""
    bus_type = config.dbus_bus_type()
    with _default_transports_lock:
        transport = _default_transports.get(bus_type)
        if transport is None:
            transport = DBusNextTransport(bus_type, call_timeout=config.call_timeout)
            _default_transports[bus_type] = transport
        return transport


class ServerCapabilities(frozenset):
    """The capability strings a daemon advertises, compared as a set"""

    @property
    def actions(self):
        return "actions" in self

    @property
    def body_markup(self):
        return "body-markup" in self

    @property
    def body_hyperlinks(self):
        return "body-hyperlinks" in self

    @property
    def persistence(self):
        return "persistence" in self

    @property
    def sound(self):
        return "sound" in self


class ServerInformation(NamedTuple):
    name: str
    vendor: str
    version: str
    spec_version: str


def _check_uint32(value, what):
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= UINT32_MAX:
        raise EncodingError(f"{what} must be a uint32, got {value!r}")
    return value


def _check_str(value, what):
    if not isinstance(value, str):
        raise EncodingError(f"{what} must be a str, got {type(value).__name__}")
    return value


def _release_handlers(correlator, state, owner):
    correlator.detach(state["id"], owner=owner)


class NotificationHandle:
    """
    A notification the daemon accepted.
    Keep it around to update or close the notification and to get its
    action and close events. Dropping it does not close the notification,
    but the handlers registered through it are released.
    """

    def __init__(self, client, id, notification):
        self.client = client
        self.notification = notification
        self._state = {"id": id}
        self._owner = object()
        self._finalizer = None

    @property
    def id(self):
        return self._state["id"]

    def update(self, notification=None):
        """
        Send the notification again under the same id so the daemon
        replaces it in place. Returns the id the daemon answered with.
        """
        if notification is not None:
            self.notification = notification.copy()
        if self.notification is None:
            raise ValueError(f"Handle {self.id} has no notification to send again")
        self.notification.id = self.id
        new_id = self.client.notify(self.notification)
        if new_id != self.id:
            logger.debug("Notification %s came back as %s", self.id, new_id)
            self.client.events.rekey(self.id, new_id)
            self._state["id"] = new_id
            self.notification.id = new_id
        return new_id

    def close(self):
        self.client.close(self.id)

    def _track(self):
        if self._finalizer is None:
            self._finalizer = weakref.finalize(
                self, _release_handlers, self.client.events, self._state, self._owner
            )

    def on_action(self, handler):
        """handler(action_key) runs for every action invoked on this notification"""
        self.client.events.set_action_handler(self.id, handler, owner=self._owner)
        self._track()

    def on_close(self, handler):
        """handler(CloseReason) runs when this notification is closed"""
        self.client.events.set_close_handler(self.id, handler, owner=self._owner)
        self._track()

    def detach(self):
        self.client.events.detach(self.id, owner=self._owner)

    def wait_for_action(self, handler, timeout=None):
        """
        Block until an action is invoked on this notification or it is closed,
        then call handler with the action key or the CloseReason.
        Returns False if nothing happened within `timeout` seconds.
        """
        done = threading.Event()
        received = []

        def listener(event):
            if event.id == self.id and not done.is_set():
                received.append(event)
                done.set()

        events = self.client.events
        events.add_listener(listener)
        try:
            if not done.wait(timeout):
                return False
        finally:
            events.remove_listener(listener)

        event = received[0]
        if isinstance(event, ActionEvent):
            handler(event.action_key)
        else:
            handler(event.reason)
        return True

    def __repr__(self):
        return f"<NotificationHandle id={self.id} summary={self.notification.summary!r}>"


class NotificationClient:
    """
    Talks to the notification daemon through a BusTransport.
    Without a transport the process wide dbus_next connection is used.
    Nothing is retried, every failure reaches the caller.
    """

    def __init__(self, transport=None, bus=None, config=None):
        self.config = config if config is not None else load_config()
        self._transport = transport
        self._bus = bus

    @property
    def transport(self):
        if self._transport is None:
            self._transport = default_transport(self.config)
        return self._transport

    @property
    def bus(self):
        if self._bus is None:
            self._bus = self.config.notification_bus() or self.detect_bus()
        return self._bus

    @property
    def events(self):
        return EventCorrelator.for_transport(self.transport)

    def _daemon_bus(self):
        # Capability queries only make sense against a freedesktop daemon
        return NotificationBus.default() if self.bus.is_portal else self.bus

    def send(self, notification):
        """Show a notification, or replace one if its id is set"""
        id = self.notify(notification)
        sent = notification.copy()
        sent.id = id
        return NotificationHandle(self, id, sent)

    def handle(self, id, notification=None):
        """A handle for a notification id obtained elsewhere"""
        _check_uint32(id, "Notification id")
        return NotificationHandle(self, id, notification.copy() if notification else None)

    def notify(self, notification):
        """Send a notification and return the id the daemon assigned"""
        replace_id = _check_uint32(notification.id or 0, "Replace id")
        app_name = _check_str(notification.application_name or self.config.app_name, "Application name")
        summary = _check_str(notification.summary, "Summary")
        body = _check_str(notification.body, "Body")
        icon = _check_str(notification.icon, "Icon")
        actions = [_check_str(item, "Action") for item in notification.flat_actions()]
        timeout = notification.timeout
        if timeout < 0:
            timeout = timeout_ms(self.config.timeout)
        if timeout > INT32_MAX:
            raise EncodingError(f"Timeout of {timeout}ms does not fit an int32")
        hints = encode_hints(notification)

        if self.bus.is_portal:
            return self._add_portal_notification(notification, replace_id)

        reply = self.transport.call(
            self.bus.name,
            NOTIFICATION_OBJECTPATH,
            NOTIFICATION_INTERFACE,
            "Notify",
            NOTIFY_SIGNATURE,
            [app_name, replace_id, icon, summary, body, actions, hints, timeout],
        )
        if len(reply) != 1 or isinstance(reply[0], bool) or not isinstance(reply[0], int):
            raise ProtocolError(f"Notify replied with {reply!r}, expected a single uint32")
        notification_id = reply[0]
        logger.debug(
            "Notifying with ID %s, app_name: %s, replaces_id: %s, summary: %s",
            notification_id,
            app_name,
            replace_id,
            summary,
        )
        return notification_id

    def _add_portal_notification(self, notification, replace_id):
        if replace_id:
            id = replace_id
        else:
            with _portal_ids_lock:
                id = next(_portal_ids)

        portal_notification = {
            "title": Variant("s", notification.summary),
            "body": Variant("s", notification.body),
            "priority": Variant("s", PORTAL_PRIORITIES[notification.urgency]),
        }
        image_path = notification.hints.get("image-path")
        if notification.icon:
            portal_notification["icon"] = Variant("(sv)", ["themed", Variant("as", [notification.icon])])
        elif image_path is not None:
            try:
                with open(image_path.value, "rb") as img_file:
                    data = img_file.read()
            except OSError as e:
                raise EncodingError(f"Can't read image-path {image_path.value}: {e}") from e
            portal_notification["icon"] = Variant("(sv)", ["bytes", Variant("ay", data)])

        self.transport.call(
            self.bus.name,
            NOTIFICATION_PORTAL_OBJECTPATH,
            NOTIFICATION_PORTAL_INTERFACE,
            "AddNotification",
            "sa{sv}",
            [str(id), portal_notification],
        )
        logger.debug("Added portal notification %s", id)
        return id

    def close(self, id):
        """
        Ask the daemon to close a notification.
        Whatever the daemon answers for unknown ids is passed through as is.
        """
        _check_uint32(id, "Notification id")
        if self.bus.is_portal:
            self.transport.call(
                self.bus.name,
                NOTIFICATION_PORTAL_OBJECTPATH,
                NOTIFICATION_PORTAL_INTERFACE,
                "RemoveNotification",
                "s",
                [str(id)],
            )
        else:
            self.transport.call(
                self.bus.name,
                NOTIFICATION_OBJECTPATH,
                NOTIFICATION_INTERFACE,
                "CloseNotification",
                "u",
                [id],
            )
        logger.debug("Closed notification %s", id)

    def capabilities(self):
        reply = self.transport.call(
            self._daemon_bus().name,
            NOTIFICATION_OBJECTPATH,
            NOTIFICATION_INTERFACE,
            "GetCapabilities",
        )
        if len(reply) != 1 or not isinstance(reply[0], list) or not all(isinstance(c, str) for c in reply[0]):
            raise ProtocolError(f"GetCapabilities replied with {reply!r}, expected a list of strings")
        return ServerCapabilities(reply[0])

    def server_information(self):
        reply = self.transport.call(
            self._daemon_bus().name,
            NOTIFICATION_OBJECTPATH,
            NOTIFICATION_INTERFACE,
            "GetServerInformation",
        )
        if len(reply) != 4 or not all(isinstance(field, str) for field in reply):
            raise ProtocolError(f"GetServerInformation replied with {reply!r}, expected 4 strings")
        return ServerInformation(*reply)

    def portal_version(self):
        """Version of the desktop portal's notification interface"""
        reply = self.transport.call(
            NotificationBus.portal().name,
            NOTIFICATION_PORTAL_OBJECTPATH,
            PROPERTIES_INTERFACE,
            "Get",
            "ss",
            [NOTIFICATION_PORTAL_INTERFACE, "version"],
        )
        value = reply[0].value if reply and isinstance(reply[0], Variant) else None
        if isinstance(value, bool) or not isinstance(value, int):
            raise ProtocolError(f"Portal version reply {reply!r} is not an integer")
        return value

    def detect_bus(self):
        """The portal when one is running, the freedesktop daemon otherwise"""
        try:
            version = self.portal_version()
        except NotifyError as e:
            logger.debug("No notification portal (%s), using the default bus", e)
            return NotificationBus.default()
        if version > 0:
            logger.debug("Using the notification portal, version %s", version)
            return NotificationBus.portal()
        return NotificationBus.default()
