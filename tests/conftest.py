import pytest
from dbus_next import Variant

from notifybus.bus import (
    NOTIFICATION_DEFAULT_BUS,
    NOTIFICATION_INTERFACE,
    NOTIFICATION_PORTAL_BUS,
    PROPERTIES_INTERFACE,
)
from notifybus.client import NotificationClient
from notifybus.config import Config
from notifybus.errors import ProtocolError, TransportError
from notifybus.transport import BusTransport, Subscription


class FakeTransport(BusTransport):
    """In memory bus: routes calls to fake services and signals to subscribers"""

    def __init__(self):
        self.services = {}
        self.calls = []
        self.subscriptions = []

    def call(self, destination, path, interface, member, signature="", body=()):
        self.calls.append((destination, path, interface, member, signature, list(body)))
        service = self.services.get(destination)
        if service is None:
            raise TransportError(
                f"org.freedesktop.DBus.Error.ServiceUnknown: The name {destination} was not provided by any .service files"
            )
        return service.handle_call(path, interface, member, list(body))

    def subscribe(self, interface, member, callback):
        subscription = Subscription(interface, member, on_close=self._unsubscribe)
        self.subscriptions.append((subscription, callback))
        return subscription

    def _unsubscribe(self, subscription):
        self.subscriptions = [(sub, cb) for sub, cb in self.subscriptions if sub is not subscription]

    def emit(self, interface, member, body):
        for subscription, callback in list(self.subscriptions):
            if subscription.interface == interface and subscription.member == member:
                callback(list(body))

    def calls_to(self, member):
        return [call for call in self.calls if call[3] == member]


class FakeDaemon:
    """
    Behaves like a freedesktop notification server: sequential ids,
    replacing in place, and a NotificationClosed signal on close
    """

    def __init__(self, transport, capabilities=("body", "actions", "icon-static"), strict_close=False):
        self.transport = transport
        self.capabilities = list(capabilities)
        self.strict_close = strict_close
        self.notification_id = 0
        self.notifications = {}
        transport.services[NOTIFICATION_DEFAULT_BUS] = self

    def handle_call(self, path, interface, member, body):
        method = getattr(self, member, None)
        if interface != NOTIFICATION_INTERFACE or method is None:
            raise ProtocolError(f"No such method {member}", "org.freedesktop.DBus.Error.UnknownMethod")
        return method(*body)

    def GetServerInformation(self):
        return ["yawns", "kz87", "alpha", "1.2"]

    def GetCapabilities(self):
        return [list(self.capabilities)]

    def Notify(self, app_name, replaces_id, app_icon, summary, body, actions, hints, expire_timeout):
        if replaces_id in self.notifications:
            notification_id = replaces_id
        else:
            self.notification_id += 1
            notification_id = self.notification_id
        self.notifications[notification_id] = {
            "app_name": app_name,
            "replaces_id": replaces_id,
            "app_icon": app_icon,
            "summary": summary,
            "body": body,
            "actions": actions,
            "hints": hints,
            "expire_timeout": expire_timeout,
        }
        return [notification_id]

    def CloseNotification(self, id):
        if id not in self.notifications:
            if self.strict_close:
                raise ProtocolError(f"No notification with id {id}", "org.freedesktop.Notifications.Error.InvalidId")
            return []
        self.close_notification(id, 3)
        return []

    def close_notification(self, id, reason):
        self.notifications.pop(id, None)
        self.transport.emit(NOTIFICATION_INTERFACE, "NotificationClosed", [id, reason])

    def invoke_action(self, id, action):
        self.transport.emit(NOTIFICATION_INTERFACE, "ActionInvoked", [id, action])


class FakePortal:
    def __init__(self, transport, version=2):
        self.version = version
        self.notifications = {}
        transport.services[NOTIFICATION_PORTAL_BUS] = self

    def handle_call(self, path, interface, member, body):
        if interface == PROPERTIES_INTERFACE and member == "Get":
            return [Variant("u", self.version)]
        if member == "AddNotification":
            id, notification = body
            self.notifications[id] = notification
            return []
        if member == "RemoveNotification":
            self.notifications.pop(body[0], None)
            return []
        raise ProtocolError(f"No such method {member}", "org.freedesktop.DBus.Error.UnknownMethod")


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def daemon(transport):
    return FakeDaemon(transport)


@pytest.fixture
def config():
    return Config(app_name="tests")


@pytest.fixture
def client(transport, daemon, config):
    return NotificationClient(transport, config=config)
