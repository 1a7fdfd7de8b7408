"""Desktop notifications over D-Bus, without libnotify"""

from notifybus.bus import NotificationBus
from notifybus.client import (
    NotificationClient,
    NotificationHandle,
    ServerCapabilities,
    ServerInformation,
)
from notifybus.config import Config, load_config
from notifybus.dbus_transport import DBusNextTransport
from notifybus.errors import EncodingError, NotifyError, ProtocolError, TransportError
from notifybus.events import ActionEvent, CloseEvent, CloseReason, EventCorrelator
from notifybus.hints import Hint, HintType, ImageData, decode_hints, encode_hints
from notifybus.notification import TIMEOUT_DEFAULT, TIMEOUT_NEVER, Notification
from notifybus.transport import BusTransport, Subscription
from notifybus.urgency import Urgency

__version__ = "0.1.0"

__all__ = [
    "ActionEvent",
    "BusTransport",
    "CloseEvent",
    "CloseReason",
    "Config",
    "DBusNextTransport",
    "EncodingError",
    "EventCorrelator",
    "Hint",
    "HintType",
    "ImageData",
    "Notification",
    "NotificationBus",
    "NotificationClient",
    "NotificationHandle",
    "NotifyError",
    "ProtocolError",
    "ServerCapabilities",
    "ServerInformation",
    "Subscription",
    "TIMEOUT_DEFAULT",
    "TIMEOUT_NEVER",
    "TransportError",
    "Urgency",
    "decode_hints",
    "encode_hints",
    "load_config",
]
