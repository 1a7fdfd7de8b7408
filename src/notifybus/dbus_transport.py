"""
BusTransport on top of dbus_next.

dbus_next is asyncio based, so the transport owns an event loop running
in its own thread and every blocking call is submitted to that loop.
Signal callbacks run on the loop thread.
"""

import asyncio
import concurrent.futures
import logging
import threading

from dbus_next.aio import MessageBus
from dbus_next.constants import BusType, MessageFlag, MessageType
from dbus_next.errors import AuthError, InvalidAddressError, SignatureBodyMismatchError
from dbus_next.message import Message

from notifybus.errors import EncodingError, ProtocolError, TransportError
from notifybus.transport import BusTransport, Subscription

logger = logging.getLogger(__name__)

DBUS_NAME = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"
DBUS_INTERFACE = "org.freedesktop.DBus"

# Errors that mean nobody is there to answer, as opposed to a refusal
UNREACHABLE_ERRORS = {
    "org.freedesktop.DBus.Error.ServiceUnknown",
    "org.freedesktop.DBus.Error.NameHasNoOwner",
    "org.freedesktop.DBus.Error.NoReply",
    "org.freedesktop.DBus.Error.NoServer",
    "org.freedesktop.DBus.Error.Disconnected",
    "org.freedesktop.DBus.Error.Timeout",
    "org.freedesktop.DBus.Error.TimedOut",
    "org.freedesktop.DBus.Error.Spawn.ServiceNotFound",
    "org.freedesktop.DBus.Error.Spawn.ChildExited",
}


def match_rule(interface, member):
    return f"type='signal',interface='{interface}',member='{member}'"


def reply_body(reply):
    """
    Unpack a reply message, turning error replies into
    TransportError or ProtocolError
    """
    if reply is None:
        raise TransportError("No reply from the bus")
    if reply.message_type == MessageType.ERROR:
        detail = ""
        if reply.body and isinstance(reply.body[0], str):
            detail = reply.body[0]
        if reply.error_name in UNREACHABLE_ERRORS:
            raise TransportError(f"{reply.error_name}: {detail}" if detail else reply.error_name)
        raise ProtocolError(detail or "The remote side returned an error", reply.error_name)
    return list(reply.body)


class DBusNextTransport(BusTransport):
    def __init__(self, bus_type=BusType.SESSION, bus_address=None, call_timeout=None):
        self.bus_type = bus_type
        self.bus_address = bus_address
        self.call_timeout = call_timeout
        self.loop = None
        self.thread = None
        self.bus = None
        self._lock = threading.Lock()
        self._subscriptions_lock = threading.Lock()
        self._subscriptions = []

    @classmethod
    def session(cls, **kwargs):
        return cls(BusType.SESSION, **kwargs)

    @classmethod
    def system(cls, **kwargs):
        return cls(BusType.SYSTEM, **kwargs)

    def connect(self):
        """Connect to the bus unless already connected"""
        with self._lock:
            if self.bus is not None:
                if not self.bus.connected:
                    raise TransportError("The bus connection was lost")
                return
            if self.loop is None:
                self.loop = asyncio.new_event_loop()
                self.thread = threading.Thread(target=self.run, name="notifybus-dbus", daemon=True)
                self.thread.start()
            self.bus = self._submit(self.setup_dbus())
            logger.debug("Connected to the %s bus", self.bus_type.name.lower())

    async def setup_dbus(self):
        """Open the connection and route incoming messages to the subscriptions"""
        try:
            bus = await MessageBus(bus_address=self.bus_address, bus_type=self.bus_type).connect()
        except (OSError, EOFError, AuthError, InvalidAddressError) as e:
            raise TransportError(
                f"Can't connect to the {self.bus_type.name.lower()} bus: {e}"
            ) from e
        bus.add_message_handler(self.handle_message)
        return bus

    def run(self):
        """Run the event loop in its own thread"""
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_forever()
        finally:
            self.loop.close()

    def _submit(self, coro):
        if threading.current_thread() is self.thread:
            coro.close()
            raise TransportError("Blocking bus calls can't be made from the bus thread")
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            return future.result(self.call_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise TransportError(f"No reply within {self.call_timeout}s") from None
        except (OSError, EOFError) as e:
            raise TransportError(f"Bus connection lost: {e}") from e

    def call(self, destination, path, interface, member, signature="", body=()):
        self.connect()
        try:
            message = Message(
                destination=destination,
                path=path,
                interface=interface,
                member=member,
                signature=signature,
                body=list(body),
            )
        except SignatureBodyMismatchError as e:
            raise EncodingError(f"Arguments of {member} don't match {signature!r}: {e}") from e

        logger.debug("Calling %s.%s on %s", interface, member, destination)
        reply = self._submit(self.bus.call(message))
        return reply_body(reply)

    def subscribe(self, interface, member, callback):
        self.call(DBUS_NAME, DBUS_PATH, DBUS_INTERFACE, "AddMatch", "s", [match_rule(interface, member)])
        subscription = Subscription(interface, member, on_close=self._unsubscribe)
        with self._subscriptions_lock:
            self._subscriptions.append((subscription, callback))
        logger.debug("Subscribed to %s.%s", interface, member)
        return subscription

    def _unsubscribe(self, subscription):
        with self._subscriptions_lock:
            self._subscriptions = [
                (sub, callback) for sub, callback in self._subscriptions if sub is not subscription
            ]
        if self.bus is None or not self.bus.connected:
            return
        message = Message(
            destination=DBUS_NAME,
            path=DBUS_PATH,
            interface=DBUS_INTERFACE,
            member="RemoveMatch",
            signature="s",
            body=[match_rule(subscription.interface, subscription.member)],
            flags=MessageFlag.NO_REPLY_EXPECTED,
        )
        # Fire and forget so closing works from signal callbacks too
        self.loop.call_soon_threadsafe(self.bus.send, message)

    def handle_message(self, message):
        """Hand incoming signals to every matching subscription"""
        if message.message_type != MessageType.SIGNAL:
            return None
        with self._subscriptions_lock:
            callbacks = [
                callback
                for subscription, callback in self._subscriptions
                if not subscription.closed
                and subscription.interface == message.interface
                and subscription.member == message.member
            ]
        for callback in callbacks:
            try:
                callback(list(message.body))
            except Exception:
                logger.exception("Callback for %s.%s failed", message.interface, message.member)
        return None

    def close(self):
        """Drop every subscription, disconnect and stop the loop thread"""
        with self._subscriptions_lock:
            subscriptions = [sub for sub, _ in self._subscriptions]
            self._subscriptions = []
        for subscription in subscriptions:
            subscription.closed = True

        with self._lock:
            if self.loop is None:
                return
            if self.bus is not None and self.bus.connected:
                self.loop.call_soon_threadsafe(self.bus.disconnect)
            self.loop.call_soon_threadsafe(self.loop.stop)
            if threading.current_thread() is not self.thread:
                self.thread.join(timeout=5)
            self.loop = None
            self.thread = None
            self.bus = None
