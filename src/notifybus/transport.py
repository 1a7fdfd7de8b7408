from abc import ABC, abstractmethod


class Subscription:
    """
    A live signal subscription. Call close() to stop delivery,
    closing twice is harmless.
    """

    def __init__(self, interface, member, on_close=None):
        self.interface = interface
        self.member = member
        self._on_close = on_close
        self.closed = False

    def close(self):
        if self.closed:
            return
        self.closed = True
        if self._on_close is not None:
            self._on_close(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self):
        state = "closed" if self.closed else "open"
        return f"<Subscription {self.interface}.{self.member} {state}>"


class BusTransport(ABC):
    """
    The two things the notification client needs from a message bus:
    a blocking method call and a signal subscription.
    """

    @abstractmethod
    def call(self, destination, path, interface, member, signature="", body=()):
        """
        Call a method and wait for the reply.
        Returns the reply body as a list. Raises TransportError when the bus or
        the destination can't be reached and ProtocolError when the remote
        side answers with an error.
        """

    @abstractmethod
    def subscribe(self, interface, member, callback):
        """
        Start delivering every `interface.member` signal body to `callback`,
        in the order the bus delivers them. Returns a Subscription.
        """

    def close(self):
        pass
