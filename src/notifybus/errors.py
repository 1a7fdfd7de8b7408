class NotifyError(Exception):
    """Base class for everything this package raises"""


class TransportError(NotifyError):
    """
    The bus or the notification daemon could not be reached,
    or the connection was lost while waiting for a reply
    """


class ProtocolError(NotifyError):
    """
    The daemon answered with a D-Bus error or with a reply
    that does not have the shape the protocol mandates
    """

    def __init__(self, message, error_name=None):
        super().__init__(message)
        self.error_name = error_name

    def __str__(self):
        message = super().__str__()
        if self.error_name:
            return f"{self.error_name}: {message}"
        return message


class EncodingError(NotifyError, ValueError):
    """
    A value can't be put on the wire with the type its key requires.
    Raised before anything is sent.
    """
