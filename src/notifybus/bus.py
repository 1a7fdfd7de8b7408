import re
from pathlib import PurePosixPath

NOTIFICATION_DEFAULT_BUS = "org.freedesktop.Notifications"
NOTIFICATION_INTERFACE = "org.freedesktop.Notifications"
NOTIFICATION_OBJECTPATH = "/org/freedesktop/Notifications"

NOTIFICATION_PORTAL_BUS = "org.freedesktop.portal.Desktop"
NOTIFICATION_PORTAL_INTERFACE = "org.freedesktop.portal.Notification"
NOTIFICATION_PORTAL_OBJECTPATH = "/org/freedesktop/portal/desktop"

PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

CUSTOM_BUS_PREFIX = "/de/hoodie/Notification"

_ELEMENT = re.compile(r"^[A-Za-z_-][A-Za-z0-9_-]*$")


def is_valid_bus_name(name):
    """Well-known bus name rules: 2+ dot separated elements, no leading digits, max 255 chars"""
    if not name or len(name) > 255:
        return False
    elements = name.split(".")
    if len(elements) < 2:
        return False
    return all(_ELEMENT.match(element) for element in elements)


class NotificationBus:
    """
    Well-known name of the service notifications are sent to.
    Usually the freedesktop daemon, the desktop portal inside sandboxes,
    or a custom name for test daemons.
    """

    def __init__(self, name=NOTIFICATION_DEFAULT_BUS):
        if not is_valid_bus_name(name):
            raise ValueError(f"Invalid bus name: {name!r}")
        self.name = name

    @classmethod
    def default(cls):
        return cls(NOTIFICATION_DEFAULT_BUS)

    @classmethod
    def portal(cls):
        return cls(NOTIFICATION_PORTAL_BUS)

    @classmethod
    def custom(cls, custom_path):
        """
        Namespace a custom path under de.hoodie.Notification,
        "my/app" becomes "de.hoodie.Notification.my.app".
        Returns None if the result is not a valid bus name.
        """
        joined = str(PurePosixPath(CUSTOM_BUS_PREFIX) / custom_path.lstrip("/"))
        name = joined.lstrip("/").rstrip("/").replace("/", ".")
        if not is_valid_bus_name(name):
            return None
        return cls(name)

    @property
    def is_portal(self):
        return self.name == NOTIFICATION_PORTAL_BUS

    def __eq__(self, other):
        if not isinstance(other, NotificationBus):
            return NotImplemented
        return self.name == other.name

    def __hash__(self):
        return hash(self.name)

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"NotificationBus({self.name!r})"
