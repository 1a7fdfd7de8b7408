"""
Optional defaults read from ~/.config/notifybus/config.ini

    [general]
    app_name = my-app
    timeout = 5000
    bus = default        # default, portal, auto or a custom path
    bus_type = session   # session or system
    call_timeout = 10
"""

import configparser
import os
import sys

from dbus_next.constants import BusType

from notifybus.bus import NotificationBus

CONFIG_ENV = "NOTIFYBUS_CONFIG"
BUS_AUTO = "auto"


def default_app_name():
    name = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else ""
    return name or "notifybus"


def default_config_path():
    config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
    return os.path.join(config_home, "notifybus", "config.ini")


class Config:
    def __init__(
        self,
        app_name=None,
        timeout=-1,
        bus="default",
        bus_type="session",
        call_timeout=None,
    ):
        self.app_name = app_name or default_app_name()
        self.timeout = timeout
        self.bus = bus
        self.bus_type = bus_type
        self.call_timeout = call_timeout
        # Fail early on values that can't be used
        self.notification_bus()
        self.dbus_bus_type()

    @classmethod
    def from_parser(cls, parser):
        section = "general"
        call_timeout = parser.getfloat(section, "call_timeout", fallback=None)
        return cls(
            app_name=parser.get(section, "app_name", fallback=None),
            timeout=parser.getint(section, "timeout", fallback=-1),
            bus=parser.get(section, "bus", fallback="default").strip(),
            bus_type=parser.get(section, "bus_type", fallback="session").strip(),
            call_timeout=call_timeout if call_timeout and call_timeout > 0 else None,
        )

    def notification_bus(self):
        """The configured bus, or None when it should be detected"""
        if self.bus == BUS_AUTO:
            return None
        if self.bus == "default":
            return NotificationBus.default()
        if self.bus == "portal":
            return NotificationBus.portal()
        bus = NotificationBus.custom(self.bus)
        if bus is None:
            raise ValueError(f"Invalid bus in config: {self.bus!r}")
        return bus

    def dbus_bus_type(self):
        try:
            return {"session": BusType.SESSION, "system": BusType.SYSTEM}[self.bus_type.lower()]
        except KeyError:
            raise ValueError(f"bus_type must be session or system, not {self.bus_type!r}") from None

    def __repr__(self):
        return (
            f"Config(app_name={self.app_name!r}, timeout={self.timeout}, "
            f"bus={self.bus!r}, bus_type={self.bus_type!r})"
        )


def load_config(path=None):
    """
    Read the config file. An explicit path (argument or NOTIFYBUS_CONFIG)
    must exist, the default location is optional.
    """
    explicit = path or os.environ.get(CONFIG_ENV)
    if explicit:
        if not os.path.isfile(explicit):
            raise FileNotFoundError(f"Configuration file '{explicit}' does not exist")
        path = explicit
    else:
        path = default_config_path()

    parser = configparser.ConfigParser(inline_comment_prefixes=("#", ";"))
    parser.read(path)
    return Config.from_parser(parser)
