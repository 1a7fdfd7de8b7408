from datetime import timedelta

from notifybus.errors import EncodingError
from notifybus.hints import Hint
from notifybus.urgency import Urgency

TIMEOUT_DEFAULT = -1
TIMEOUT_NEVER = 0

DEFAULT_ACTION = "default"


def timeout_ms(value):
    """
    Normalize a timeout to the int32 milliseconds the daemon expects.
    0 never expires, anything negative lets the daemon decide.
    """
    if isinstance(value, timedelta):
        return int(value.total_seconds() * 1000)
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"Timeout must be milliseconds or a timedelta, got {value!r}")
    if value < 0:
        return TIMEOUT_DEFAULT
    return value


class Notification:
    """
    A notification before it is sent.
    Everything is a plain attribute, mutate freely and hand it
    to NotificationClient.send(). Setting `id` to the id of a
    notification that is already shown replaces it in place.
    """

    def __init__(
        self,
        summary,
        body="",
        icon="",
        application_name="",
        timeout=TIMEOUT_DEFAULT,
        urgency=Urgency.NORMAL,
        actions=None,
        hints=None,
        id=None,
    ):
        self.summary = summary
        self.body = body
        self.icon = icon
        self.application_name = application_name
        self.timeout = timeout
        self.hints = {}
        self.urgency = urgency
        self.actions = list(actions or [])
        self.id = id
        if isinstance(hints, dict):
            for name, value in hints.items():
                self.set_hint(value if isinstance(value, Hint) else Hint(name, value))
        else:
            for hint in hints or []:
                self.set_hint(hint)

    @property
    def timeout(self):
        return self._timeout

    @timeout.setter
    def timeout(self, value):
        self._timeout = timeout_ms(value)

    @property
    def urgency(self):
        # An "urgency" entry put straight into hints is the latest write
        hint = self.hints.get("urgency")
        if hint is None:
            return self._urgency
        return Urgency.clamp(hint.value if isinstance(hint, Hint) else hint)

    @urgency.setter
    def urgency(self, value):
        self._urgency = Urgency.clamp(value)
        self.hints.pop("urgency", None)

    def add_action(self, key, label):
        self.actions.append((key, label))

    def set_actions_flat(self, flat):
        """Set the actions from the wire format: [key, label, key, label, ...]"""
        flat = list(flat)
        if len(flat) % 2:
            raise EncodingError(f"Actions need key/label pairs, got {len(flat)} strings")
        self.actions = list(zip(flat[::2], flat[1::2]))

    def flat_actions(self):
        flat = []
        for action in self.actions:
            if not isinstance(action, (tuple, list)) or len(action) != 2:
                raise EncodingError(f"Action {action!r} is not a (key, label) pair")
            flat.extend(action)
        return flat

    def set_urgency(self, value):
        self.urgency = Urgency.clamp(value)

    def set_hint(self, hint, value=None):
        """
        Add a hint, either a Hint or a name and a value.
        A hint with the same name is replaced.
        """
        if not isinstance(hint, Hint):
            hint = Hint(hint, value)
        if hint.name == "urgency":
            self.set_urgency(hint.value)
            return
        self.hints[hint.name] = hint

    def remove_hint(self, name):
        if name == "urgency":
            self.urgency = Urgency.NORMAL
            return
        self.hints.pop(name, None)

    def get_hint(self, name):
        if name == "urgency":
            return Hint.urgency(self.urgency)
        return self.hints.get(name)

    def copy(self):
        copied = Notification(
            self.summary,
            body=self.body,
            icon=self.icon,
            application_name=self.application_name,
            timeout=self.timeout,
            urgency=self._urgency,
            actions=self.actions,
            id=self.id,
        )
        copied.hints = {
            name: hint.copy() if isinstance(hint, Hint) else hint
            for name, hint in self.hints.items()
        }
        return copied

    def __repr__(self):
        return f"Notification(summary={self.summary!r}, id={self.id!r})"
