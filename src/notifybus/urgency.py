from enum import IntEnum

from notifybus.errors import EncodingError


class Urgency(IntEnum):
    """
    Urgency levels of the freedesktop notification spec,
    sent to the daemon as the byte value of the "urgency" hint
    """

    LOW = 0
    NORMAL = 1
    CRITICAL = 2

    @classmethod
    def clamp(cls, value):
        """
        Turn an int, a name or an Urgency into an Urgency.
        Ints outside 0..2 are clamped to the nearest level.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return _NAMES[value.strip().lower()]
            except KeyError:
                raise EncodingError(f"Unknown urgency name: {value!r}") from None
        # bool is an int subclass but never a meaningful urgency
        if isinstance(value, bool) or not isinstance(value, int):
            raise EncodingError(f"Urgency must be an int or a name, got {type(value).__name__}")
        return cls(min(max(value, cls.LOW), cls.CRITICAL))


_NAMES = {
    "low": Urgency.LOW,
    "normal": Urgency.NORMAL,
    "critical": Urgency.CRITICAL,
    "high": Urgency.CRITICAL,
    "urgent": Urgency.CRITICAL,
}
