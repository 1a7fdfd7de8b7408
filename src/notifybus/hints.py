"""
Hints are the typed key/value extras of a notification (a{sv} on the wire).
Every hint carries the D-Bus type it will be sent as, so a value that does
not fit its key is rejected here instead of by the daemon.

See https://specifications.freedesktop.org/notification-spec/latest/hints.html
"""

from enum import Enum
import logging

from dbus_next import Variant
from PIL import Image

from notifybus.errors import EncodingError
from notifybus.urgency import Urgency

logger = logging.getLogger(__name__)

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
UINT32_MAX = 2**32 - 1


class HintType(Enum):
    BYTE = "y"
    BOOLEAN = "b"
    INT32 = "i"
    UINT32 = "u"
    STRING = "s"
    BYTES = "ay"
    IMAGE = "(iiibiiay)"


KNOWN_HINTS = {
    "urgency": HintType.BYTE,
    "category": HintType.STRING,
    "desktop-entry": HintType.STRING,
    "image-path": HintType.STRING,
    "sound-file": HintType.STRING,
    "suppress-sound": HintType.BOOLEAN,
    "transient": HintType.BOOLEAN,
    "action-icons": HintType.BOOLEAN,
    "resident": HintType.BOOLEAN,
    "x": HintType.INT32,
    "y": HintType.INT32,
    "image-data": HintType.IMAGE,
}

# Names from older versions of the freedesktop spec, still read by some daemons
LEGACY_HINTS = {
    "image_data": HintType.IMAGE,
    "icon_data": HintType.IMAGE,
    "image_path": HintType.STRING,
}


class ImageData:
    """
    Raw pixel buffer sent in the "image-data" hint.
    Mirrors the (iiibiiay) struct: width, height, rowstride,
    has_alpha, bits_per_sample, channels, data.
    """

    def __init__(self, width, height, data, has_alpha=False, rowstride=None, bits_per_sample=8):
        self.width = width
        self.height = height
        self.has_alpha = bool(has_alpha)
        self.bits_per_sample = bits_per_sample
        self.channels = 4 if self.has_alpha else 3
        bytes_per_pixel = self.channels * bits_per_sample // 8
        self.rowstride = width * bytes_per_pixel if rowstride is None else rowstride
        self.data = bytes(data)

        if width <= 0 or height <= 0:
            raise EncodingError(f"Image size must be positive, got {width}x{height}")
        if self.rowstride < width * bytes_per_pixel:
            raise EncodingError(f"Rowstride {self.rowstride} is too small for width {width}")
        # The last row is allowed to skip its padding
        shortest = (height - 1) * self.rowstride + width * bytes_per_pixel
        if not shortest <= len(self.data) <= height * self.rowstride:
            raise EncodingError(
                f"Image buffer has {len(self.data)} bytes, expected {height * self.rowstride}"
            )

    @classmethod
    def from_image(cls, image):
        """Build from a PIL image, converting to RGB or RGBA as needed"""
        if image.mode not in ("RGB", "RGBA"):
            has_alpha = "A" in image.getbands() or "transparency" in image.info
            image = image.convert("RGBA" if has_alpha else "RGB")
        return cls(
            image.width,
            image.height,
            image.tobytes(),
            has_alpha=image.mode == "RGBA",
        )

    @classmethod
    def from_file(cls, path):
        try:
            with Image.open(path) as image:
                image.load()
                return cls.from_image(image)
        except OSError as e:
            raise EncodingError(f"Can't load image {path}: {e}") from e

    @classmethod
    def from_struct(cls, struct):
        try:
            width, height, rowstride, has_alpha, bits_per_sample, channels, data = struct
        except (TypeError, ValueError):
            raise EncodingError("image-data must be a 7 field struct") from None
        if channels != (4 if has_alpha else 3):
            raise EncodingError(f"{channels} channels does not match has_alpha={has_alpha}")
        return cls(width, height, data, has_alpha, rowstride, bits_per_sample)

    def to_struct(self):
        return [
            self.width,
            self.height,
            self.rowstride,
            self.has_alpha,
            self.bits_per_sample,
            self.channels,
            self.data,
        ]

    def __eq__(self, other):
        if not isinstance(other, ImageData):
            return NotImplemented
        return self.to_struct() == other.to_struct()

    def __repr__(self):
        return f"ImageData({self.width}x{self.height}, channels={self.channels})"


def infer_kind(value):
    # bool before int, bool is an int subclass
    if isinstance(value, bool):
        return HintType.BOOLEAN
    if isinstance(value, Urgency):
        return HintType.BYTE
    if isinstance(value, int):
        return HintType.INT32
    if isinstance(value, str):
        return HintType.STRING
    if isinstance(value, (bytes, bytearray)):
        return HintType.BYTES
    if isinstance(value, ImageData):
        return HintType.IMAGE
    return None


class Hint:
    """
    A single hint: its name, its value and the wire type it is sent as.
    Known names always get the type the freedesktop spec assigns them.
    """

    __slots__ = ("name", "value", "kind")

    def __init__(self, name, value, kind=None):
        if kind is None:
            kind = KNOWN_HINTS.get(name) or LEGACY_HINTS.get(name) or infer_kind(value)
        self.name = name
        self.value = value
        self.kind = kind

    @classmethod
    def urgency(cls, value):
        return cls("urgency", Urgency.clamp(value), HintType.BYTE)

    @classmethod
    def category(cls, value):
        return cls("category", value, HintType.STRING)

    @classmethod
    def desktop_entry(cls, value):
        return cls("desktop-entry", value, HintType.STRING)

    @classmethod
    def image_path(cls, value):
        return cls("image-path", value, HintType.STRING)

    @classmethod
    def image(cls, value):
        return cls("image-data", value, HintType.IMAGE)

    @classmethod
    def sound_file(cls, value):
        return cls("sound-file", value, HintType.STRING)

    @classmethod
    def suppress_sound(cls, value=True):
        return cls("suppress-sound", value, HintType.BOOLEAN)

    @classmethod
    def transient(cls, value=True):
        return cls("transient", value, HintType.BOOLEAN)

    @classmethod
    def action_icons(cls, value=True):
        return cls("action-icons", value, HintType.BOOLEAN)

    @classmethod
    def resident(cls, value=True):
        return cls("resident", value, HintType.BOOLEAN)

    @classmethod
    def x(cls, value):
        return cls("x", value, HintType.INT32)

    @classmethod
    def y(cls, value):
        return cls("y", value, HintType.INT32)

    @classmethod
    def custom(cls, name, value, kind=None):
        return cls(name, value, kind)

    def copy(self):
        return Hint(self.name, self.value, self.kind)

    def __eq__(self, other):
        if not isinstance(other, Hint):
            return NotImplemented
        return (self.name, self.kind, self.value) == (other.name, other.kind, other.value)

    def __repr__(self):
        kind = self.kind.name if self.kind else None
        return f"Hint({self.name!r}, {self.value!r}, {kind})"


def _check_int(name, value, low, high):
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"Hint {name!r} needs an int, got {type(value).__name__}")
    if not low <= value <= high:
        raise EncodingError(f"Hint {name!r} value {value} is out of range {low}..{high}")
    return int(value)


def encode_hint(hint, name=None):
    """
    Turn a Hint into the Variant sent on the wire.
    `name` is the key it is sent under, the hint's own name by default.
    """
    if name is None:
        name = hint.name
    expected = KNOWN_HINTS.get(name) or LEGACY_HINTS.get(name)
    if hint.kind is None:
        raise EncodingError(
            f"Hint {name!r} has no wire type for a {type(hint.value).__name__} value"
        )
    if expected is not None and hint.kind is not expected:
        raise EncodingError(
            f"Hint {name!r} must be sent as {expected.name}, not {hint.kind.name}"
        )

    kind, value = hint.kind, hint.value
    if kind is HintType.BYTE:
        return Variant("y", _check_int(name, value, 0, 255))
    if kind is HintType.INT32:
        return Variant("i", _check_int(name, value, INT32_MIN, INT32_MAX))
    if kind is HintType.UINT32:
        return Variant("u", _check_int(name, value, 0, UINT32_MAX))
    if kind is HintType.BOOLEAN:
        if not isinstance(value, bool):
            raise EncodingError(f"Hint {name!r} needs a bool, got {type(value).__name__}")
        return Variant("b", value)
    if kind is HintType.STRING:
        if not isinstance(value, str):
            raise EncodingError(f"Hint {name!r} needs a str, got {type(value).__name__}")
        return Variant("s", value)
    if kind is HintType.BYTES:
        if not isinstance(value, (bytes, bytearray)):
            raise EncodingError(f"Hint {name!r} needs bytes, got {type(value).__name__}")
        return Variant("ay", bytes(value))

    if isinstance(value, (list, tuple)):
        value = ImageData.from_struct(value)
    if not isinstance(value, ImageData):
        raise EncodingError(f"Hint {name!r} needs ImageData, got {type(value).__name__}")
    return Variant(HintType.IMAGE.value, value.to_struct())


def encode_hints(notification):
    """
    Build the a{sv} hints map for a notification.
    The urgency hint is always present and always a level from 0 to 2.
    """
    encoded = {}
    for name, hint in notification.hints.items():
        if not isinstance(hint, Hint):
            hint = Hint(name, hint)
        if name == "urgency":
            if hint.kind is not HintType.BYTE:
                raise EncodingError(f"Hint 'urgency' must be sent as BYTE, not {hint.kind}")
            continue
        encoded[name] = encode_hint(hint, name)
    # notification.urgency reads a hint set directly under "urgency"
    encoded["urgency"] = Variant("y", int(notification.urgency))
    logger.debug("Encoded hints: %s", sorted(encoded))
    return encoded


def decode_hints(hints):
    """Turn an a{sv} map back into Hints"""
    decoded = {}
    for name, variant in hints.items():
        try:
            kind = HintType(variant.signature)
        except ValueError:
            raise EncodingError(
                f"Hint {name!r} has unsupported type {variant.signature!r}"
            ) from None
        value = variant.value
        if kind is HintType.IMAGE:
            value = ImageData.from_struct(value)
        elif kind is HintType.BYTES:
            value = bytes(value)
        elif name == "urgency" and kind is HintType.BYTE:
            value = Urgency.clamp(value)
        decoded[name] = Hint(name, value, kind)
    return decoded
