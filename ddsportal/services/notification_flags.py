"""
Notification bitmask codec.

Each notification category is one bit of a single integer column. The
category-to-bit mapping lives in NotificationType; the codec itself only
knows about bits.
"""
import enum
from typing import List, Union

Bit = Union[int, "NotificationType"]


class NotificationType(enum.IntFlag):
    """Notification categories a user can opt in or out of."""
    DISTRIBUTION_CREATED = 1    # 2^0
    DISTRIBUTION_VERIFIED = 2   # 2^1
    DISTRIBUTION_RECEIVED = 4   # 2^2


# All notifications enabled by default
DEFAULT_NOTIFICATION_MASK = int(
    NotificationType.DISTRIBUTION_CREATED
    | NotificationType.DISTRIBUTION_VERIFIED
    | NotificationType.DISTRIBUTION_RECEIVED
)


def _check_bit(bit: Bit) -> int:
    if isinstance(bit, bool) or not isinstance(bit, int) or bit <= 0:
        raise ValueError(f"Notification bit must be a positive integer, got {bit!r}")
    return int(bit)


def has_enabled(mask: int, bit: Bit) -> bool:
    return (mask & _check_bit(bit)) != 0


def set_bit(mask: int, bit: Bit) -> int:
    return mask | _check_bit(bit)


def clear_bit(mask: int, bit: Bit) -> int:
    return mask & ~_check_bit(bit)


class NotificationMask:
    """Immutable typed wrapper over a non-negative notification bitmask."""

    __slots__ = ("_value",)

    def __init__(self, value: int = DEFAULT_NOTIFICATION_MASK):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"Notification mask must be a non-negative integer, got {value!r}")
        self._value = int(value)

    @property
    def value(self) -> int:
        return self._value

    def has_enabled(self, bit: Bit) -> bool:
        return has_enabled(self._value, bit)

    def set_bit(self, bit: Bit) -> "NotificationMask":
        return NotificationMask(set_bit(self._value, bit))

    def clear_bit(self, bit: Bit) -> "NotificationMask":
        return NotificationMask(clear_bit(self._value, bit))

    def enabled_flags(self) -> List[NotificationType]:
        """Known categories whose bit is set."""
        return [flag for flag in NotificationType if self._value & flag]

    def __int__(self) -> int:
        return self._value

    def __eq__(self, other) -> bool:
        if isinstance(other, NotificationMask):
            return self._value == other._value
        if isinstance(other, int) and not isinstance(other, bool):
            return self._value == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __repr__(self) -> str:
        return f"NotificationMask({self._value:#05b})"
