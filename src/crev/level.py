"""Review levels used for thoroughness, understanding and trust."""

from __future__ import annotations

from enum import Enum


class Level(Enum):
    """Ordered rating level.

    Serialized lowercase in proofs. Ordering follows declaration:
    NONE < LOW < MEDIUM < HIGH.
    """

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_string(cls, value: str) -> Level:
        """Parse level from string (case-insensitive)."""
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown level: {value}")

    @property
    def rank(self) -> int:
        return _ORDER[self]

    def __lt__(self, other: Level) -> bool:
        if not isinstance(other, Level):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: Level) -> bool:
        if not isinstance(other, Level):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: Level) -> bool:
        if not isinstance(other, Level):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: Level) -> bool:
        if not isinstance(other, Level):
            return NotImplemented
        return self.rank >= other.rank


_ORDER = {
    Level.NONE: 0,
    Level.LOW: 1,
    Level.MEDIUM: 2,
    Level.HIGH: 3,
}
