"""Enumerations used across the trade journal."""

from enum import Enum


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def sign(self) -> int:
        return 1 if self is Side.BUY else -1

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"

    @classmethod
    def from_fill_side(cls, side: Side) -> "PositionSide":
        return cls.LONG if side is Side.BUY else cls.SHORT

    @property
    def sign(self) -> int:
        return 1 if self is PositionSide.LONG else -1


class Environment(str, Enum):
    """Broker endpoint selector."""

    DEMO = "demo"
    LIVE = "live"


class SyncPhase(str, Enum):
    """Per-account sync state machine."""

    IDLE = "idle"
    FETCHING = "fetching"
    MATCHING = "matching"
    UPSERTING = "upserting"


class SyncStatus(str, Enum):
    NEVER = "never"
    SUCCESS = "success"
    FAILED = "failed"


class Grade(str, Enum):
    A_PLUS = "A+"
    A = "A"
    B = "B"
    C = "C"
    D = "D"


class Emotion(str, Enum):
    CALM = "calm"
    FOMO = "fomo"
    REVENGE = "revenge"
    CONFIDENT = "confident"
    ANXIOUS = "anxious"
    NEUTRAL = "neutral"
