"""Fill-to-trade matching."""

from .matcher import MatchResult, PositionMatcher

__all__ = ["MatchResult", "PositionMatcher"]
