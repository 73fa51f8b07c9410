"""Journal views and annotations."""

from .annotations import JournalAnnotator
from .consolidation import ConsolidatedTrade, PartialLeg, consolidate, journal_view
from .preferences import ConsolidationPreference

__all__ = [
    "ConsolidatedTrade",
    "ConsolidationPreference",
    "JournalAnnotator",
    "PartialLeg",
    "consolidate",
    "journal_view",
]
