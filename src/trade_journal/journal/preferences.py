"""Consolidation display preference.

One persisted boolean per process (default on).  Components that render the
journal subscribe to be told when it flips instead of re-reading it.
"""

from __future__ import annotations

import logging
from typing import Callable

from trade_journal.core.interfaces import IPreferenceStore

logger = logging.getLogger(__name__)

CONSOLIDATE_PARTIALS_KEY = "journal.consolidate_partials"

Listener = Callable[[bool], None]


class ConsolidationPreference:
    """Persisted "consolidate partial exits" toggle with change listeners."""

    def __init__(self, store: IPreferenceStore, *, default: bool = True) -> None:
        self._store = store
        self._default = default
        self._listeners: list[Listener] = []

    async def get(self) -> bool:
        raw = await self._store.get_preference(CONSOLIDATE_PARTIALS_KEY)
        if raw is None:
            return self._default
        return raw == "true"

    async def set(self, value: bool) -> None:
        """Persist *value*; listeners are notified only when it changes."""
        previous = await self.get()
        await self._store.set_preference(CONSOLIDATE_PARTIALS_KEY, "true" if value else "false")
        if previous != value:
            self._notify(value)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; call the returned function to unsubscribe."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, value: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Consolidation preference listener failed")
