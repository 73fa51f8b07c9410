"""Trade annotations: mistakes, playbooks, grades, emotions, notes, tags.

Annotations never change a trade's economics.  Every write goes through
:meth:`IJournalStore.update_trade_annotations`, which rejects economic
fields with :class:`~trade_journal.core.errors.AnnotationError`.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from trade_journal.core.enums import Emotion, Grade
from trade_journal.core.errors import AnnotationError
from trade_journal.core.interfaces import IJournalStore
from trade_journal.core.models import Mistake, Trade

logger = logging.getLogger(__name__)


class JournalAnnotator:
    """Annotation operations over a journal store."""

    def __init__(self, store: IJournalStore) -> None:
        self._store = store

    async def annotate(self, trade_id: str, **changes: Any) -> Trade:
        return await self._store.update_trade_annotations(trade_id, changes)

    # -- Mistakes ------------------------------------------------------------

    async def tag_mistake(
        self,
        trade_id: str,
        mistake_type: str,
        *,
        description: str = "",
        severity: int = 2,
    ) -> Mistake:
        """Attach a mistake and flag the trade."""
        if not mistake_type.strip():
            raise AnnotationError("mistake_type is required")
        mistake = await self._store.add_mistake(Mistake(
            trade_id=trade_id,
            mistake_type=mistake_type.strip(),
            description=description,
            severity=severity,
        ))
        await self._store.update_trade_annotations(trade_id, {"is_mistake": True})
        logger.info("Tagged trade %s with mistake %s", trade_id, mistake.mistake_type)
        return mistake

    async def remove_mistake(self, mistake_id: str) -> Trade:
        """Delete a mistake; the trade's flag clears when none remain."""
        mistake = await self._store.delete_mistake(mistake_id)
        remaining = await self._store.list_mistakes(mistake.trade_id)
        if remaining:
            return await self._store.get_trade(mistake.trade_id)
        return await self._store.update_trade_annotations(
            mistake.trade_id, {"is_mistake": False},
        )

    # -- Playbooks, grade, emotion, notes, tags ------------------------------

    async def link_playbooks(self, trade_id: str, playbook_ids: Iterable[str]) -> Trade:
        """Replace the trade's playbook links (blanks dropped, de-duplicated)."""
        return await self.annotate(trade_id, playbook_ids=list(playbook_ids))

    async def grade_trade(self, trade_id: str, grade: Grade | str | None) -> Trade:
        return await self.annotate(trade_id, grade=grade)

    async def set_emotion(self, trade_id: str, emotion: Emotion | str | None) -> Trade:
        return await self.annotate(trade_id, emotion=emotion)

    async def set_notes(self, trade_id: str, notes: str) -> Trade:
        return await self.annotate(trade_id, notes=notes)

    async def set_tags(self, trade_id: str, tags: Iterable[str]) -> Trade:
        cleaned = list(dict.fromkeys(t.strip() for t in tags if t and t.strip()))
        return await self.annotate(trade_id, tags=cleaned)

    async def delete_trade(self, trade_id: str) -> None:
        await self._store.delete_trade(trade_id)
        logger.info("Deleted trade %s", trade_id)
