"""Validation of annotation edits shared by the store implementations."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError

from trade_journal.core.errors import AnnotationError
from trade_journal.core.models import ECONOMIC_FIELDS, Trade

ANNOTATION_FIELDS = frozenset({
    "is_mistake",
    "playbook_ids",
    "grade",
    "emotion",
    "notes",
    "tags",
    "prop_firm_account_id",
})


def apply_annotation_changes(trade: Trade, changes: Mapping[str, Any]) -> Trade:
    """Return *trade* with *changes* applied and re-validated.

    Raises :class:`AnnotationError` for economic, identity or unknown fields
    and for values that fail validation.
    """
    economic = sorted((set(changes) & ECONOMIC_FIELDS) | ({"id"} & set(changes)))
    if economic:
        raise AnnotationError(f"Economic fields are immutable: {', '.join(economic)}")
    unknown = sorted(set(changes) - ANNOTATION_FIELDS)
    if unknown:
        raise AnnotationError(f"Unknown annotation fields: {', '.join(unknown)}")
    try:
        return Trade.model_validate({**trade.model_dump(), **changes})
    except ValidationError as exc:
        raise AnnotationError(f"Invalid annotation: {exc.errors()[0].get('msg')}") from exc
