"""Identifier and timestamp helpers.

Three kinds of id appear in the journal:

* random UUID4 strings for entities the journal creates (mistakes, sync
  correlation ids);
* opaque broker ids carried through unchanged (``order_id``, ``fill_id``);
* ids derived from content, so replaying the same fills reproduces them:
  ``trade_key`` and ``position_id`` are SHA256 prefixes, and a trade's
  ``id`` is the uuid5 of its ``trade_key``.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone


def new_id() -> str:
    """Generate a new UUID v4 string.  Use for all internal entity IDs."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


_TRADE_NAMESPACE = uuid.UUID("6f1c2d1e-6b0a-4d5e-9a57-3f0f3b1c7e21")


def key_to_uuid(key: str) -> str:
    """Map a content-derived key to a stable UUID string (uuid5)."""
    return str(uuid.uuid5(_TRADE_NAMESPACE, key))


def content_hash(*parts: str, length: int = 24) -> str:
    """Generate a deterministic SHA256-based ID from content strings.

    Use for deduplication keys and idempotency keys.
    Concatenates all *parts* with ``':'`` before hashing.

    Parameters
    ----------
    *parts:
        Strings to hash together.
    length:
        Number of hex characters to return (default 24).
    """
    raw = ":".join(parts)
    return hashlib.sha256(raw.encode()).hexdigest()[:length]
