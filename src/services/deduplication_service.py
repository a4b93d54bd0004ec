"""Deduplication of generated list items against already persisted content.

The existing-ID snapshot (the "dedup set") is taken when a generation job is
prepared; only the final batch produced by the model is filtered, partial
updates are forwarded to the client untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, TypeVar


logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")


def _item_key(item: Any, key: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


def collect_existing_ids(items: Iterable[Any] | None, *, key: str = "id") -> set[str]:
    """Build the dedup set from persisted items.

    Items without an identifier are ignored.
    """
    ids: set[str] = set()
    for item in items or ():
        value = _item_key(item, key)
        if value is not None:
            ids.add(str(value))
    return ids


def filter_new_items(
    candidates: Iterable[ItemT],
    existing_ids: set[str] | frozenset[str],
    *,
    key: str = "id",
) -> list[ItemT]:
    """Return the candidates whose identifier is not already known.

    Order is preserved. A repeat of an identifier seen earlier in the same
    batch is dropped as well, so applying the filter to its own output is a
    no-op.

    Returns:
        The new items, in their original order.
    """
    seen = set(existing_ids)
    kept: list[ItemT] = []
    dropped = 0
    for item in candidates:
        value = _item_key(item, key)
        identifier = str(value) if value is not None else None
        if identifier is not None and identifier in seen:
            dropped += 1
            continue
        if identifier is not None:
            seen.add(identifier)
        kept.append(item)

    if dropped:
        logger.debug("Dropped %d duplicate item(s) from generated batch", dropped)
    return kept
