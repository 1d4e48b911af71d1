"""Deduplicate publication records by external ID."""

import logging
from typing import Iterable

from pydantic import BaseModel

from curator.search.models import PublicationRecord

logger = logging.getLogger(__name__)


# ── Result Model ─────────────────────────────────────────────────────


class DedupResult(BaseModel):
    """Result of deduplicating one batch against previously seen IDs."""

    unique: list[PublicationRecord]
    duplicates: list[str]  # external IDs dropped
    stats: dict


# ── Public API ───────────────────────────────────────────────────────


def deduplicate(
    records: Iterable[PublicationRecord],
    seen: frozenset[str] | set[str] = frozenset(),
) -> DedupResult:
    """Drop records whose external ID is in ``seen`` or earlier in the batch.

    The first occurrence wins. ``seen`` is never modified; callers merge
    ``result.unique`` into their own seen-set.
    """
    batch_ids: set[str] = set()
    unique: list[PublicationRecord] = []
    duplicates: list[str] = []
    total = 0

    for rec in records:
        total += 1
        key = rec.external_id
        if key in seen or key in batch_ids:
            duplicates.append(key)
            continue
        batch_ids.add(key)
        unique.append(rec)

    stats = {
        "input_total": total,
        "duplicates_found": len(duplicates),
        "unique_total": len(unique),
    }

    logger.debug(
        "Deduplication: %d records → %d unique (%d duplicates removed)",
        stats["input_total"],
        stats["unique_total"],
        stats["duplicates_found"],
    )

    return DedupResult(unique=unique, duplicates=duplicates, stats=stats)


def dedupe_ids(ids: Iterable[str], seen: frozenset[str] | set[str] = frozenset()) -> list[str]:
    """Order-preserving de-duplication of raw source IDs."""
    out: list[str] = []
    batch: set[str] = set()
    for uid in ids:
        if uid in seen or uid in batch:
            continue
        batch.add(uid)
        out.append(uid)
    return out
