"""Tests for external-ID deduplication."""

from datetime import date

from curator.search.dedup import DedupResult, dedupe_ids, deduplicate
from curator.search.models import PublicationRecord


# ── Factories ────────────────────────────────────────────────────────


def _rec(external_id="111", title="Study A", **kw):
    return PublicationRecord(
        external_id=external_id,
        title=title,
        authors="Smith J",
        publication_date=date(2020, 1, 1),
        doi=f"10.1000/{external_id}",
        **kw,
    )


# ── Batch ────────────────────────────────────────────────────────────


def test_first_occurrence_wins():
    batch = [_rec("1", title="First"), _rec("1", title="Second"), _rec("2")]
    result = deduplicate(batch)
    assert isinstance(result, DedupResult)
    assert [r.external_id for r in result.unique] == ["1", "2"]
    assert result.unique[0].title == "First"
    assert result.duplicates == ["1"]
    assert result.stats == {"input_total": 3, "duplicates_found": 1, "unique_total": 2}


def test_seen_ids_are_dropped():
    result = deduplicate([_rec("1"), _rec("2")], seen={"1"})
    assert [r.external_id for r in result.unique] == ["2"]


def test_seen_set_is_not_mutated():
    seen = {"9"}
    deduplicate([_rec("1"), _rec("2")], seen=seen)
    assert seen == {"9"}


def test_idempotent():
    batch = [_rec("1"), _rec("2"), _rec("1"), _rec("3")]
    seen = {"3"}
    once = deduplicate(batch, seen)
    twice = deduplicate(once.unique, seen)
    assert [r.external_id for r in twice.unique] == [r.external_id for r in once.unique]
    assert twice.stats["duplicates_found"] == 0


def test_matching_is_exact():
    # No fuzzy matching: same title, different IDs are both kept.
    result = deduplicate([_rec("1", title="Same"), _rec("2", title="Same")])
    assert result.stats["unique_total"] == 2


def test_empty_batch():
    result = deduplicate([])
    assert result.unique == []
    assert result.stats["input_total"] == 0


# ── Raw IDs ──────────────────────────────────────────────────────────


def test_dedupe_ids_preserves_order():
    assert dedupe_ids(["3", "1", "3", "2", "1"]) == ["3", "1", "2"]
    assert dedupe_ids(["3", "1", "2"], seen={"1"}) == ["3", "2"]
