"""Tests for batch categorization runs."""

import asyncio
from datetime import date
from unittest.mock import AsyncMock

import pytest

from conftest import no_sleep_recorder
from curator.agents.batch import BatchCategorizer
from curator.agents.categorizer import Categorizer
from curator.agents.models import SuggestedCategory
from curator.core.config import CategorizationConfig
from curator.core.database import PublicationStore
from curator.core.run_state import CATEGORIZATION_COUNTERS, RunConflictError, RunState
from curator.search.models import UNTITLED, PublicationRecord


@pytest.fixture()
def store(tmp_path):
    s = PublicationStore(tmp_path / "pubs.db")
    yield s
    s.close()


def _rec(external_id, title, **kw):
    return PublicationRecord(
        external_id=external_id,
        title=title,
        authors="Smith J",
        publication_date=date(2020, 1, 1),
        doi=f"10.1/{external_id}",
        **kw,
    )


def _batch(store, categorizer=None, **config_kw):
    sleep, delays = no_sleep_recorder()
    config = CategorizationConfig(batch_size=2, batch_delay=0.2, **config_kw)
    runner = BatchCategorizer(
        store,
        categorizer or Categorizer(),
        config,
        RunState("categorization", CATEGORIZATION_COUNTERS),
        sleep=sleep,
    )
    return runner, delays


# ── Selection ────────────────────────────────────────────────────────


def test_filters(store):
    store.add_publication(_rec("1", "Hypertension and blood pressure"))
    store.add_publication(_rec("2", UNTITLED))
    store.add_publication(_rec("3", "Tagged", categories=["Longevity"]))
    runner, _ = _batch(store)

    assert len(runner.select("all")) == 3
    assert {p["external_id"] for p in runner.select("pending")} == {"2"}
    assert {p["external_id"] for p in runner.select("approved")} == {"1", "3"}
    assert {p["external_id"] for p in runner.select("uncategorized")} == {"1", "2"}
    with pytest.raises(ValueError):
        runner.select("rejected-ish")


# ── Runs ─────────────────────────────────────────────────────────────


def test_run_counts_outcomes_and_sleeps_between_batches(store):
    store.add_publication(_rec("1", "Hypertension and blood pressure"))
    store.add_publication(_rec("2", "Heart failure registry"))
    store.add_publication(_rec("3", "Ocular pressure in glaucoma"))
    runner, delays = _batch(store)

    snapshot = asyncio.run(runner.run("all"))

    assert snapshot["status"] == "completed"
    assert snapshot["counters"] == {"successful": 2, "failed": 0, "skipped": 1}
    assert snapshot["processed"] == 3
    assert delays == [0.2]

    hyp = store.get_by_external_id("1")
    assert hyp["category_review_status"] == "auto_approved"
    assert hyp["categories"] == ["Hypertension"]
    hf = store.get_by_external_id("2")
    assert hf["category_review_status"] == "pending_review"
    assert hf["categories"] == []


def test_pending_suggestions_are_skipped(store):
    pub_id = store.add_publication(_rec("1", "Heart failure registry"))
    store.update_suggested_categories(
        pub_id, [SuggestedCategory(category="Heart Failure", confidence=0.75, source="keyword")]
    )
    runner, _ = _batch(store)
    snapshot = asyncio.run(runner.run("all"))
    assert snapshot["counters"]["skipped"] == 1


def test_one_failure_does_not_cancel_siblings(store):
    store.add_publication(_rec("1", "Hypertension and blood pressure"))
    store.add_publication(_rec("2", "Heart failure registry"))

    categorizer = AsyncMock()

    async def suggest(title, abstract, use_ml=True):
        if title.startswith("Heart"):
            raise RuntimeError("classifier crashed")
        return [SuggestedCategory(category="Hypertension", confidence=0.9, source="ml")]

    categorizer.suggest.side_effect = suggest
    runner, _ = _batch(store, categorizer)
    snapshot = asyncio.run(runner.run("all"))

    assert snapshot["status"] == "completed"
    assert snapshot["counters"] == {"successful": 1, "failed": 1, "skipped": 0}


def test_use_ml_flag_forwarded(store):
    store.add_publication(_rec("1", "Hypertension"))
    categorizer = AsyncMock()
    categorizer.suggest.return_value = []
    runner, _ = _batch(store, categorizer, use_ml=True)
    asyncio.run(runner.run("all"))
    assert categorizer.suggest.call_args.kwargs["use_ml"] is True


def test_start_conflict(store):
    store.add_publication(_rec("1", "Hypertension"))
    runner, _ = _batch(store)

    async def scenario():
        task = runner.start("all")
        with pytest.raises(RunConflictError):
            runner.start("pending")
        await task

    asyncio.run(scenario())
    assert runner.state.status == "completed"
