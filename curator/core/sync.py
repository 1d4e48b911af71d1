"""Windowed full/incremental sync from PMC into the publication store."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import AsyncIterator, Callable, Optional

from curator.agents.categorizer import Categorizer
from curator.core.config import CuratorConfig
from curator.core.database import PublicationStore
from curator.core.run_state import (
    ABSTRACT_REFRESH_COUNTERS,
    SYNC_COUNTERS,
    RunState,
)
from curator.parsers.pmc_xml import parse_article
from curator.search.dedup import dedupe_ids, deduplicate
from curator.search.models import PublicationRecord
from curator.search.pmc import DateRange, PmcClient, SourceError

logger = logging.getLogger(__name__)

MODES = ("full", "incremental")

# (term, date range or None for the undated catch-all)
SearchStep = tuple[str, Optional[DateRange]]


@dataclass
class SyncBatch:
    """Records produced by one search step, already deduplicated for the run."""

    phase: str
    index: int
    total: int
    records: list[PublicationRecord]
    unique_total: int


# ── Orchestrator ─────────────────────────────────────────────────────


class SyncOrchestrator:
    """Drives search → fetch → parse → dedup → persist for one run at a time."""

    def __init__(
        self,
        client: PmcClient,
        store: PublicationStore,
        config: CuratorConfig,
        state: Optional[RunState] = None,
        categorizer: Optional[Categorizer] = None,
        today: Callable[[], date] = date.today,
    ):
        self.client = client
        self.store = store
        self.config = config
        self.state = state or RunState(
            "sync", SYNC_COUNTERS, config.run_state.cooldown_seconds
        )
        self.categorizer = categorizer or Categorizer(config.search.keyword_terms)
        self._today = today
        self._task: Optional[asyncio.Task] = None

    # ── Planning ─────────────────────────────────────────────

    def year_windows(self, current_year: Optional[int] = None) -> list[tuple[int, int]]:
        """Fixed-width year windows from the floor year, the last one clipped."""
        current_year = current_year or self._today().year
        width = self.config.search.window_years
        return [
            (start, min(start + width - 1, current_year))
            for start in range(self.config.search.floor_year, current_year + 1, width)
        ]

    def full_plan(self, current_year: Optional[int] = None) -> list[SearchStep]:
        """Every window for every term, each term ending with an undated search."""
        steps: list[SearchStep] = []
        for term in self.config.search.terms:
            for y1, y2 in self.year_windows(current_year):
                steps.append((term, (date(y1, 1, 1), date(y2, 12, 31))))
            steps.append((term, None))
        return steps

    def incremental_plan(self, since: Optional[date] = None) -> list[SearchStep]:
        today = self._today()
        since = since or self.store.latest_publication_date() or today - timedelta(days=365)
        return [(term, (since, today)) for term in self.config.search.terms]

    # ── Batches ──────────────────────────────────────────────

    async def iter_batches(
        self,
        max_per_term: Optional[int] = None,
        plan: Optional[list[SearchStep]] = None,
    ) -> AsyncIterator[SyncBatch]:
        """Yield one deduplicated batch per search step.

        Single pass: IDs seen earlier in the run are neither fetched nor
        yielded again. A step whose search or fetch fails yields an empty
        batch and the run moves on.
        """
        max_per_term = max_per_term or self.config.search.max_per_term
        plan = plan if plan is not None else self.full_plan()
        seen_uids: set[str] = set()
        seen_ids: set[str] = set()

        for index, (term, window) in enumerate(plan, start=1):
            phase = _phase_label(term, window)
            self.state.update_phase(phase)

            elements = []
            try:
                result = await self.client.search(term, max_per_term, date_range=window)
                new_uids = dedupe_ids(result.ids, seen_uids)
                if new_uids:
                    self.state.update_phase(
                        f"fetching batch {index}/{len(plan)} ({len(new_uids)} records)"
                    )
                    fetched = await self.client.fetch_batches(new_uids)
                    elements = fetched.articles
                    # failed UIDs stay unseen so a later step can retry them
                    failed = set(fetched.failed_ids)
                    new_uids = [uid for uid in new_uids if uid not in failed]
                seen_uids.update(new_uids)
            except SourceError as exc:
                logger.warning("%s failed, batch skipped: %s", phase, exc)

            records = [
                rec
                for rec in (parse_article(el, self.categorizer) for el in elements)
                if rec is not None
            ]
            dedup = deduplicate(records, seen_ids)
            seen_ids.update(rec.external_id for rec in dedup.unique)

            logger.info(
                "%s: %d parsed, %d new (%d unique so far)",
                phase,
                len(records),
                len(dedup.unique),
                len(seen_ids),
            )
            yield SyncBatch(
                phase=phase,
                index=index,
                total=len(plan),
                records=dedup.unique,
                unique_total=len(seen_ids),
            )

    async def full_sync(self, max_per_term: Optional[int] = None) -> list[PublicationRecord]:
        """Accumulate every unique record across all terms and windows."""
        records: list[PublicationRecord] = []
        async for batch in self.iter_batches(max_per_term, self.full_plan()):
            records.extend(batch.records)
        return records

    async def incremental_sync(
        self, max_per_term: Optional[int] = None, since: Optional[date] = None
    ) -> list[PublicationRecord]:
        """Records published between ``since`` (default: latest stored) and today."""
        records: list[PublicationRecord] = []
        async for batch in self.iter_batches(max_per_term, self.incremental_plan(since)):
            records.extend(batch.records)
        return records

    # ── Runs ─────────────────────────────────────────────────

    def start(self, mode: str, max_per_term: Optional[int] = None) -> asyncio.Task:
        """Claim the run state and continue in a background task.

        Must be called from a running event loop. Raises RunConflictError
        if a sync is already running.
        """
        _check_mode(mode)
        self.state.start(f"{mode} sync")
        self._task = asyncio.create_task(self._execute(mode, max_per_term))
        return self._task

    async def run(self, mode: str, max_per_term: Optional[int] = None) -> dict:
        """Run a sync to completion and return the final state snapshot."""
        _check_mode(mode)
        self.state.start(f"{mode} sync")
        await self._execute(mode, max_per_term)
        return self.state.snapshot()

    async def _execute(self, mode: str, max_per_term: Optional[int]) -> None:
        try:
            plan = self.full_plan() if mode == "full" else self.incremental_plan()
            self.state.update_progress(0, total=len(plan))
            async for batch in self.iter_batches(max_per_term, plan):
                self.persist(batch.records)
                self.state.update_progress(batch.index, current_item=batch.phase)
            self.state.complete()
        except Exception as exc:
            logger.error("Sync (%s) failed: %s", mode, exc, exc_info=True)
            self.state.fail(str(exc))

    def persist(self, records: list[PublicationRecord]) -> dict[str, int]:
        """Upsert by external ID.

        New records are inserted. Stored ones get their bibliographic fields
        refreshed and count as skipped. A record that fails to store is
        logged and counted as failed without stopping the rest.
        """
        counts = {name: 0 for name in SYNC_COUNTERS}
        for rec in records:
            try:
                if self.store.has_external_id(rec.external_id):
                    self.store.refresh_publication(rec.external_id, rec)
                    counts["skipped"] += 1
                    continue
                if self.store.add_publication(rec) is None:
                    counts["skipped"] += 1
                    continue
            except Exception as exc:
                logger.warning("Could not store %s: %s", rec.external_id, exc, exc_info=True)
                counts["failed"] += 1
                continue
            counts["imported"] += 1
            counts[rec.status] += 1

        for name, amount in counts.items():
            if amount:
                self.state.increment(name, amount)
        return counts


# ── Abstract Refresh ─────────────────────────────────────────────────


class AbstractRefresher:
    """Re-fetch abstracts for stored publications that have none."""

    def __init__(
        self,
        client: PmcClient,
        store: PublicationStore,
        config: CuratorConfig,
        state: Optional[RunState] = None,
    ):
        self.client = client
        self.store = store
        self.config = config
        self.state = state or RunState(
            "abstract_refresh", ABSTRACT_REFRESH_COUNTERS, config.run_state.cooldown_seconds
        )
        self._task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        missing = self.store.publications_missing_abstract()
        self.state.start("abstract refresh", total=len(missing))
        self._task = asyncio.create_task(self._execute(missing))
        return self._task

    async def run(self) -> dict:
        missing = self.store.publications_missing_abstract()
        self.state.start("abstract refresh", total=len(missing))
        await self._execute(missing)
        return self.state.snapshot()

    async def _execute(self, missing: list[dict]) -> None:
        try:
            size = self.config.source.fetch_batch_size
            for start in range(0, len(missing), size):
                await self._refresh_chunk(missing[start : start + size])
                self.state.update_progress(min(start + size, len(missing)))
            self.state.complete()
        except Exception as exc:
            logger.error("Abstract refresh failed: %s", exc, exc_info=True)
            self.state.fail(str(exc))

    async def _refresh_chunk(self, pubs: list[dict]) -> None:
        by_accession = {p["accession_number"]: p for p in pubs}
        try:
            elements = await self.client.fetch_details(list(by_accession))
        except SourceError as exc:
            logger.warning("Abstract refresh fetch failed: %s", exc)
            self.state.increment("failed", len(pubs))
            return

        updated = 0
        for el in elements:
            rec = parse_article(el)
            if rec is None or not rec.abstract:
                continue
            pub = by_accession.get(rec.accession_number)
            if pub is None:
                continue
            self.store.update_abstract(pub["id"], rec.abstract)
            updated += 1

        self.state.increment("updated", updated)
        self.state.increment("failed", len(pubs) - updated)


# ── Helpers ──────────────────────────────────────────────────────────


def _phase_label(term: str, window: Optional[DateRange]) -> str:
    if window is None:
        return f"catch-all undated search for {term!r}"
    start, end = window
    if start.month == 1 and start.day == 1 and end.month == 12 and end.day == 31:
        return f"searching window {start.year}–{end.year} for {term!r}"
    return f"searching {start.isoformat()} to {end.isoformat()} for {term!r}"


def _check_mode(mode: str) -> None:
    if mode not in MODES:
        raise ValueError(f"Invalid sync mode: {mode} (valid: {', '.join(MODES)})")
