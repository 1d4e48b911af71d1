"""Batch categorization of stored publications."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from curator.agents.categorizer import Categorizer
from curator.core.config import CategorizationConfig
from curator.core.database import PublicationStore
from curator.core.run_state import CATEGORIZATION_COUNTERS, RunState

logger = logging.getLogger(__name__)

FILTERS = ("all", "uncategorized", "pending", "approved")


class BatchCategorizer:
    """Suggest categories for stored publications in bounded concurrent groups."""

    def __init__(
        self,
        store: PublicationStore,
        categorizer: Categorizer,
        config: CategorizationConfig,
        state: Optional[RunState] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.categorizer = categorizer
        self.config = config
        self.state = state or RunState("categorization", CATEGORIZATION_COUNTERS)
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    def select(self, filter: str) -> list[dict]:
        if filter not in FILTERS:
            raise ValueError(f"Invalid filter: {filter} (valid: {', '.join(FILTERS)})")
        if filter == "all":
            return self.store.get_all_publications()
        if filter == "uncategorized":
            return self.store.get_uncategorized()
        return self.store.get_publications_by_status(filter)

    def start(self, filter: str = "uncategorized") -> asyncio.Task:
        """Claim the run state and categorize in a background task."""
        pubs = self.select(filter)
        self.state.start(filter, total=len(pubs))
        self._task = asyncio.create_task(self._execute(pubs))
        return self._task

    async def run(self, filter: str = "uncategorized") -> dict:
        pubs = self.select(filter)
        self.state.start(filter, total=len(pubs))
        await self._execute(pubs)
        return self.state.snapshot()

    async def _execute(self, pubs: list[dict]) -> None:
        try:
            size = self.config.batch_size
            for start in range(0, len(pubs), size):
                batch = pubs[start : start + size]
                outcomes = await asyncio.gather(
                    *(self._categorize_one(p) for p in batch), return_exceptions=True
                )
                for pub, outcome in zip(batch, outcomes):
                    if isinstance(outcome, Exception):
                        logger.warning("Categorization failed for %s: %s", pub["external_id"], outcome)
                        self.state.increment("failed")
                    else:
                        self.state.increment(outcome)

                done = start + len(batch)
                self.state.update_progress(done, current_item=batch[-1]["title"][:80])
                if done < len(pubs):
                    await self._sleep(self.config.batch_delay)
            self.state.complete()
        except Exception as exc:
            logger.error("Categorization run failed: %s", exc, exc_info=True)
            self.state.fail(str(exc))

    async def _categorize_one(self, pub: dict) -> str:
        """Store suggestions for one publication. Returns the outcome counter."""
        if pub.get("category_review_status") == "pending_review" and pub.get("suggested_categories"):
            return "skipped"

        suggestions = await self.categorizer.suggest(
            pub["title"], pub.get("abstract"), use_ml=self.config.use_ml
        )
        if not suggestions:
            return "skipped"

        review_status = (
            "auto_approved"
            if any(s.confidence >= self.config.auto_approve_threshold for s in suggestions)
            else "pending_review"
        )
        self.store.update_suggested_categories(pub["id"], suggestions, review_status)
        return "successful"
