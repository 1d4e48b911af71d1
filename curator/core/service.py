"""In-process entry points for route handlers and the CLI."""

import logging
import time
from pathlib import Path
from typing import Callable, Optional

from curator.agents.batch import BatchCategorizer
from curator.agents.categorizer import Categorizer
from curator.agents.classifier import OllamaClassifier
from curator.core.config import CuratorConfig
from curator.core.database import PublicationStore
from curator.core.run_state import (
    ABSTRACT_REFRESH_COUNTERS,
    CATEGORIZATION_COUNTERS,
    SYNC_COUNTERS,
    RunState,
)
from curator.core.sync import AbstractRefresher, SyncOrchestrator
from curator.search.pmc import PmcClient
from curator.search.reconcile import Reconciler

logger = logging.getLogger(__name__)


class CurationService:
    """Owns one run state per run kind and the components that drive them.

    ``start_*`` methods return an acknowledgement as soon as the run is
    scheduled and raise RunConflictError when a run of the same kind is
    already active. Callers turn that into a 409-style failure.
    """

    def __init__(
        self,
        config: CuratorConfig,
        store: PublicationStore,
        client: PmcClient,
        categorizer: Optional[Categorizer] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.store = store
        self.client = client
        self.categorizer = categorizer or build_categorizer(config)

        cooldown = config.run_state.cooldown_seconds
        self.sync_state = RunState("sync", SYNC_COUNTERS, cooldown, clock)
        self.categorization_state = RunState(
            "categorization", CATEGORIZATION_COUNTERS, cooldown, clock
        )
        self.abstract_state = RunState(
            "abstract_refresh", ABSTRACT_REFRESH_COUNTERS, cooldown, clock
        )

        self.orchestrator = SyncOrchestrator(
            client, store, config, self.sync_state, self.categorizer
        )
        self.batch = BatchCategorizer(
            store, self.categorizer, config.categorization, self.categorization_state
        )
        self.refresher = AbstractRefresher(client, store, config, self.abstract_state)
        self.reconciler = Reconciler(client, store, config, self.categorizer)

    @classmethod
    def from_config(
        cls, config: CuratorConfig, db_path: Optional[str | Path] = None
    ) -> "CurationService":
        store = PublicationStore(db_path or config.database_path)
        return cls(config, store, PmcClient(config.source))

    async def aclose(self) -> None:
        await self.client.aclose()
        self.store.close()

    # ── Sync ─────────────────────────────────────────────────

    async def start_sync(self, mode: str = "full", max_per_term: Optional[int] = None) -> dict:
        self.orchestrator.start(mode, max_per_term)
        return {"success": True, "message": f"{mode} sync started", "mode": mode}

    def sync_status(self) -> dict:
        return self.sync_state.snapshot()

    # ── Categorization ───────────────────────────────────────

    async def start_categorization(self, filter: str = "uncategorized") -> dict:
        self.batch.start(filter)
        return {
            "success": True,
            "message": f"Categorizing {self.categorization_state.total} publications",
            "filter": filter,
        }

    def categorization_status(self) -> dict:
        return self.categorization_state.snapshot()

    def approve_categories(self, pub_id: str, categories: list[str], reviewer: str) -> None:
        self.store.approve_categories(pub_id, categories, reviewer)

    def reject_suggestions(self, pub_id: str, reviewer: str) -> None:
        self.store.reject_suggestions(pub_id, reviewer)

    # ── Reconciliation ───────────────────────────────────────

    async def compare_with_source(self, topic: Optional[str] = None) -> dict:
        result = await self.reconciler.compare(topic)
        return result.model_dump()

    async def sync_missing(self, body_ids: list[str], metadata_ids: list[str]) -> dict:
        result = await self.reconciler.sync_missing(body_ids, metadata_ids)
        return result.model_dump()

    # ── Abstract Refresh ─────────────────────────────────────

    async def refresh_abstracts(self) -> dict:
        self.refresher.start()
        return {
            "success": True,
            "message": f"Refreshing abstracts for {self.abstract_state.total} publications",
        }

    def abstract_refresh_status(self) -> dict:
        return self.abstract_state.snapshot()


# ── Helpers ──────────────────────────────────────────────────────────


def build_categorizer(config: CuratorConfig) -> Categorizer:
    """Keyword categorizer, plus the Ollama classifier when enabled."""
    cat = config.categorization
    classifier = None
    if cat.use_ml:
        classifier = OllamaClassifier(cat.model, min_confidence=cat.ml_min_confidence)
    return Categorizer(
        keyword_terms=config.search.keyword_terms,
        classifier=classifier,
        min_confidence=cat.min_confidence,
    )
