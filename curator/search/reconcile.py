"""Compare the publication store against a live PMC search."""

import asyncio
import logging
from typing import Optional

from pydantic import BaseModel, Field

from curator.agents.categorizer import Categorizer
from curator.core.config import CuratorConfig
from curator.core.database import PublicationStore
from curator.parsers.pmc_xml import normalize_accession, parse_article
from curator.search.dedup import dedupe_ids
from curator.search.pmc import PmcClient, SourceError

logger = logging.getLogger(__name__)


# ── Result Models ────────────────────────────────────────────────────


class ReconciliationResult(BaseModel):
    """Store vs. source comparison for one topic.

    ``matched_ids``, ``missing_with_body_evidence`` and
    ``missing_with_metadata_only_evidence`` partition the union of both
    searches. The metadata-only bucket holds articles that match the
    topic outside the body text, usually as a citation; it is a hint for
    manual review, not a verified miss.
    """

    topic: str
    body_search_total: int
    all_fields_search_total: int
    database_total: int
    database_valid_ids: int
    database_invalid_pmids: list[str] = Field(default_factory=list)
    matched_ids: list[str] = Field(default_factory=list)
    missing_with_body_evidence: list[str] = Field(default_factory=list)
    missing_with_metadata_only_evidence: list[str] = Field(default_factory=list)
    missing_total: int = 0


class SyncMissingResult(BaseModel):
    saved: int = 0
    skipped: int = 0
    flagged_for_review: int = 0  # subset of saved, stored as pending
    failed: int = 0


# ── Reconciler ───────────────────────────────────────────────────────


class Reconciler:
    """Read-only comparison plus an opt-in import of selected missing IDs."""

    def __init__(
        self,
        client: PmcClient,
        store: PublicationStore,
        config: CuratorConfig,
        categorizer: Optional[Categorizer] = None,
    ):
        self.client = client
        self.store = store
        self.config = config
        self.categorizer = categorizer or Categorizer(config.search.keyword_terms)

    async def compare(self, topic: Optional[str] = None) -> ReconciliationResult:
        topic = topic or self.config.reconcile.topic
        page_size = self.config.reconcile.page_size

        body, all_fields = await asyncio.gather(
            self.client.search_all(f"{topic}[body]", page_size),
            self.client.search_all(topic, page_size),
        )
        body_ids = set(body.ids)
        all_ids = set(all_fields.ids)

        stored = self.store.accession_index()
        valid_ids: set[str] = set()
        invalid: list[str] = []
        for external_id, accession in stored:
            if accession and accession.isdigit():
                valid_ids.add(accession)
            else:
                invalid.append(external_id)

        matched = valid_ids & (body_ids | all_ids)
        missing_body = body_ids - valid_ids
        missing_metadata = (all_ids - body_ids) - valid_ids

        logger.info(
            "Reconcile %r: body=%d all=%d stored=%d matched=%d missing=%d+%d",
            topic,
            len(body_ids),
            len(all_ids),
            len(stored),
            len(matched),
            len(missing_body),
            len(missing_metadata),
        )
        if invalid:
            logger.warning("%d stored publications lack a numeric PMC id", len(invalid))

        return ReconciliationResult(
            topic=topic,
            body_search_total=len(body_ids),
            all_fields_search_total=len(all_ids),
            database_total=len(stored),
            database_valid_ids=len(valid_ids),
            database_invalid_pmids=sorted(invalid),
            matched_ids=_sorted_ids(matched),
            missing_with_body_evidence=_sorted_ids(missing_body),
            missing_with_metadata_only_evidence=_sorted_ids(missing_metadata),
            missing_total=len(missing_body) + len(missing_metadata),
        )

    async def sync_missing(
        self, body_ids: list[str], metadata_ids: list[str]
    ) -> SyncMissingResult:
        """Fetch and store the chosen IDs; metadata-only imports stay pending."""
        body = [a for a in (normalize_accession(i) for i in body_ids) if a]
        metadata = [a for a in (normalize_accession(i) for i in metadata_ids) if a]
        ids = dedupe_ids(body + metadata)
        metadata_only = set(metadata) - set(body)
        result = SyncMissingResult(failed=len(body_ids) + len(metadata_ids) - len(body) - len(metadata))
        if not ids:
            return result

        try:
            elements = await self.client.fetch_details(ids)
        except SourceError as exc:
            logger.error("Sync-missing fetch failed: %s", exc)
            result.failed += len(ids)
            return result

        parsed = 0
        for el in elements:
            rec = parse_article(el, self.categorizer)
            if rec is None:
                continue
            parsed += 1
            if self.store.has_external_id(rec.external_id):
                result.skipped += 1
                continue
            flagged = rec.accession_number in metadata_only
            status = "pending" if flagged else rec.status
            if self.store.add_publication(rec, status=status) is None:
                result.skipped += 1
                continue
            result.saved += 1
            if flagged:
                result.flagged_for_review += 1

        result.failed += max(len(ids) - parsed, 0)
        logger.info(
            "Sync-missing: %d saved (%d flagged), %d skipped, %d failed",
            result.saved,
            result.flagged_for_review,
            result.skipped,
            result.failed,
        )
        return result


# ── Helpers ──────────────────────────────────────────────────────────


def _sorted_ids(ids: set[str]) -> list[str]:
    return sorted(ids, key=lambda i: (not i.isdigit(), int(i) if i.isdigit() else 0, i))
