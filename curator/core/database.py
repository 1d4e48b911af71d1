"""SQLite publication store: one row per publication, keyed by external ID."""

import json
import logging
import sqlite3
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from curator.agents.models import SuggestedCategory
from curator.search.models import UNKNOWN_AUTHORS, UNTITLED, PublicationRecord

logger = logging.getLogger(__name__)

# ── Publication Lifecycle ────────────────────────────────────────────

STATUSES = ("pending", "approved", "rejected")

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"approved", "rejected"},
    "approved": {"pending", "rejected"},
    "rejected": {"pending"},
}

CATEGORY_REVIEW_STATUSES = ("pending_review", "auto_approved", "reviewed")

_JSON_COLUMNS = ("categories", "keywords", "suggested_categories")

# ── Schema DDL ───────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS publications (
    id                      TEXT PRIMARY KEY,
    external_id             TEXT NOT NULL UNIQUE,
    accession_number        TEXT,
    pmid                    TEXT,
    doi                     TEXT,
    title                   TEXT NOT NULL,
    authors                 TEXT NOT NULL,
    journal                 TEXT NOT NULL,
    publication_date        TEXT NOT NULL,
    date_is_approximate     INTEGER NOT NULL DEFAULT 0,
    abstract                TEXT,
    categories              TEXT NOT NULL DEFAULT '[]',   -- JSON array
    keywords                TEXT NOT NULL DEFAULT '[]',   -- JSON array
    status                  TEXT NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending', 'approved', 'rejected')),
    suggested_categories    TEXT,                         -- JSON array
    category_review_status  TEXT
                            CHECK (category_review_status IN
                                   ('pending_review', 'auto_approved', 'reviewed')),
    category_reviewed_by    TEXT,
    category_reviewed_at    TEXT,
    source_url              TEXT,
    created_at              TEXT NOT NULL,
    updated_at              TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_publications_status    ON publications(status);
CREATE INDEX IF NOT EXISTS idx_publications_accession ON publications(accession_number);
CREATE INDEX IF NOT EXISTS idx_publications_date      ON publications(publication_date);
"""


# ── PublicationStore ─────────────────────────────────────────────────


class PublicationStore:
    """SQLite persistence for curated publications."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    # ── Inserts ──────────────────────────────────────────────

    def add_publication(self, rec: PublicationRecord, status: Optional[str] = None) -> Optional[str]:
        """Insert one record. Returns the new row id, or None if already stored."""
        status = status or rec.status
        if status not in STATUSES:
            raise ValueError(f"Invalid status: {status}")

        now = _now()
        row_id = str(uuid.uuid4())
        try:
            self._conn.execute(
                """INSERT INTO publications
                   (id, external_id, accession_number, pmid, doi, title, authors,
                    journal, publication_date, date_is_approximate, abstract,
                    categories, keywords, status, source_url, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    row_id,
                    rec.external_id,
                    rec.accession_number,
                    rec.pmid,
                    rec.doi,
                    rec.title,
                    rec.authors,
                    rec.journal,
                    rec.publication_date.isoformat(),
                    int(rec.date_is_approximate),
                    rec.abstract,
                    json.dumps(rec.categories),
                    json.dumps(rec.keywords),
                    status,
                    rec.source_url,
                    now,
                    now,
                ),
            )
        except sqlite3.IntegrityError:
            # UNIQUE constraint on external_id
            return None
        self._conn.commit()
        return row_id

    def add_publications(self, records: Iterable[PublicationRecord]) -> int:
        """Bulk insert, skipping external IDs already stored. Returns count added."""
        records = list(records)
        added = sum(1 for rec in records if self.add_publication(rec) is not None)
        logger.info("Added %d/%d publications (duplicates skipped)", added, len(records))
        return added

    def refresh_publication(self, external_id: str, rec: PublicationRecord) -> bool:
        """Refresh title, authors, DOI and abstract of a stored record.

        Placeholder titles/authors and empty DOI/abstract never overwrite
        stored values. Status and categories are left alone. Returns False
        if no row has this external ID.
        """
        title = None if rec.title == UNTITLED else rec.title
        authors = None if rec.authors == UNKNOWN_AUTHORS else rec.authors
        cur = self._conn.execute(
            """UPDATE publications
               SET title = COALESCE(?, title),
                   authors = COALESCE(?, authors),
                   doi = COALESCE(?, doi),
                   abstract = COALESCE(?, abstract),
                   updated_at = ?
               WHERE external_id = ?""",
            (title, authors, rec.doi or None, rec.abstract or None, _now(), external_id),
        )
        self._conn.commit()
        return cur.rowcount > 0

    # ── Lookups ──────────────────────────────────────────────

    def has_external_id(self, external_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM publications WHERE external_id = ?", (external_id,)
        ).fetchone()
        return row is not None

    def get_publication(self, pub_id: str) -> Optional[dict]:
        row = self._conn.execute(
            "SELECT * FROM publications WHERE id = ?", (pub_id,)
        ).fetchone()
        return _decode(row) if row else None

    def get_by_external_id(self, external_id: str) -> Optional[dict]:
        row = self._conn.execute(
            "SELECT * FROM publications WHERE external_id = ?", (external_id,)
        ).fetchone()
        return _decode(row) if row else None

    def external_ids(self) -> set[str]:
        rows = self._conn.execute("SELECT external_id FROM publications").fetchall()
        return {r[0] for r in rows}

    def accession_index(self) -> list[tuple[str, Optional[str]]]:
        """(external_id, accession_number) for every stored publication."""
        rows = self._conn.execute(
            "SELECT external_id, accession_number FROM publications"
        ).fetchall()
        return [(r[0], r[1]) for r in rows]

    def latest_publication_date(self) -> Optional[date]:
        """Most recent non-approximate publication date, if any."""
        row = self._conn.execute(
            "SELECT MAX(publication_date) FROM publications WHERE date_is_approximate = 0"
        ).fetchone()
        return date.fromisoformat(row[0]) if row and row[0] else None

    def get_all_publications(self) -> list[dict]:
        rows = self._conn.execute(
            "SELECT * FROM publications ORDER BY created_at, rowid"
        ).fetchall()
        return [_decode(r) for r in rows]

    def get_publications_by_status(self, status: str) -> list[dict]:
        """Return all publications with the given status."""
        rows = self._conn.execute(
            "SELECT * FROM publications WHERE status = ? ORDER BY created_at, rowid", (status,)
        ).fetchall()
        return [_decode(r) for r in rows]

    def get_uncategorized(self) -> list[dict]:
        rows = self._conn.execute(
            "SELECT * FROM publications WHERE categories = '[]' ORDER BY created_at, rowid"
        ).fetchall()
        return [_decode(r) for r in rows]

    def publications_missing_abstract(self) -> list[dict]:
        rows = self._conn.execute(
            """SELECT * FROM publications
               WHERE (abstract IS NULL OR abstract = '')
               AND accession_number IS NOT NULL
               ORDER BY created_at, rowid"""
        ).fetchall()
        return [_decode(r) for r in rows]

    # ── Updates ──────────────────────────────────────────────

    def update_status(self, pub_id: str, new_status: str) -> None:
        """Transition a publication to a new review status."""
        if new_status not in STATUSES:
            raise ValueError(f"Invalid status: {new_status}")

        row = self._conn.execute(
            "SELECT status FROM publications WHERE id = ?", (pub_id,)
        ).fetchone()
        if row is None:
            raise ValueError(f"Publication {pub_id} not found")

        current = row["status"]
        allowed = ALLOWED_TRANSITIONS.get(current, set())
        if new_status not in allowed:
            raise ValueError(
                f"Invalid transition: {current} → {new_status} "
                f"(allowed: {allowed or 'none'})"
            )

        self._conn.execute(
            "UPDATE publications SET status = ?, updated_at = ? WHERE id = ?",
            (new_status, _now(), pub_id),
        )
        self._conn.commit()

    def update_suggested_categories(
        self,
        pub_id: str,
        suggestions: list[SuggestedCategory],
        review_status: str = "pending_review",
    ) -> None:
        if review_status not in CATEGORY_REVIEW_STATUSES:
            raise ValueError(f"Invalid category review status: {review_status}")
        payload = json.dumps([s.model_dump() for s in suggestions])
        if review_status == "auto_approved":
            categories = json.dumps([s.category for s in suggestions])
            self._conn.execute(
                """UPDATE publications
                   SET suggested_categories = ?, category_review_status = ?,
                       categories = ?, updated_at = ?
                   WHERE id = ?""",
                (payload, review_status, categories, _now(), pub_id),
            )
        else:
            self._conn.execute(
                """UPDATE publications
                   SET suggested_categories = ?, category_review_status = ?,
                       updated_at = ?
                   WHERE id = ?""",
                (payload, review_status, _now(), pub_id),
            )
        self._conn.commit()

    def approve_categories(self, pub_id: str, categories: list[str], reviewer: str) -> None:
        """Accept a reviewer-chosen category list."""
        unique = list(dict.fromkeys(categories))
        now = _now()
        cur = self._conn.execute(
            """UPDATE publications
               SET categories = ?, category_review_status = 'reviewed',
                   category_reviewed_by = ?, category_reviewed_at = ?, updated_at = ?
               WHERE id = ?""",
            (json.dumps(unique), reviewer, now, now, pub_id),
        )
        if cur.rowcount == 0:
            raise ValueError(f"Publication {pub_id} not found")
        self._conn.commit()

    def reject_suggestions(self, pub_id: str, reviewer: str) -> None:
        """Discard pending suggestions, keeping existing categories."""
        now = _now()
        cur = self._conn.execute(
            """UPDATE publications
               SET suggested_categories = NULL, category_review_status = 'reviewed',
                   category_reviewed_by = ?, category_reviewed_at = ?, updated_at = ?
               WHERE id = ?""",
            (reviewer, now, now, pub_id),
        )
        if cur.rowcount == 0:
            raise ValueError(f"Publication {pub_id} not found")
        self._conn.commit()

    def update_abstract(self, pub_id: str, abstract: str) -> None:
        self._conn.execute(
            "UPDATE publications SET abstract = ?, updated_at = ? WHERE id = ?",
            (abstract, _now(), pub_id),
        )
        self._conn.commit()

    # ── Stats ────────────────────────────────────────────────

    def get_stats(self) -> dict:
        """Counts per status plus category review totals."""
        rows = self._conn.execute(
            "SELECT status, COUNT(*) AS cnt FROM publications GROUP BY status"
        ).fetchall()
        stats = {status: 0 for status in STATUSES}
        stats.update({r["status"]: r["cnt"] for r in rows})
        stats["total_publications"] = self._conn.execute(
            "SELECT COUNT(*) FROM publications"
        ).fetchone()[0]
        stats["uncategorized"] = self._conn.execute(
            "SELECT COUNT(*) FROM publications WHERE categories = '[]'"
        ).fetchone()[0]
        stats["pending_category_review"] = self._conn.execute(
            "SELECT COUNT(*) FROM publications WHERE category_review_status = 'pending_review'"
        ).fetchone()[0]
        return stats

    # ── Cleanup ──────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()


# ── Helpers ──────────────────────────────────────────────────────────


def _decode(row: sqlite3.Row) -> dict:
    data = dict(row)
    for col in _JSON_COLUMNS:
        if data.get(col) is not None:
            data[col] = json.loads(data[col])
    data["date_is_approximate"] = bool(data["date_is_approximate"])
    return data


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
