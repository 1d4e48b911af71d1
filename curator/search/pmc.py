"""PubMed Central client for the NCBI E-utilities (esearch/efetch)."""

import asyncio
import io
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional
from xml.etree.ElementTree import Element

import httpx
from Bio import Entrez

from curator.core.config import SourceConfig
from curator.parsers.pmc_xml import parse_articles
from curator.search.models import SearchResult

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

DateRange = tuple[date, date]


# ── Errors ───────────────────────────────────────────────────────────


class SourceError(Exception):
    """Base class for failures talking to the bibliographic source."""


class SourceRequestError(SourceError):
    """Non-retryable client error (4xx other than 429) or unreadable reply."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SourceUnavailableError(SourceError):
    """Retries exhausted against a rate-limited or failing source."""


@dataclass
class FetchResult:
    """Articles from the EFetch batches that succeeded, plus the IDs that did not."""

    articles: list[Element] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)
    errors: list[SourceError] = field(default_factory=list)


# ── Client ───────────────────────────────────────────────────────────


class PmcClient:
    """Async E-utilities client with batching, rate limiting and retries."""

    def __init__(
        self,
        config: SourceConfig,
        http: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=config.timeout)
        self._sleep = sleep
        if config.email:
            Entrez.email = config.email
        if config.api_key:
            Entrez.api_key = config.api_key
        Entrez.tool = config.tool

    async def __aenter__(self) -> "PmcClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ── Search ───────────────────────────────────────────────

    async def search(
        self,
        term: str,
        max_results: int,
        date_range: DateRange | None = None,
        retstart: int = 0,
    ) -> SearchResult:
        """Run ESearch and return one page of matching PMC UIDs."""
        params = {
            "term": term,
            "retmax": str(max_results),
            "retstart": str(retstart),
        }
        if date_range is not None:
            start, end = date_range
            params["mindate"] = start.strftime("%Y/%m/%d")
            params["maxdate"] = end.strftime("%Y/%m/%d")
            params["datetype"] = "pdat"

        response = await self._get("esearch.fcgi", params)
        return _parse_search(response.content)

    async def search_all(self, term: str, page_size: int = 500) -> SearchResult:
        """Page through ESearch until every matching UID has been collected."""
        first = await self.search(term, page_size)
        ids = list(first.ids)
        total = first.count

        while len(ids) < total:
            await self._sleep(self.config.batch_delay)
            page = await self.search(term, page_size, retstart=len(ids))
            if not page.ids:
                logger.warning(
                    "ESearch for %r stopped early at %d/%d ids", term, len(ids), total
                )
                break
            ids.extend(page.ids)

        logger.info("ESearch %r: %d ids (count=%d)", term, len(ids), total)
        return SearchResult(ids=ids, count=total)

    # ── Fetch ────────────────────────────────────────────────

    async def fetch_batches(self, ids: list[str]) -> FetchResult:
        """Fetch article XML for PMC UIDs in batches of at most 200.

        A batch that still fails after retries is logged and its IDs are
        reported in ``failed_ids``; the other batches are kept.
        """
        result = FetchResult()
        if not ids:
            return result

        size = self.config.fetch_batch_size
        for start in range(0, len(ids), size):
            batch = ids[start : start + size]
            try:
                response = await self._get("efetch.fcgi", {"id": ",".join(batch)})
            except SourceError as exc:
                logger.warning(
                    "EFetch %d-%d of %d failed: %s",
                    start + 1,
                    start + len(batch),
                    len(ids),
                    exc,
                )
                result.failed_ids.extend(batch)
                result.errors.append(exc)
            else:
                parsed = parse_articles(response.content)
                result.articles.extend(parsed)
                logger.info(
                    "EFetch %d-%d of %d: %d articles",
                    start + 1,
                    start + len(batch),
                    len(ids),
                    len(parsed),
                )
            if start + size < len(ids):
                await self._sleep(self.config.batch_delay)

        return result

    async def fetch_details(self, ids: list[str]) -> list[Element]:
        """Fetched articles; raises the last error only if every batch failed."""
        result = await self.fetch_batches(ids)
        if result.errors and len(result.failed_ids) == len(ids):
            raise result.errors[-1]
        return result.articles

    # ── HTTP with Retry ──────────────────────────────────────

    async def _get(self, endpoint: str, params: dict[str, str]) -> httpx.Response:
        """GET an E-utilities endpoint, retrying 429/5xx/network failures."""
        url = f"{self.config.base_url.rstrip('/')}/{endpoint}"
        query = {"db": self.config.database, "retmode": "xml", **params}
        query["tool"] = self.config.tool
        if self.config.email:
            query["email"] = self.config.email
        if self.config.api_key:
            query["api_key"] = self.config.api_key

        retry = self.config.retry
        last_error = "no attempts made"

        for attempt in range(1, retry.max_attempts + 1):
            wait: Optional[float] = None
            try:
                response = await self._http.get(url, params=query)
            except httpx.TransportError as exc:
                last_error = f"network error: {exc}"
            else:
                status = response.status_code
                if status < 400:
                    return response
                if status == 429:
                    last_error = "rate limited (429)"
                    wait = _retry_after(response.headers.get("Retry-After"))
                    if wait is not None:
                        wait = min(wait, retry.max_retry_after)
                elif status >= 500:
                    last_error = f"server error ({status})"
                else:
                    raise SourceRequestError(
                        f"{endpoint} rejected request: HTTP {status}", status
                    )

            if attempt == retry.max_attempts:
                break
            if wait is None:
                wait = min(
                    retry.initial_delay * retry.multiplier ** (attempt - 1),
                    retry.max_delay,
                )
            logger.warning(
                "%s failed (attempt %d/%d): %s, retrying in %.1fs",
                endpoint,
                attempt,
                retry.max_attempts,
                last_error,
                wait,
            )
            await self._sleep(wait)

        raise SourceUnavailableError(
            f"{endpoint} unavailable after {retry.max_attempts} attempts: {last_error}"
        )


# ── Helpers ──────────────────────────────────────────────────────────


def _parse_search(content: bytes) -> SearchResult:
    """Read an eSearchResult document with Biopython's Entrez parser."""
    try:
        result = Entrez.read(io.BytesIO(content))
    except (RuntimeError, ValueError) as exc:
        raise SourceRequestError(f"Unreadable ESearch response: {exc}") from exc

    ids = [str(i) for i in result.get("IdList", [])]
    count = int(result.get("Count", len(ids)))
    return SearchResult(ids=ids, count=count)


def _retry_after(value: str | None) -> float | None:
    """Seconds to wait from a Retry-After header (delta or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(seconds, 0.0) if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)
