"""PMC article XML (JATS) to PublicationRecord parser.

PMC records are inconsistent: a field may be missing, appear once, or
repeat, and abstracts come as flat paragraphs, titled sections or nested
sections. Every field goes through ``try_extract``: document-order text
taken straight from the element tree first, then a generic deserialized
view (``to_obj``/``text_of``) when the first stage yields nothing.
"""

import logging
import re
from datetime import date
from typing import TYPE_CHECKING, Callable, Optional, Union
from xml.etree import ElementTree as ET
from xml.etree.ElementTree import Element

from curator.parsers.text import normalize_journal_name, tidy_inline
from curator.search.models import (
    UNKNOWN_AUTHORS,
    UNKNOWN_JOURNAL,
    UNTITLED,
    PublicationRecord,
)

if TYPE_CHECKING:
    from curator.agents.categorizer import Categorizer

logger = logging.getLogger(__name__)

XLINK_HREF = "{http://www.w3.org/1999/xlink}href"

# A deserialized node is a bare string, a dict of children/attributes,
# or a list of either when the element repeats.
XmlValue = Union[str, dict, list]

_LINK_TAGS = {"ext-link", "uri", "self-uri"}
_BLOCK_TAGS = {
    "p", "sec", "title", "list", "list-item", "label", "caption", "name",
    "surname", "given-names", "prefix", "suffix", "td", "th", "tr",
    "def-item", "term", "def", "disp-quote",
}
_NON_TEXT_TAGS = {"fig", "graphic", "table-wrap", "supplementary-material", "object-id", "media"}
_SECONDARY_ABSTRACTS = {"graphical", "teaser", "author-highlights", "editor-summary", "web-summary"}

_ACCESSION_PREFIX_RE = re.compile(r"^PMC", re.IGNORECASE)
_DOI_PREFIX_RE = re.compile(r"^(https?://(dx\.)?doi\.org/|doi:\s*)", re.IGNORECASE)
_YEAR_RE = re.compile(r"(\d{4})")
_TRIAL_REG_RE = re.compile(r"Trial\s+registration\s*[:.\-]?\s*(.+)$", re.IGNORECASE | re.DOTALL)
_ARTICLE_SEGMENT_RE = re.compile(r"<article(?=[\s>])[^>]*>.*?</article>", re.DOTALL)
_NAMESPACES = {
    "xlink": "http://www.w3.org/1999/xlink",
    "mml": "http://www.w3.org/1998/Math/MathML",
}

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
_SEASONS = {"spring": 3, "summer": 6, "fall": 9, "autumn": 9, "winter": 12}


# ── Public API ───────────────────────────────────────────────────────


def parse_articles(payload: bytes | str) -> list[Element]:
    """Split an efetch payload into its ``<article>`` elements.

    A payload that is not well-formed is cut into article segments and
    each segment is parsed on its own, so one broken article does not
    take the rest of the batch with it.
    """
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as exc:
        logger.warning("Malformed efetch payload (%s), parsing articles one by one", exc)
        text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
        return _parse_segments(text)

    if _local(root.tag) == "article":
        return [root]
    return [el for el in root if _local(el.tag) == "article"]


def parse_article(
    article: Element,
    categorizer: Optional["Categorizer"] = None,
) -> PublicationRecord | None:
    """Convert one PMC article into a PublicationRecord, or None."""
    try:
        return _build_record(article, categorizer)
    except Exception as exc:
        logger.warning("Skipping unparsable article: %s", exc, exc_info=True)
        return None


def try_extract(*stages: Callable[[], Optional[str]]) -> Optional[str]:
    """Return the first non-empty result from the given extraction stages."""
    for stage in stages:
        try:
            value = stage()
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.debug("Extraction stage %s failed: %s", getattr(stage, "__name__", stage), exc)
            continue
        if value and value.strip():
            return value.strip()
    return None


# ── Generic Deserialization ──────────────────────────────────────────


def to_obj(el: Element) -> XmlValue:
    """Deserialize an element into nested dicts/lists/strings.

    Attributes are keyed ``@name`` and direct text ``#text``. Text that
    follows inline children is appended to ``#text``, so mixed content
    loses its original order here.
    """
    children = list(el)
    attrs = {f"@{_local(k)}": v for k, v in el.attrib.items()}
    if not children and not attrs:
        return el.text or ""

    obj: dict = dict(attrs)
    texts = [el.text or ""] + [c.tail or "" for c in children]
    text = " ".join(t.strip() for t in texts if t.strip())
    if text:
        obj["#text"] = text
    for child in children:
        key = _local(child.tag)
        value = to_obj(child)
        if key not in obj:
            obj[key] = value
        elif isinstance(obj[key], list):
            obj[key].append(value)
        else:
            obj[key] = [obj[key], value]
    return obj


def text_of(value: XmlValue | None) -> str:
    """Flatten any deserialized shape into whitespace-normalized text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return tidy_inline(value)
    if isinstance(value, list):
        return tidy_inline(" ".join(text_of(v) for v in value))
    if isinstance(value, dict):
        parts = [text_of(v) for k, v in value.items() if not k.startswith("@")]
        return tidy_inline(" ".join(p for p in parts if p))
    return tidy_inline(str(value))


def as_list(value: XmlValue | None) -> list:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


# ── Document-Order Text ──────────────────────────────────────────────


def raw_text(el: Element | None, exclude: frozenset[str] = frozenset()) -> str:
    """Text of an element in document order.

    Inline formatting keeps its content, links with empty anchor text fall
    back to their href, and block elements are separated by spaces.
    """
    if el is None:
        return ""
    parts: list[str] = []
    _walk(el, parts, exclude)
    return tidy_inline("".join(parts))


def _walk(el: Element, parts: list[str], exclude: frozenset[str]) -> None:
    if el.text:
        parts.append(el.text)
    for child in el:
        tag = _local(child.tag)
        if tag in exclude:
            pass
        elif tag in _LINK_TAGS:
            inner = raw_text(child)
            parts.append(inner or child.get(XLINK_HREF) or child.get("href") or "")
        elif tag in _BLOCK_TAGS:
            parts.append(" ")
            _walk(child, parts, exclude)
            parts.append(" ")
        else:
            _walk(child, parts, exclude)
        if child.tail:
            parts.append(child.tail)


# ── Record Builder ───────────────────────────────────────────────────


def _build_record(
    article: Element, categorizer: Optional["Categorizer"]
) -> PublicationRecord | None:
    meta = _first(article, "front", "article-meta")
    if meta is None:
        logger.warning("Article has no article-meta block")
        return None

    ids = extract_ids(meta)
    external_id = resolve_identity(ids["pmid"], ids["accession"], ids["doi"])
    if external_id is None:
        logger.info("Discarding article without accession or DOI: %s", ids)
        return None

    title = extract_title(meta) or UNTITLED
    authors = extract_authors(meta) or UNKNOWN_AUTHORS
    journal = extract_journal(article) or UNKNOWN_JOURNAL
    abstract = extract_abstract(meta)
    pub_date, approximate = extract_publication_date(meta)
    if approximate:
        logger.info("No publication year for %s, using today's date", external_id)

    categories: list[str] = []
    keywords: list[str] = []
    if categorizer is not None:
        categories = categorizer.categories_for(title, abstract)
        keywords = categorizer.extract_keywords(title, abstract)

    return PublicationRecord(
        external_id=external_id,
        title=title,
        authors=authors,
        journal=journal,
        publication_date=pub_date,
        date_is_approximate=approximate,
        abstract=abstract,
        doi=ids["doi"],
        accession_number=ids["accession"],
        pmid=ids["pmid"],
        categories=categories,
        keywords=keywords,
    )


# ── Identity ─────────────────────────────────────────────────────────


def extract_ids(meta: Element) -> dict[str, Optional[str]]:
    """PubMed ID, numeric PMC accession and DOI from ``article-id`` tags."""
    tagged: list[tuple[str, str]] = []
    for el in _kids(meta, "article-id"):
        id_type = (el.get("pub-id-type") or "").lower()
        value = raw_text(el)
        if value:
            tagged.append((id_type, value))

    pmid = next((v for t, v in tagged if t == "pmid" and v.isdigit()), None)

    accession = None
    for id_type, value in tagged:
        if id_type not in ("pmc", "pmcid"):
            continue
        accession = normalize_accession(value)
        if accession:
            break
        logger.info("Rejecting non-numeric accession %r", value)

    doi = next((v for t, v in tagged if t == "doi"), None)
    if doi:
        doi = _DOI_PREFIX_RE.sub("", doi).strip() or None

    return {"pmid": pmid, "accession": accession, "doi": doi}


def normalize_accession(value: str | None) -> Optional[str]:
    """Numeric PMC accession with the ``PMC`` prefix stripped, else None."""
    if not value:
        return None
    stripped = _ACCESSION_PREFIX_RE.sub("", value.strip())
    return stripped if stripped.isdigit() else None


def resolve_identity(
    pmid: Optional[str], accession: Optional[str], doi: Optional[str]
) -> Optional[str]:
    """PubMed ID, else ``PMC<accession>``, else DOI.

    A record needs an accession or a DOI to be kept at all.
    """
    if not accession and not doi:
        return None
    if pmid:
        return pmid
    if accession:
        return f"PMC{accession}"
    return doi


# ── Title / Journal ──────────────────────────────────────────────────


def extract_title(meta: Element) -> Optional[str]:
    title_group = _first(meta, "title-group")

    def from_tree() -> Optional[str]:
        return raw_text(_first(title_group, "article-title"))

    def from_obj() -> Optional[str]:
        return text_of(to_obj(title_group).get("article-title"))

    return try_extract(from_tree, from_obj)


def extract_journal(article: Element) -> Optional[str]:
    journal_meta = _first(article, "front", "journal-meta")

    def from_tree() -> Optional[str]:
        return raw_text(_first(journal_meta, "journal-title-group", "journal-title")) or raw_text(
            _first(journal_meta, "journal-title")
        )

    def from_journal_id() -> Optional[str]:
        by_type = {el.get("journal-id-type"): raw_text(el) for el in _kids(journal_meta, "journal-id")}
        return by_type.get("nlm-ta") or by_type.get("iso-abbrev")

    def from_obj() -> Optional[str]:
        obj = to_obj(journal_meta)
        group = obj.get("journal-title-group") or {}
        if isinstance(group, list):
            group = group[0]
        return text_of(group.get("journal-title") if isinstance(group, dict) else group)

    journal = try_extract(from_tree, from_journal_id, from_obj)
    return normalize_journal_name(journal) if journal else None


# ── Authors ──────────────────────────────────────────────────────────


def extract_authors(meta: Element) -> Optional[str]:
    groups = _kids(meta, "contrib-group")

    def from_tree() -> Optional[str]:
        names = [_contrib_name(c) for g in groups for c in _kids(g, "contrib") if _is_author(c)]
        return ", ".join(n for n in names if n)

    def from_obj() -> Optional[str]:
        names = []
        for group in groups:
            obj = to_obj(group)
            if not isinstance(obj, dict):
                continue
            for contrib in as_list(obj.get("contrib")):
                if not isinstance(contrib, dict):
                    continue
                name = contrib.get("name")
                if isinstance(name, dict):
                    surname = text_of(name.get("surname"))
                    given = text_of(name.get("given-names"))
                    names.append(_format_name(surname, given))
                elif contrib.get("collab") is not None:
                    names.append(text_of(contrib.get("collab")))
        return ", ".join(n for n in names if n)

    return try_extract(from_tree, from_obj)


def _is_author(contrib: Element) -> bool:
    return (contrib.get("contrib-type") or "author").lower() == "author"


def _contrib_name(contrib: Element) -> str:
    name = _first(contrib, "name")
    if name is None:
        name = _first(contrib, "name-alternatives", "name")
    if name is not None:
        return _format_name(raw_text(_first(name, "surname")), raw_text(_first(name, "given-names")))

    string_name = _first(contrib, "string-name")
    if string_name is not None:
        surname = _first(string_name, "surname")
        if surname is not None:
            return _format_name(raw_text(surname), raw_text(_first(string_name, "given-names")))
        return raw_text(string_name)

    collab = _first(contrib, "collab")
    if collab is not None:
        # Member lists nested in a collab block are not authors of record.
        return raw_text(collab, exclude=frozenset({"contrib-group", "xref"}))
    return ""


def _format_name(surname: str, given: str) -> str:
    """``Surname Initials`` as PubMed displays author names."""
    initials = "".join(part[0].upper() for part in re.split(r"[\s.\-]+", given) if part)
    return f"{surname} {initials}".strip() if surname else given.strip()


# ── Abstract ─────────────────────────────────────────────────────────


def extract_abstract(meta: Element) -> Optional[str]:
    abstract = _pick_abstract(meta)
    if abstract is None:
        return None

    def from_tree() -> Optional[str]:
        return "\n\n".join(_sections(abstract))

    def from_obj() -> Optional[str]:
        return _format_structured(to_obj(abstract))

    text = try_extract(from_tree, from_obj)
    if text is None:
        return None
    return _append_trial_registration(text, abstract)


def _pick_abstract(meta: Element) -> Optional[Element]:
    abstracts = _kids(meta, "abstract")
    if not abstracts:
        return None
    primary = [a for a in abstracts if not a.get("abstract-type")]
    if primary:
        return primary[0]
    regular = [a for a in abstracts if a.get("abstract-type") not in _SECONDARY_ABSTRACTS]
    return (regular or abstracts)[0]


def _sections(container: Element) -> list[str]:
    """Paragraphs and ``Label: text`` sections of an abstract, in order."""
    out: list[str] = []
    for child in container:
        tag = _local(child.tag)
        if tag in ("title", "label") or tag in _NON_TEXT_TAGS:
            continue
        if tag == "sec":
            out.extend(_labeled_section(child))
            continue
        text = raw_text(child)
        if text:
            out.append(text)
    return out


def _labeled_section(sec: Element) -> list[str]:
    label = raw_text(_first(sec, "title")).rstrip(":").strip()
    direct: list[str] = []
    nested: list[str] = []
    for child in sec:
        tag = _local(child.tag)
        if tag in ("title", "label") or tag in _NON_TEXT_TAGS:
            continue
        if tag == "sec":
            nested.extend(_labeled_section(child))
        else:
            text = raw_text(child)
            if text:
                direct.append(text)

    if direct:
        body = " ".join(direct)
        return [f"{label}: {body}" if label else body] + nested
    if nested and label:
        return [f"{label}: {nested[0]}"] + nested[1:]
    return nested


def _format_structured(obj: XmlValue) -> Optional[str]:
    if not isinstance(obj, dict):
        return text_of(obj)
    parts = [text_of(p) for p in as_list(obj.get("p"))]
    for sec in as_list(obj.get("sec")):
        if isinstance(sec, dict):
            label = text_of(sec.get("title")).rstrip(":")
            body = text_of({k: v for k, v in sec.items() if k != "title"})
            parts.append(f"{label}: {body}" if label and body else body)
        else:
            parts.append(text_of(sec))
    text = "\n\n".join(p for p in parts if p)
    return text or text_of(obj)


def _append_trial_registration(text: str, abstract: Element) -> str:
    """Keep a trial-registration mention that section parsing dropped."""
    if "trial registration" in text.lower():
        return text
    match = _TRIAL_REG_RE.search(raw_text(abstract))
    if not match:
        return text
    registration = match.group(1).strip()
    if not registration:
        return text
    return f"{text}\n\nTrial registration: {registration}"


# ── Publication Date ─────────────────────────────────────────────────


def extract_publication_date(meta: Element) -> tuple[date, bool]:
    """Best publication date and whether it had to be approximated.

    Electronic/print dates win over unmarked ones, which win over other
    dated entries (collection, pmc-release). Without any year the current
    date is used and flagged.
    """
    candidates = _kids(meta, "pub-date")
    preferred = [d for d in candidates if _is_pub_date(d)]
    unmarked = [d for d in candidates if not d.get("pub-type") and not d.get("date-type")]
    others = [d for d in candidates if d not in preferred and d not in unmarked]

    for candidate in preferred + unmarked + others:
        parsed = _parse_date(candidate)
        if parsed is not None:
            return parsed, False
    return date.today(), True


def _is_pub_date(el: Element) -> bool:
    pub_type = (el.get("pub-type") or "").lower()
    if pub_type in ("epub", "ppub", "epub-ppub"):
        return True
    return (el.get("date-type") or "").lower() == "pub" and (
        el.get("publication-format") or ""
    ).lower() in ("electronic", "print")


def _parse_date(el: Element) -> Optional[date]:
    year_match = _YEAR_RE.search(raw_text(_first(el, "year")))
    if not year_match:
        return None
    year = int(year_match.group(1))
    month = _parse_month(raw_text(_first(el, "month"))) or _SEASONS.get(
        raw_text(_first(el, "season")).lower(), 1
    )
    day_text = raw_text(_first(el, "day"))
    day = int(day_text) if day_text.isdigit() else 1
    try:
        return date(year, month, day)
    except ValueError:
        pass
    try:
        return date(year, month, 1)
    except ValueError:
        # year 0000 and the like; let the next candidate date win
        return None


def _parse_month(value: str) -> Optional[int]:
    value = value.strip()
    if value.isdigit():
        month = int(value)
        return month if 1 <= month <= 12 else None
    return _MONTHS.get(value[:3].lower())


# ── Helpers ──────────────────────────────────────────────────────────


def _local(tag) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _kids(el: Element | None, name: str) -> list[Element]:
    if el is None:
        return []
    return [c for c in el if _local(c.tag) == name]


def _first(el: Element | None, *path: str) -> Optional[Element]:
    for name in path:
        if el is None:
            return None
        el = next((c for c in el if _local(c.tag) == name), None)
    return el


def _parse_segments(text: str) -> list[Element]:
    articles: list[Element] = []
    for segment in _ARTICLE_SEGMENT_RE.findall(text):
        opening = segment.split(">", 1)[0]
        missing = "".join(
            f' xmlns:{prefix}="{uri}"'
            for prefix, uri in _NAMESPACES.items()
            if f"xmlns:{prefix}=" not in opening
        )
        if missing:
            segment = segment.replace("<article", "<article" + missing, 1)
        try:
            articles.append(ET.fromstring(segment))
        except ET.ParseError as exc:
            logger.warning("Skipping malformed article segment: %s", exc)
    return articles
