"""Shared builders for PMC XML payloads and E-utilities mocks."""

from datetime import date

import httpx
import pytest

from curator.core.config import CuratorConfig

ESEARCH_DOCTYPE = (
    '<?xml version="1.0" encoding="UTF-8" ?>\n'
    '<!DOCTYPE eSearchResult PUBLIC "-//NLM//DTD esearch 20060628//EN" '
    '"https://eutils.ncbi.nlm.nih.gov/eutils/dtd/20060628/esearch.dtd">\n'
)

DEFAULT_ABSTRACT = (
    "<p>Carotid-femoral pulse wave velocity was measured with the SphygmoCor "
    "device in 120 patients with hypertension.</p>"
)

EPUB_2021 = '<pub-date pub-type="epub"><day>5</day><month>3</month><year>2021</year></pub-date>'


def article_xml(
    pmid: str | None = "33000001",
    pmcid: str | None = "PMC7000001",
    doi: str | None = "10.1000/sphyg.2021.001",
    title: str | None = "Arterial stiffness and central blood pressure in hypertension",
    authors: list[tuple[str, str]] | None = None,
    journal: str | None = "Journal of Hypertension",
    abstract: str | None = DEFAULT_ABSTRACT,
    pub_dates: str = EPUB_2021,
) -> str:
    """One JATS ``<article>`` with only the parts the parser reads."""
    if authors is None:
        authors = [("Smith", "John A"), ("Chen", "Li")]

    ids = ""
    if pmid:
        ids += f'<article-id pub-id-type="pmid">{pmid}</article-id>'
    if pmcid:
        ids += f'<article-id pub-id-type="pmc">{pmcid}</article-id>'
    if doi:
        ids += f'<article-id pub-id-type="doi">{doi}</article-id>'

    contribs = "".join(
        f'<contrib contrib-type="author"><name><surname>{s}</surname>'
        f"<given-names>{g}</given-names></name></contrib>"
        for s, g in authors
    )
    journal_meta = (
        f"<journal-meta><journal-title-group><journal-title>{journal}</journal-title>"
        f"</journal-title-group></journal-meta>"
        if journal
        else "<journal-meta/>"
    )
    title_group = (
        f"<title-group><article-title>{title}</article-title></title-group>" if title else ""
    )
    abstract_xml = f"<abstract>{abstract}</abstract>" if abstract else ""

    return (
        '<article xmlns:xlink="http://www.w3.org/1999/xlink" article-type="research-article">'
        f"<front>{journal_meta}<article-meta>{ids}{title_group}"
        f"<contrib-group>{contribs}</contrib-group>{pub_dates}{abstract_xml}"
        "</article-meta></front></article>"
    )


def articleset(*articles: str) -> bytes:
    return ("<pmc-articleset>" + "".join(articles) + "</pmc-articleset>").encode()


def esearch_xml(ids: list[str], count: int | None = None) -> bytes:
    count = len(ids) if count is None else count
    id_list = "".join(f"<Id>{i}</Id>" for i in ids)
    return (
        ESEARCH_DOCTYPE
        + f"<eSearchResult><Count>{count}</Count><RetMax>{len(ids)}</RetMax>"
        f"<RetStart>0</RetStart><IdList>{id_list}</IdList>"
        "<TranslationSet/><QueryTranslation>sphygmocor</QueryTranslation>"
        "</eSearchResult>"
    ).encode()


def pmc_article(uid: str, **kw) -> str:
    """Article whose accession is ``uid`` and whose identity is ``PMC<uid>``."""
    defaults = dict(pmid=None, pmcid=f"PMC{uid}", doi=f"10.1000/pmc.{uid}")
    defaults.update(kw)
    return article_xml(**defaults)


def no_sleep_recorder():
    """An async sleep replacement that records requested delays."""
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    return sleep, delays


def mock_http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture()
def config():
    return CuratorConfig.model_validate(
        {
            "name": "test",
            "source": {"batch_delay": 0.0, "email": "curator@example.org"},
            "search": {
                "terms": ['"sphygmocor"'],
                "floor_year": 2015,
                "keyword_terms": ["pulse wave velocity", "arterial stiffness", "SphygmoCor"],
            },
            "reconcile": {"topic": "sphygmocor", "page_size": 100},
            "run_state": {"cooldown_seconds": 60},
        }
    )


@pytest.fixture()
def today():
    return date(2025, 6, 15)
