"""Tests for the PMC JATS parser."""

from datetime import date
from xml.etree import ElementTree as ET

from conftest import article_xml, articleset
from curator.agents.categorizer import Categorizer
from curator.parsers.pmc_xml import (
    parse_article,
    parse_articles,
    resolve_identity,
    text_of,
    to_obj,
    try_extract,
)
from curator.search.models import UNKNOWN_AUTHORS, UNTITLED


def _parse(xml: str, categorizer=None):
    return parse_article(ET.fromstring(xml), categorizer)


# ── Identity ─────────────────────────────────────────────────────────


def test_identity_prefers_pmid():
    rec = _parse(article_xml(pmid="33000001", pmcid="PMC7000001", doi="10.1/x"))
    assert rec.external_id == "33000001"
    assert rec.accession_number == "7000001"
    assert rec.doi == "10.1/x"


def test_identity_falls_back_to_accession():
    rec = _parse(article_xml(pmid=None, pmcid="PMC7000001", doi="10.1/x"))
    assert rec.external_id == "PMC7000001"


def test_identity_falls_back_to_doi():
    rec = _parse(article_xml(pmid=None, pmcid=None, doi="10.1/x"))
    assert rec.external_id == "10.1/x"
    assert rec.accession_number is None


def test_non_numeric_accession_rejected_without_doi():
    assert _parse(article_xml(pmid=None, pmcid="phy270717", doi=None)) is None


def test_non_numeric_accession_rejected_but_doi_kept():
    rec = _parse(article_xml(pmid=None, pmcid="phy270717", doi="10.14814/phy2.70717"))
    assert rec.accession_number is None
    assert rec.external_id == "10.14814/phy2.70717"


def test_pmid_alone_is_not_enough():
    assert _parse(article_xml(pmid="33000001", pmcid=None, doi=None)) is None


def test_resolve_identity_order():
    assert resolve_identity("1", "2", "d") == "1"
    assert resolve_identity(None, "2", "d") == "PMC2"
    assert resolve_identity(None, None, "d") == "d"
    assert resolve_identity("1", None, None) is None


def test_doi_url_prefix_stripped():
    rec = _parse(article_xml(doi="https://doi.org/10.1/abc"))
    assert rec.doi == "10.1/abc"


# ── Completeness ─────────────────────────────────────────────────────


def test_complete_record_is_approved():
    rec = _parse(article_xml())
    assert rec.title == "Arterial stiffness and central blood pressure in hypertension"
    assert rec.authors == "Smith JA, Chen L"
    assert rec.journal == "Journal of Hypertension"
    assert rec.is_complete
    assert rec.status == "approved"
    assert rec.source_url == "https://pmc.ncbi.nlm.nih.gov/articles/PMC7000001/"


def test_missing_title_is_pending():
    rec = _parse(article_xml(title=None))
    assert rec.title == UNTITLED
    assert not rec.is_complete
    assert rec.status == "pending"


def test_missing_authors_is_pending():
    rec = _parse(article_xml(authors=[]))
    assert rec.authors == UNKNOWN_AUTHORS
    assert rec.status == "pending"


def test_inline_markup_kept_in_title():
    rec = _parse(article_xml(title="Effects of <italic>in vivo</italic> CO<sub>2</sub> on PWV"))
    assert rec.title == "Effects of in vivo CO2 on PWV"


def test_collab_author():
    xml = article_xml(authors=[]).replace(
        "<contrib-group></contrib-group>",
        '<contrib-group><contrib contrib-type="author"><collab>SphygmoCor Study Group'
        "<contrib-group><contrib><name><surname>Member</surname></name></contrib>"
        "</contrib-group></collab></contrib></contrib-group>",
    )
    rec = _parse(xml)
    assert rec.authors == "SphygmoCor Study Group"


def test_journal_name_normalized():
    rec = _parse(article_xml(journal="Hypertension (Dallas, Tex. : 1979)"))
    assert rec.journal == "Hypertension"


def test_journal_falls_back_to_nlm_ta():
    xml = article_xml(journal=None).replace(
        "<journal-meta/>",
        '<journal-meta><journal-id journal-id-type="nlm-ta">J Hypertens</journal-id></journal-meta>',
    )
    assert _parse(xml).journal == "J Hypertens"


# ── Abstracts ────────────────────────────────────────────────────────


def test_flat_abstract():
    rec = _parse(article_xml(abstract="<p>First.</p><p>Second.</p>"))
    assert rec.abstract == "First.\n\nSecond."


def test_labeled_sections():
    abstract = (
        "<sec><title>Background</title><p>Stiffness matters.</p></sec>"
        "<sec><title>Methods</title><p>We used SphygmoCor.</p></sec>"
    )
    rec = _parse(article_xml(abstract=abstract))
    assert rec.abstract == "Background: Stiffness matters.\n\nMethods: We used SphygmoCor."


def test_nested_sections():
    abstract = (
        "<sec><title>Results</title>"
        "<sec><title>Primary</title><p>PWV rose.</p></sec>"
        "<sec><title>Secondary</title><p>AIx fell.</p></sec>"
        "</sec>"
    )
    rec = _parse(article_xml(abstract=abstract))
    assert rec.abstract == "Results: Primary: PWV rose.\n\nSecondary: AIx fell."


def test_ext_link_without_text_uses_href():
    abstract = (
        '<p>Data at <ext-link ext-link-type="uri" '
        'xlink:href="https://example.org/data"/> today.</p>'
    )
    rec = _parse(article_xml(abstract=abstract))
    assert "https://example.org/data" in rec.abstract


def test_graphical_abstract_only_as_fallback():
    xml = article_xml(abstract="<p>Main abstract.</p>").replace(
        "<abstract>",
        '<abstract abstract-type="graphical"><p>Picture summary.</p></abstract><abstract>',
    )
    assert _parse(xml).abstract == "Main abstract."

    only_graphical = article_xml(abstract=None).replace(
        "</article-meta>",
        '<abstract abstract-type="graphical"><p>Picture summary.</p></abstract></article-meta>',
    )
    assert _parse(only_graphical).abstract == "Picture summary."


def test_trial_registration_appended():
    abstract = (
        "<sec><title>Background</title><p>Study.</p></sec>"
        "<sec><p>Trial registration: NCT01234567</p></sec>"
    )
    rec = _parse(article_xml(abstract=abstract))
    assert "Trial registration: NCT01234567" in rec.abstract


def test_trial_registration_in_title_only_section():
    abstract = (
        "<p>Study.</p>"
        "<sec><title>Trial registration</title></sec>"
        "<p>ClinicalTrials.gov NCT07654321</p>"
    )
    rec = _parse(article_xml(abstract=abstract))
    assert rec.abstract.endswith("Trial registration: ClinicalTrials.gov NCT07654321")


def test_no_abstract():
    assert _parse(article_xml(abstract=None)).abstract is None


# ── Dates ────────────────────────────────────────────────────────────


def test_epub_preferred_over_unmarked():
    dates = (
        "<pub-date><year>2019</year></pub-date>"
        '<pub-date pub-type="epub"><day>5</day><month>3</month><year>2021</year></pub-date>'
    )
    rec = _parse(article_xml(pub_dates=dates))
    assert rec.publication_date == date(2021, 3, 5)
    assert not rec.date_is_approximate


def test_date_type_pub_with_format():
    dates = (
        '<pub-date pub-type="collection"><year>2018</year></pub-date>'
        '<pub-date date-type="pub" publication-format="electronic">'
        "<month>Jul</month><year>2020</year></pub-date>"
    )
    assert _parse(article_xml(pub_dates=dates)).publication_date == date(2020, 7, 1)


def test_unusable_year_falls_through_to_next_date():
    dates = (
        '<pub-date pub-type="epub"><day>31</day><month>2</month><year>0000</year></pub-date>'
        '<pub-date pub-type="ppub"><month>4</month><year>2016</year></pub-date>'
    )
    rec = _parse(article_xml(pub_dates=dates))
    assert rec.publication_date == date(2016, 4, 1)
    assert not rec.date_is_approximate


def test_season_month():
    dates = '<pub-date pub-type="ppub"><season>Winter</season><year>2010</year></pub-date>'
    assert _parse(article_xml(pub_dates=dates)).publication_date == date(2010, 12, 1)


def test_missing_year_falls_back_to_today_and_is_flagged():
    # Fabricated date carried as observed behavior; the flag marks it.
    rec = _parse(article_xml(pub_dates=""))
    assert rec.publication_date == date.today()
    assert rec.date_is_approximate


# ── Categorization On Ingest ─────────────────────────────────────────


def test_categories_and_keywords_attached():
    categorizer = Categorizer(keyword_terms=["pulse wave velocity", "SphygmoCor"])
    rec = _parse(article_xml(), categorizer)
    assert "Hypertension" in rec.categories
    assert "Early Vascular Aging (EVA)" in rec.categories
    assert rec.keywords == ["pulse wave velocity", "SphygmoCor"]


# ── Payloads ─────────────────────────────────────────────────────────


def test_parse_articles_from_articleset():
    payload = articleset(article_xml(pmid="1"), article_xml(pmid="2"))
    assert len(parse_articles(payload)) == 2


def test_malformed_payload_parsed_per_article():
    good = article_xml(pmid="1").replace(' xmlns:xlink="http://www.w3.org/1999/xlink"', "")
    broken = "<article><front><article-meta><unclosed></article-meta></front></article>"
    payload = "<pmc-articleset>" + good + broken + "<trailing"
    articles = parse_articles(payload.encode())
    assert len(articles) == 1
    assert parse_article(articles[0]).external_id == "1"


def test_parse_article_swallows_unexpected_errors():
    class Exploding:
        def categories_for(self, title, abstract):
            raise RuntimeError("boom")

    assert _parse(article_xml(), Exploding()) is None


# ── Generic Deserialization ──────────────────────────────────────────


def test_text_of_shapes():
    assert text_of("  a  b ") == "a b"
    assert text_of(["x", {"#text": "y", "@id": "z"}]) == "x y"
    assert text_of(None) == ""


def test_to_obj_repeats_become_lists():
    obj = to_obj(ET.fromstring('<a k="v"><b>1</b><b>2</b><c>3</c></a>'))
    assert obj["@k"] == "v"
    assert obj["b"] == ["1", "2"]
    assert obj["c"] == "3"


def test_try_extract_skips_failing_and_empty_stages():
    def broken():
        raise AttributeError("no")

    assert try_extract(broken, lambda: "  ", lambda: " ok ") == "ok"
    assert try_extract(lambda: None) is None
