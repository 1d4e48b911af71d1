"""Text cleanup for titles, author lists, abstracts and journal names."""

import html
import re

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([,.;:)\]])")
_SPACE_AFTER_OPEN_RE = re.compile(r"([(\[])\s+")


def sanitize_text(text: str | None) -> str:
    """Strip markup, decode entities and collapse whitespace.

    Tags are removed before entities are decoded so that encoded markup
    (``&lt;b&gt;``) survives as literal text.
    """
    if not text:
        return ""
    cleaned = _TAG_RE.sub("", text)
    cleaned = html.unescape(cleaned)
    return _SPACE_RE.sub(" ", cleaned).strip()


def tidy_inline(text: str) -> str:
    """Collapse whitespace left behind by inline elements."""
    text = _SPACE_RE.sub(" ", text).strip()
    text = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)
    return _SPACE_AFTER_OPEN_RE.sub(r"\1", text)


# ── Journal Names ────────────────────────────────────────────────────

JOURNAL_NORMALIZATIONS: dict[str, str] = {
    "plos one": "PLOS ONE",
    "plos medicine": "PLOS Medicine",
    "hypertension (dallas, tex. : 1979)": "Hypertension",
    "hypertension (dallas, texas : 1979)": "Hypertension",
    "hypertension research : official journal of the japanese society of hypertension": "Hypertension Research",
    "journal of hypertension": "Journal of Hypertension",
    "american journal of hypertension": "American Journal of Hypertension",
    "circulation. heart failure": "Circulation: Heart Failure",
    "circulation. cardiovascular imaging": "Circulation: Cardiovascular Imaging",
    "blood pressure monitoring": "Blood Pressure Monitoring",
    "international journal of cardiology": "International Journal of Cardiology",
    "the journal of physiology": "The Journal of Physiology",
    "journal of applied physiology (bethesda, md. : 1985)": "Journal of Applied Physiology",
    "vascular medicine (london, england)": "Vascular Medicine",
    "sensors (basel, switzerland)": "Sensors",
    "clinical science (london, england : 1979)": "Clinical Science",
    "journal of the american society of nephrology : jasn": "Journal of the American Society of Nephrology",
    "clinical journal of the american society of nephrology : cjasn": "Clinical Journal of the American Society of Nephrology",
}

_COLON_SPACING_RE = re.compile(r"\s+:\s+")


def normalize_journal_name(journal: str) -> str:
    """Map known journal-name variants to their canonical form."""
    cleaned = sanitize_text(journal)
    canonical = JOURNAL_NORMALIZATIONS.get(cleaned.lower())
    if canonical:
        return canonical
    return _COLON_SPACING_RE.sub(": ", cleaned)
