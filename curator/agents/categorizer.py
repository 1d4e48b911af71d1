"""Keyword-rule categorizer and suggestion merging."""

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from curator.agents.classifier import OllamaClassifier
from curator.agents.models import SuggestedCategory

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3

_BASE_CONFIDENCE = 0.6
_WEIGHTED_CONFIDENCE = 0.75
_MULTI_TERM_BOOST = 0.15
_CONFIDENCE_CAP = 0.9

_MIXED_SEX = ("men and women", "both sexes", "mixed gender", "both genders")


@dataclass(frozen=True)
class CategoryRule:
    required: tuple[str, ...]
    weighted: tuple[str, ...] = ()
    negative: tuple[str, ...] = ()


CATEGORY_RULES: dict[str, CategoryRule] = {
    "Chronic Kidney Disease (CKD)": CategoryRule(
        required=("kidney", "renal", "ckd", "nephro", "dialysis", "egfr"),
        weighted=("chronic kidney", "renal function", "kidney disease"),
    ),
    "Chronic Obstructive Pulmonary Disease (COPD)": CategoryRule(
        required=("copd", "pulmonary disease", "lung function", "respiratory"),
        weighted=("chronic obstructive", "copd"),
    ),
    "Early Vascular Aging (EVA)": CategoryRule(
        required=("arterial stiffness", "pulse wave velocity", "pwv", "vascular aging", "augmentation index"),
        weighted=("arterial stiffness", "pulse wave velocity", "early vascular aging"),
    ),
    "Heart Failure": CategoryRule(
        required=("heart failure", "cardiac failure", "hfpef", "hfref", "ejection fraction"),
        weighted=("heart failure", "cardiac failure"),
    ),
    "Hypertension": CategoryRule(
        required=("hypertension", "blood pressure", "hypertensive", "antihypertensive"),
        weighted=("hypertension", "blood pressure"),
    ),
    "Longevity": CategoryRule(
        required=("aging", "longevity", "elderly", "lifespan", "centenarian"),
        weighted=("longevity", "healthy aging", "lifespan"),
    ),
    "Maternal Health": CategoryRule(
        required=("pregnancy", "pregnant", "maternal", "prenatal", "postnatal", "gestational"),
        weighted=("pregnancy", "maternal health", "pregnant women"),
    ),
    "Men's Health": CategoryRule(
        required=("men only", "male participants", "prostate", "testosterone"),
        weighted=("men's health", "male-specific"),
        negative=_MIXED_SEX,
    ),
    "Metabolic Health": CategoryRule(
        required=("diabetes", "metabolic", "glucose", "insulin", "glycemic"),
        weighted=("metabolic syndrome", "diabetes", "insulin resistance"),
    ),
    "Neuroscience": CategoryRule(
        required=("brain", "cognitive", "neurological", "dementia", "alzheimer", "cerebral"),
        weighted=("cognitive function", "brain health", "dementia"),
    ),
    "Women's Health": CategoryRule(
        required=("women only", "female participants", "menopause", "estrogen", "postmenopausal women"),
        weighted=("women's health", "female-specific"),
        negative=_MIXED_SEX,
    ),
}


# ── Keyword Strategy ─────────────────────────────────────────────────


def keyword_suggestions(title: str, abstract: Optional[str]) -> list[SuggestedCategory]:
    """Score every research area against the title and abstract text."""
    text = f"{title} {abstract or ''}".lower()
    suggestions: list[SuggestedCategory] = []

    for category, rule in CATEGORY_RULES.items():
        if any(_mentions(text, neg) for neg in rule.negative):
            continue
        required_hits = sum(1 for kw in rule.required if _mentions(text, kw))
        if required_hits == 0:
            continue
        weighted_hits = sum(1 for kw in rule.weighted if _mentions(text, kw))

        confidence = _WEIGHTED_CONFIDENCE if weighted_hits else _BASE_CONFIDENCE
        if required_hits >= 2:
            confidence = min(_CONFIDENCE_CAP, confidence + _MULTI_TERM_BOOST)

        suggestions.append(
            SuggestedCategory(category=category, confidence=round(confidence, 2), source="keyword")
        )

    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return suggestions[:MAX_SUGGESTIONS]


def merge_suggestions(
    ml: list[SuggestedCategory],
    keyword: list[SuggestedCategory],
    min_confidence: float = 0.55,
) -> list[SuggestedCategory]:
    """ML suggestions win per category; keyword suggestions fill the gaps."""
    merged: dict[str, SuggestedCategory] = {}
    for suggestion in ml:
        merged.setdefault(suggestion.category, suggestion)
    for suggestion in keyword:
        merged.setdefault(suggestion.category, suggestion)

    kept = [s for s in merged.values() if s.confidence >= min_confidence]
    kept.sort(key=lambda s: s.confidence, reverse=True)
    return kept[:MAX_SUGGESTIONS]


# ── Categorizer ──────────────────────────────────────────────────────


@dataclass
class Categorizer:
    """Keyword rules plus an optional external classifier."""

    keyword_terms: list[str] = field(default_factory=list)
    classifier: Optional[OllamaClassifier] = None
    min_confidence: float = 0.55

    def categories_for(self, title: str, abstract: Optional[str]) -> list[str]:
        return [s.category for s in keyword_suggestions(title, abstract)]

    def extract_keywords(self, title: str, abstract: Optional[str]) -> list[str]:
        text = f"{title} {abstract or ''}".lower()
        return [term for term in self.keyword_terms if term.lower() in text]

    async def suggest(
        self, title: str, abstract: Optional[str], use_ml: bool = True
    ) -> list[SuggestedCategory]:
        ml: list[SuggestedCategory] = []
        if use_ml and self.classifier is not None:
            ml = await self.classifier.suggest(title, abstract)
            logger.debug("Classifier returned %d suggestions for %r", len(ml), title[:60])
        return merge_suggestions(ml, keyword_suggestions(title, abstract), self.min_confidence)


# ── Helpers ──────────────────────────────────────────────────────────


@lru_cache(maxsize=None)
def _term_pattern(term: str) -> re.Pattern:
    # Anchored at a word start so "men only" does not fire inside "women only".
    return re.compile(r"(?<![a-z0-9])" + re.escape(term))


def _mentions(text: str, term: str) -> bool:
    return _term_pattern(term).search(text) is not None
