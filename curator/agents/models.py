"""Shared data models for categorization agents."""

from typing import Literal

from pydantic import BaseModel, Field

RESEARCH_AREAS = (
    "Chronic Kidney Disease (CKD)",
    "Chronic Obstructive Pulmonary Disease (COPD)",
    "Early Vascular Aging (EVA)",
    "Heart Failure",
    "Hypertension",
    "Longevity",
    "Maternal Health",
    "Men's Health",
    "Metabolic Health",
    "Neuroscience",
    "Women's Health",
)

CategoryReviewStatus = Literal["pending_review", "auto_approved", "reviewed"]


class SuggestedCategory(BaseModel):
    """A research area proposed for a publication."""

    category: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: Literal["keyword", "ml"]


class ClassifierSuggestion(BaseModel):
    category: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = Field(default="", description="Brief explanation")


class ClassifierOutput(BaseModel):
    """Schema used for Ollama structured output."""

    suggestions: list[ClassifierSuggestion] = Field(default_factory=list)
