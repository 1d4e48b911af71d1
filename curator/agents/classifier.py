"""Research-area classifier using Ollama structured output."""

import logging
from typing import Optional

import httpx
import ollama
from pydantic import ValidationError

from curator.agents.models import RESEARCH_AREAS, ClassifierOutput, SuggestedCategory

logger = logging.getLogger(__name__)

MODEL = "qwen3:8b"

SYSTEM_PROMPT = """You are an expert research categorization system for cardiovascular and vascular health publications.

Assign the publication to relevant research areas from this list, using the EXACT names:
""" + "\n".join(f"- {area}" for area in RESEARCH_AREAS) + """

Rules:
- Do NOT assign "Women's Health" or "Men's Health" unless the study population is explicitly and primarily of that sex. A study of "men and women" or "patients" gets neither.
- Generic cardiovascular studies are not automatically women's or men's health.
- Be conservative: fewer categories is better than over-tagging.
- Only include categories with confidence >= 0.6, at most 3.

Respond ONLY with JSON: {"suggestions": [{"category": "...", "confidence": 0.0-1.0, "reasoning": "..."}]}"""


class OllamaClassifier:
    """Confidence-scored research areas from a local LLM."""

    def __init__(
        self,
        model: str = MODEL,
        min_confidence: float = 0.6,
        client: Optional[ollama.AsyncClient] = None,
    ):
        self.model = model
        self.min_confidence = min_confidence
        self._client = client or ollama.AsyncClient()

    async def suggest(self, title: str, abstract: Optional[str]) -> list[SuggestedCategory]:
        """Classify one publication; errors yield no suggestions."""
        text = f"{title}\n\n{abstract}" if abstract else title
        try:
            response = await self._client.chat(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": f"/no_think\nAnalyze this publication and suggest categories:\n\n{text}",
                    },
                ],
                format=ClassifierOutput.model_json_schema(),
                options={"temperature": 0},
                think=False,
            )
            output = ClassifierOutput.model_validate_json(response.message.content)
        except (ollama.ResponseError, httpx.HTTPError, ConnectionError, ValidationError) as exc:
            logger.warning("Classifier failed for %r: %s", title[:60], exc)
            return []

        suggestions = [
            SuggestedCategory(category=s.category, confidence=s.confidence, source="ml")
            for s in output.suggestions
            if s.category in RESEARCH_AREAS and s.confidence >= self.min_confidence
        ]
        return suggestions[:3]
