"""
Text-Intelligence Provider

Scores, summarizes and categorizes articles with Claude. Score and
categories use structured outputs so the response is guaranteed JSON.
"""

import json
import logging
import math
import os
import time
from typing import Optional

from anthropic import Anthropic

logger = logging.getLogger(__name__)

# Configuration
MODEL = os.environ.get("CURATION_CLAUDE_MODEL", "claude-sonnet-4-5")
TEMPERATURE = 0
SCORE_MAX_TOKENS = 500
SUMMARY_MAX_TOKENS = 400
CATEGORY_MAX_TOKENS = 300
MAX_CATEGORIES = 3
DEFAULT_CATEGORY = "General"

# Characters of article body sent with each prompt
SCORE_CONTENT_LIMIT = 1500
SUMMARY_CONTENT_LIMIT = 2000
CATEGORY_CONTENT_LIMIT = 1000

# Anthropic beta API version for structured outputs
STRUCTURED_OUTPUTS_BETA = os.environ.get(
    "ANTHROPIC_STRUCTURED_OUTPUTS_BETA",
    "structured-outputs-2025-11-13"
)

RELEVANCE_SCHEMA = {
    "type": "object",
    "properties": {
        "relevance_score": {
            "type": "number",
            "description": "Score from 0 to 10 indicating how relevant the article is"
        },
        "reasoning": {
            "type": "string",
            "description": "One sentence explaining the score"
        }
    },
    "required": ["relevance_score", "reasoning"],
    "additionalProperties": False
}

CATEGORY_SCHEMA = {
    "type": "object",
    "properties": {
        "categories": {
            "type": "array",
            "items": {"type": "string"},
            "description": "One to three short topic labels"
        }
    },
    "required": ["categories"],
    "additionalProperties": False
}

RELEVANCE_PROMPT = """You are a content curator for a professional newsletter.

Score the following article for relevance on a scale of 0-10, where:
- 10 = Highly relevant, news every reader should know
- 7-9 = Very relevant, a significant development
- 5-6 = Somewhat relevant, interesting but not critical
- 3-4 = Low relevance, tangentially related
- 0-2 = Not relevant, off-topic

Consider:
- Direct relevance to the newsletter's audience
- Impact and practical implications
- Quality and credibility of the source
- Timeliness and novelty
{context}
TITLE: {title}

CONTENT:
{content}"""

SUMMARY_PROMPT = """You are writing summaries for a professional newsletter.

Write a concise, engaging 2-3 sentence summary of this article. Focus on:
- The key development or finding
- Why it matters to readers
- Practical implications

Be clear and direct, avoid hype.
{context}
TITLE: {title}

CONTENT:
{content}

Write only the summary, no preamble."""

CATEGORY_PROMPT = """Categorize this article into 1-3 short topic labels (for example "Machine Learning", "Regulation", "Industry News").
{context}
TITLE: {title}

CONTENT:
{content}"""


class TextIntelligenceError(Exception):
    """Raised when the provider fails or returns an unusable response."""


def _context_block(context: Optional[str]) -> str:
    if not context:
        return ""
    return f"\nEditorial voice and audience for this newsletter:\n{context.strip()}\n"


def clamp_score(value) -> float:
    """
    Clamp a score into the 0-10 range.

    Raises:
        ValueError: If the score is NaN or infinite
    """
    score = float(value)
    if not math.isfinite(score):
        raise ValueError(f"Score is not a finite number: {value!r}")
    return max(0.0, min(10.0, score))


def clean_categories(raw) -> list[str]:
    """Trim, de-duplicate (case-insensitive) and cap category labels."""
    categories = []
    seen = set()
    for item in raw or []:
        label = str(item).strip()
        if not label or label.lower() in seen:
            continue
        seen.add(label.lower())
        categories.append(label)
        if len(categories) == MAX_CATEGORIES:
            break
    return categories or [DEFAULT_CATEGORY]


class ClaudeTextIntelligence:
    """Text-intelligence provider backed by the Anthropic Messages API."""

    def __init__(self, client: Optional[Anthropic] = None, model: str = MODEL):
        self._client = client
        self.model = model

    @property
    def client(self) -> Anthropic:
        if self._client is None:
            self._client = Anthropic()
        return self._client

    def _structured(self, prompt: str, schema: dict, max_tokens: int, operation: str) -> dict:
        start_time = time.time()
        try:
            response = self.client.beta.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=TEMPERATURE,
                betas=[STRUCTURED_OUTPUTS_BETA],
                messages=[
                    {"role": "user", "content": prompt}
                ],
                output_format={
                    "type": "json_schema",
                    "schema": schema
                }
            )
            result = json.loads(response.content[0].text)
        except (json.JSONDecodeError, IndexError, AttributeError) as e:
            raise TextIntelligenceError(f"Malformed {operation} response: {e}") from e
        except Exception as e:
            raise TextIntelligenceError(f"Failed to {operation} article: {e}") from e

        latency_ms = int((time.time() - start_time) * 1000)
        logger.debug(f"Claude {operation} completed in {latency_ms}ms")
        return result

    def score(self, title: str, content: str, context: Optional[str] = None) -> float:
        """
        Score article relevance from 0 to 10.

        Raises:
            TextIntelligenceError: On API failure or malformed response
        """
        prompt = RELEVANCE_PROMPT.format(
            context=_context_block(context),
            title=title,
            content=(content or '')[:SCORE_CONTENT_LIMIT]
        )
        result = self._structured(prompt, RELEVANCE_SCHEMA, SCORE_MAX_TOKENS, "score")
        try:
            return clamp_score(result["relevance_score"])
        except (KeyError, TypeError, ValueError) as e:
            raise TextIntelligenceError(f"Malformed score response: {result}") from e

    def summarize(self, title: str, content: str, context: Optional[str] = None) -> str:
        """
        Write a 2-3 sentence summary.

        Raises:
            TextIntelligenceError: On API failure or an empty summary
        """
        prompt = SUMMARY_PROMPT.format(
            context=_context_block(context),
            title=title,
            content=(content or '')[:SUMMARY_CONTENT_LIMIT]
        )
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=SUMMARY_MAX_TOKENS,
                temperature=TEMPERATURE,
                messages=[
                    {"role": "user", "content": prompt}
                ]
            )
            summary = response.content[0].text.strip()
        except (IndexError, AttributeError) as e:
            raise TextIntelligenceError(f"Malformed summarize response: {e}") from e
        except Exception as e:
            raise TextIntelligenceError(f"Failed to summarize article: {e}") from e

        if not summary:
            raise TextIntelligenceError("Empty summary returned")
        return summary

    def categorize(self, title: str, content: str, context: Optional[str] = None) -> list[str]:
        """
        Assign 1-3 category labels.

        Raises:
            TextIntelligenceError: On API failure or malformed response
        """
        prompt = CATEGORY_PROMPT.format(
            context=_context_block(context),
            title=title,
            content=(content or '')[:CATEGORY_CONTENT_LIMIT]
        )
        result = self._structured(prompt, CATEGORY_SCHEMA, CATEGORY_MAX_TOKENS, "categorize")
        categories = result.get("categories") if isinstance(result, dict) else None
        if not isinstance(categories, list):
            raise TextIntelligenceError(f"Malformed categorize response: {result}")
        return clean_categories(categories)
