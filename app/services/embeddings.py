"""
Embedding Provider

Turns article text into a vector via the OpenAI embeddings API and compares
vectors with cosine similarity.
"""

import logging
import math
import os
from typing import Optional, Sequence

import numpy as np
from openai import OpenAI

logger = logging.getLogger(__name__)

# Configuration
EMBEDDING_MODEL = os.environ.get("CURATION_EMBEDDING_MODEL", "text-embedding-3-small")
TEXT_LIMIT = 8000  # Characters sent to the embeddings endpoint


class EmbeddingError(Exception):
    """Raised when no usable vector could be produced for a text."""


def build_embedding_text(title: str, content: str) -> str:
    """Text embedded for an article: title, blank line, body."""
    return f"{title}\n\n{content or ''}"


def validate_embedding(vector) -> list[float]:
    """
    Check that a vector is non-empty and entirely finite numbers.

    Returns:
        The vector as a list of floats

    Raises:
        EmbeddingError: If the vector is empty or malformed
    """
    if vector is None or isinstance(vector, (str, bytes)):
        raise EmbeddingError("Embedding is missing")
    try:
        values = [float(v) for v in vector]
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"Embedding contains non-numeric values: {e}") from e
    if not values:
        raise EmbeddingError("Embedding is empty")
    if not all(math.isfinite(v) for v in values):
        raise EmbeddingError("Embedding contains non-finite values")
    return values


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> Optional[float]:
    """
    Cosine similarity between two vectors.

    Returns:
        dot(a, b) / (|a| * |b|), or None when undefined (empty vectors,
        different dimensionality, or a zero-magnitude vector)
    """
    if not a or not b or len(a) != len(b):
        return None
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return None
    return float(np.dot(va, vb) / (norm_a * norm_b))


class OpenAIEmbeddingProvider:
    """Embedding provider backed by the OpenAI embeddings endpoint."""

    def __init__(self, client: Optional[OpenAI] = None, model: str = EMBEDDING_MODEL):
        self._client = client
        self.model = model

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def embed(self, text: str) -> list[float]:
        """
        Generate an embedding vector for text.

        Raises:
            EmbeddingError: On API failure or an empty/malformed response
        """
        truncated = (text or '')[:TEXT_LIMIT]
        if not truncated.strip():
            raise EmbeddingError("Cannot embed empty text")

        try:
            response = self.client.embeddings.create(model=self.model, input=truncated)
        except Exception as e:
            logger.error(f"Embedding request failed: {e}")
            raise EmbeddingError(f"Failed to generate embedding: {e}") from e

        data = getattr(response, 'data', None) or []
        if not data:
            raise EmbeddingError("Invalid embedding response: no data")

        vector = validate_embedding(data[0].embedding)
        logger.debug(f"Generated embedding with {len(vector)} dimensions")
        return vector

    def similarity(self, a: Sequence[float], b: Sequence[float]) -> Optional[float]:
        return cosine_similarity(a, b)
