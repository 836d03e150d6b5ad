"""
In-memory stand-ins for the external collaborators of a curation pass.
"""
from app.services.embeddings import EmbeddingError
from app.services.rss_fetcher import FeedUnavailableError

DIMENSIONS = 32


def unit_vector(index: int, dimensions: int = DIMENSIONS) -> list[float]:
    vector = [0.0] * dimensions
    vector[index % dimensions] = 1.0
    return vector


class FakeFeedSource:
    """Returns a fixed candidate list, or raises FeedUnavailableError."""

    def __init__(self, items=None, error=None):
        self.items = list(items or [])
        self.error = error
        self.calls = []

    def fetch_candidates(self, organization_id, max_age_days, source_ids=None):
        self.calls.append({
            'organization_id': organization_id,
            'max_age_days': max_age_days,
            'source_ids': source_ids,
        })
        if self.error:
            raise FeedUnavailableError(self.error)
        return list(self.items)


class FakeEmbedder:
    """
    Deterministic embeddings keyed by article title.

    Titles without an explicit vector get a distinct unit vector, assigned
    from the last dimension down so they stay orthogonal to the low-index
    vectors tests pass explicitly. A title mapped to None fails to embed.
    """

    def __init__(self, vectors=None):
        self.vectors = dict(vectors or {})
        self.calls = []
        self._assigned = {}

    def embed(self, text):
        title = text.split("\n\n", 1)[0]
        self.calls.append(title)
        if title in self.vectors:
            vector = self.vectors[title]
            if vector is None:
                raise EmbeddingError(f"Cannot embed {title}")
            return vector
        if title not in self._assigned:
            self._assigned[title] = unit_vector(DIMENSIONS - 1 - len(self._assigned))
        return self._assigned[title]


class FakeIntelligence:
    """Scores by title (default 8.0) and records every call."""

    def __init__(self, scores=None, default_score=8.0, categories=None, fail_on=None):
        self.scores = dict(scores or {})
        self.default_score = default_score
        self.categories = categories or ["Technology", "Media"]
        self.fail_on = set(fail_on or [])
        self.calls = []

    def _record(self, operation, title, context):
        self.calls.append((operation, title, context))
        if (operation, title) in self.fail_on:
            raise RuntimeError(f"{operation} failed for {title}")

    def score(self, title, content, context=None):
        self._record('score', title, context)
        return self.scores.get(title, self.default_score)

    def summarize(self, title, content, context=None):
        self._record('summarize', title, context)
        return f"Summary of {title}"

    def categorize(self, title, content, context=None):
        self._record('categorize', title, context)
        return list(self.categories)

    def operations_for(self, title):
        return [operation for operation, called_title, _ in self.calls if called_title == title]
