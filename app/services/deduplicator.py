"""
Deduplication Engine

Decides whether a candidate duplicates something the tenant already has.
The exact link check runs first because it is one indexed lookup; the
vector comparison only runs when the link is new. The unique constraint on
(source_url, organization_id) remains the final guard against races.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import timedelta

from app.config import DEDUP_LOOKBACK_DAYS, REJECTED_ARTICLE_RETENTION_DAYS
from app.models import Article, ArticleStatus, utcnow
from app.services.embeddings import cosine_similarity
from app.tenant import TenantScope

logger = logging.getLogger(__name__)


class DuplicateReason(enum.Enum):
    URL = "url"
    CONTENT = "content"
    NONE = "none"


@dataclass
class SimilarArticle:
    id: str
    title: str
    similarity: float

    def to_dict(self) -> dict:
        return {'id': self.id, 'title': self.title, 'similarity': round(self.similarity, 4)}


@dataclass
class DuplicateVerdict:
    is_duplicate: bool
    reason: DuplicateReason = DuplicateReason.NONE
    similar_articles: list[SimilarArticle] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'isDuplicate': self.is_duplicate,
            'reason': self.reason.value,
            'similarArticles': [a.to_dict() for a in self.similar_articles],
        }


def is_duplicate_by_url(scope: TenantScope, url: str) -> bool:
    """True if the tenant already has an article with this canonical link."""
    return scope.articles.query(Article.source_url == url).with_entities(Article.id).first() is not None


def find_similar_articles(scope: TenantScope, embedding: list[float], threshold: float,
                          lookback_days: int = DEDUP_LOOKBACK_DAYS) -> list[SimilarArticle]:
    """
    Find the tenant's recent articles whose embedding is at least threshold similar.

    Only articles created in the last lookback_days are compared. Pairs where
    similarity is undefined (zero vector, dimension mismatch) never match.

    Returns:
        Matches sorted by similarity, highest first
    """
    cutoff = utcnow() - timedelta(days=lookback_days)
    rows = scope.articles.query(Article.created_at >= cutoff).with_entities(
        Article.id, Article.title, Article.embedding
    ).all()

    matches = []
    for article_id, title, stored in rows:
        if not stored:
            continue
        similarity = cosine_similarity(embedding, stored)
        if similarity is not None and similarity >= threshold:
            matches.append(SimilarArticle(id=str(article_id), title=title, similarity=similarity))

    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches


class Deduplicator:
    """
    Exact-link then vector-similarity duplicate check, scoped to one tenant.

    Callers must pass a valid, non-empty embedding; an embedding failure is
    not evidence that an item is new.
    """

    def __init__(self, lookback_days: int = DEDUP_LOOKBACK_DAYS):
        self.lookback_days = lookback_days

    def check_for_duplicates(self, scope: TenantScope, url: str, embedding: list[float],
                             threshold: float) -> DuplicateVerdict:
        if not embedding:
            raise ValueError("check_for_duplicates requires a non-empty embedding")

        if is_duplicate_by_url(scope, url):
            return DuplicateVerdict(is_duplicate=True, reason=DuplicateReason.URL)

        similar = find_similar_articles(scope, embedding, threshold, self.lookback_days)
        if similar:
            return DuplicateVerdict(
                is_duplicate=True,
                reason=DuplicateReason.CONTENT,
                similar_articles=similar
            )

        return DuplicateVerdict(is_duplicate=False)


def cleanup_old_articles(scope: TenantScope,
                         days: int = REJECTED_ARTICLE_RETENTION_DAYS,
                         dry_run: bool = False) -> int:
    """
    Delete the tenant's REJECTED articles older than days.

    Returns:
        Number of articles deleted (or that would be, with dry_run)
    """
    cutoff = utcnow() - timedelta(days=days)
    query = scope.articles.query(
        Article.status == ArticleStatus.REJECTED,
        Article.created_at < cutoff
    )
    if dry_run:
        return query.count()
    deleted = query.delete(synchronize_session=False)
    logger.info(f"Deleted {deleted} rejected articles older than {days} days for organization {scope.organization_id}")
    return deleted
