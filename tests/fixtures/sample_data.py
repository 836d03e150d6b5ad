"""
Test data factories for creating sample database records

Provides factory functions for all entities with sensible defaults
"""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from app.models import (
    Article, ArticleStatus, CurationJob, CurationJobStatus, Organization,
    OrganizationSettings, RssSource
)
from app.services.rss_fetcher import CandidateItem

BODY = (
    "Researchers published a detailed study this week describing how regional "
    "newsrooms are adopting shared tooling to verify sources and reduce costs."
)


def create_organization(name=None, slug=None, **kwargs):
    """
    Create an Organization instance with default test values

    Returns:
        Organization instance (not committed to database)
    """
    suffix = uuid4().hex[:8]
    return Organization(
        name=name or f"Test Org {suffix}",
        slug=slug or f"test-org-{suffix}",
        **kwargs
    )


def create_settings(organization_id, relevance_threshold=None, similarity_threshold=None,
                    article_max_age_days=None, brand_voice=None):
    """Create an OrganizationSettings instance. None means system default."""
    return OrganizationSettings(
        organization_id=organization_id,
        relevance_threshold=relevance_threshold,
        similarity_threshold=similarity_threshold,
        article_max_age_days=article_max_age_days,
        brand_voice=brand_voice,
    )


def create_source(organization_id, name=None, url=None, is_active=True, **kwargs):
    """
    Create an RssSource instance with default test values

    Returns:
        RssSource instance (not committed to database)
    """
    suffix = uuid4().hex[:8]
    return RssSource(
        organization_id=organization_id,
        name=name or f"Test Source {suffix}",
        url=url or f"https://example.com/feeds/{suffix}.xml",
        is_active=is_active,
        **kwargs
    )


def create_article(
    organization_id,
    source_url=None,
    title="Test Article Title",
    content=BODY,
    embedding=None,
    relevance_score=7.5,
    status=ArticleStatus.PENDING_REVIEW,
    categories=None,
    **kwargs
):
    """
    Create an Article instance with default test values

    Args:
        organization_id: Owning tenant
        source_url: Canonical link (generates unique URL if None)
        embedding: Vector (defaults to a fixed 3-dimensional vector)
        **kwargs: Additional field overrides

    Returns:
        Article instance (not committed to database)
    """
    if source_url is None:
        source_url = f"https://example.com/article/{uuid4()}"

    return Article(
        organization_id=organization_id,
        source_url=source_url,
        title=title,
        content=content,
        embedding=embedding if embedding is not None else [1.0, 0.0, 0.0],
        relevance_score=relevance_score,
        status=status,
        categories=categories if categories is not None else ["General"],
        **kwargs
    )


def create_job(organization_id, status=CurationJobStatus.COMPLETED, started_at=None, **kwargs):
    """
    Create a CurationJob instance

    Returns:
        CurationJob instance (not committed to database)
    """
    started_at = started_at or datetime.now(timezone.utc)
    completed_at = None if status is CurationJobStatus.RUNNING else started_at + timedelta(minutes=1)
    return CurationJob(
        organization_id=organization_id,
        status=status,
        started_at=started_at,
        completed_at=completed_at,
        **kwargs
    )


def create_candidate(title=None, link=None, content=BODY, published_at=None, source_name="Test Feed"):
    """Create a CandidateItem as a feed source would yield it."""
    suffix = uuid4().hex[:8]
    return CandidateItem(
        link=link or f"https://example.com/news/{suffix}",
        title=title or f"Candidate {suffix}",
        content=content,
        published_at=published_at or datetime.now(timezone.utc),
        source_name=source_name,
    )
