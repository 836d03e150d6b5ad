"""
RSS Feed Source

Fetches a tenant's RSS/Atom feeds with httpx, parses them with feedparser
and yields plain-text candidate items. One failing feed never stops the
others; only when every selected feed fails is the fetch stage considered
unavailable.
"""

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import feedparser
import httpx
from bs4 import BeautifulSoup

from app.database import session_scope
from app.models import RssSource, utcnow, as_utc
from app.services.url_normalizer import normalize_url
from app.tenant import TenantScope, parse_uuid_list

logger = logging.getLogger(__name__)

# Configuration
RSS_FETCH_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0  # seconds
CONTENT_LIMIT = 2000    # characters of plain text kept per item
MIN_CONTENT_LENGTH = 100
USER_AGENT = 'NewsletterCurator/1.0'


@dataclass
class CandidateItem:
    """A raw, not yet classified item pulled from a feed."""
    link: str
    title: str
    content: str
    published_at: datetime
    source_name: str
    author: Optional[str] = None
    source_url: Optional[str] = None


class FeedUnavailableError(Exception):
    """Raised when every selected feed failed to fetch."""


def clean_html_content(html: str, limit: int = CONTENT_LIMIT) -> str:
    """Reduce HTML to collapsed plain text, truncated to limit characters."""
    if not html:
        return ''
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup(['script', 'style', 'iframe', 'img', 'video']):
        tag.decompose()
    text = re.sub(r'\s+', ' ', soup.get_text(separator=' ')).strip()
    if len(text) > limit:
        text = text[:limit] + '...'
    return text


def _entry_datetime(entry) -> Optional[datetime]:
    for key in ('published_parsed', 'updated_parsed'):
        parsed = entry.get(key)
        if parsed:
            try:
                return datetime(*parsed[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                continue
    return None


def _parse_entry(entry, source_url: str, source_name: str) -> Optional[CandidateItem]:
    """
    Parse a feedparser entry into a CandidateItem.

    Returns:
        CandidateItem or None if title/link are missing or the body is too short
    """
    title = (entry.get('title') or '').strip()
    link = (entry.get('link') or '').strip()
    if not title or not link:
        return None

    raw_content = ''
    entry_content = entry.get('content')
    if entry_content:
        raw_content = entry_content[0].get('value', '')
    if not raw_content:
        raw_content = entry.get('summary') or entry.get('description') or ''

    content = clean_html_content(raw_content)
    if len(content) < MIN_CONTENT_LENGTH:
        return None

    return CandidateItem(
        link=normalize_url(link),
        title=title,
        content=content,
        author=entry.get('author') or None,
        published_at=_entry_datetime(entry) or utcnow(),
        source_name=source_name,
        source_url=source_url,
    )


def fetch_rss_feed(url: str, source_name: str, timeout: int = RSS_FETCH_TIMEOUT,
                   sleep=time.sleep) -> list[CandidateItem]:
    """
    Fetch and parse a single feed.

    Server errors and transport errors are retried with exponential backoff.

    Raises:
        httpx.HTTPError: When the feed cannot be fetched after retries
        ValueError: When the response is not a parseable feed
    """
    last_error: Optional[Exception] = None

    for attempt in range(MAX_RETRIES):
        try:
            response = httpx.get(
                url,
                timeout=timeout,
                follow_redirects=True,
                headers={'User-Agent': USER_AGENT}
            )
            response.raise_for_status()
            break
        except httpx.HTTPStatusError as e:
            last_error = e
            if e.response.status_code < 500:
                raise
        except httpx.TransportError as e:
            last_error = e
        logger.warning(f"Feed fetch failed for {url} (attempt {attempt + 1}/{MAX_RETRIES}): {last_error}")
        if attempt < MAX_RETRIES - 1:
            sleep(RETRY_BASE_DELAY * (2 ** attempt))
    else:
        raise last_error

    result = feedparser.parse(response.content)
    entries = result.get('entries', [])
    if result.get('bozo') and not entries:
        raise ValueError(f"Not a valid feed: {result.get('bozo_exception')}")
    if result.get('bozo'):
        # feedparser often recovers partial data
        logger.warning(f"Feed parsing issue for {url}: {result.get('bozo_exception')}")

    items = []
    for entry in entries:
        item = _parse_entry(entry, url, source_name)
        if item:
            items.append(item)

    logger.info(f"Fetched {len(items)} items from {source_name}")
    return items


class RssFeedSource:
    """
    Feed source reading a tenant's active rss_sources rows.

    Args:
        session_factory: SQLAlchemy session factory
        fetch: Callable(url, source_name) -> list[CandidateItem]
    """

    def __init__(self, session_factory=None, fetch=fetch_rss_feed):
        self.session_factory = session_factory
        self.fetch = fetch

    def _load_sources(self, organization_id, source_ids=None) -> list[tuple]:
        with session_scope(self.session_factory) as session:
            query = TenantScope(session, organization_id).sources.query(RssSource.is_active.is_(True))
            if source_ids:
                query = query.filter(RssSource.id.in_(parse_uuid_list(source_ids)))
            return [(s.id, s.name, s.url) for s in query.order_by(RssSource.name).all()]

    def _record_fetch(self, organization_id, source_id, error: Optional[str] = None):
        with session_scope(self.session_factory) as session:
            source = TenantScope(session, organization_id).sources.get(source_id)
            if source is not None:
                source.last_fetched_at = utcnow()
                source.last_error = error

    def fetch_candidates(self, organization_id, max_age_days: int,
                         source_ids: Optional[list] = None) -> list[CandidateItem]:
        """
        Fetch candidate items newer than max_age_days from the tenant's feeds.

        Args:
            organization_id: Tenant
            max_age_days: Items published before now - max_age_days are dropped
            source_ids: Optional subset of rss_sources ids to fetch

        Raises:
            FeedUnavailableError: If at least one source was selected and all failed
        """
        sources = self._load_sources(organization_id, source_ids)
        if not sources:
            logger.info(f"No active feed sources for organization {organization_id}")
            return []

        cutoff = utcnow() - timedelta(days=max_age_days)
        candidates = []
        failures = []

        for source_id, name, url in sources:
            try:
                items = self.fetch(url, name)
            except Exception as e:
                logger.error(f"Failed to fetch source '{name}': {e}")
                failures.append(f"{name}: {e}")
                self._record_fetch(organization_id, source_id, str(e)[:1000])
                continue

            fresh = [item for item in items if as_utc(item.published_at) >= cutoff]
            logger.info(
                f"Source '{name}': {len(fresh)} items ({len(items) - len(fresh)} filtered by date)"
            )
            candidates.extend(fresh)
            self._record_fetch(organization_id, source_id)

        if len(failures) == len(sources):
            raise FeedUnavailableError(
                f"All {len(sources)} feed source(s) failed: " + "; ".join(failures)
            )

        return candidates
