"""
Tenant-Scoped Store

One generic repository enforces the rule that every query issued for a
tenant-owned model carries the tenant's organization_id. Services never call
session.query() on tenant-owned models directly; they go through TenantScope.
"""
import logging
from typing import Generic, Optional, TypeVar
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import Article, CurationJob, OrganizationSettings, RssSource

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


class TenantViolationError(Exception):
    """Raised when a write tries to place a record in another tenant."""


class DuplicateArticleError(Exception):
    """Raised when (source_url, organization_id) already exists."""

    def __init__(self, source_url: str):
        super().__init__(f"Article already exists for this organization: {source_url}")
        self.source_url = source_url


def _coerce_uuid(value) -> UUID:
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


def parse_uuid_list(values) -> list[UUID]:
    """Parse ids, silently dropping ones that are not UUIDs."""
    parsed = []
    for value in values or []:
        try:
            parsed.append(_coerce_uuid(value))
        except ValueError:
            logger.warning(f"Ignoring invalid id: {value!r}")
    return parsed


class TenantRepository(Generic[ModelT]):
    """
    Query/write access to one tenant-owned model, confined to one tenant.

    Args:
        session: Open SQLAlchemy session
        model: Mapped class with an organization_id column
        organization_id: Tenant every operation is confined to
    """

    def __init__(self, session: Session, model: type[ModelT], organization_id: UUID):
        self.session = session
        self.model = model
        self.organization_id = _coerce_uuid(organization_id)

    def query(self, *criteria):
        """Base query; always filtered by tenant."""
        query = self.session.query(self.model).filter(
            self.model.organization_id == self.organization_id
        )
        if criteria:
            query = query.filter(*criteria)
        return query

    def get(self, record_id) -> Optional[ModelT]:
        """Fetch by primary key; None if missing or owned by another tenant."""
        try:
            record_uuid = _coerce_uuid(record_id)
        except ValueError:
            return None
        return self.query(self.model.id == record_uuid).first()

    def add(self, **fields) -> ModelT:
        """Create a record in this tenant and flush it."""
        supplied = fields.pop('organization_id', None)
        if supplied is not None and _coerce_uuid(supplied) != self.organization_id:
            raise TenantViolationError(
                f"Cannot create {self.model.__name__} for organization {supplied} "
                f"from a scope bound to {self.organization_id}"
            )
        record = self.model(organization_id=self.organization_id, **fields)
        self.session.add(record)
        self.session.flush()
        return record

    def delete(self, record_id) -> bool:
        record = self.get(record_id)
        if record is None:
            return False
        self.session.delete(record)
        self.session.flush()
        return True

    def count(self, *criteria) -> int:
        return self.query(*criteria).count()


class TenantScope:
    """
    All tenant-owned repositories for one organization, sharing a session.

    Usage:
        with session_scope(factory) as session:
            scope = TenantScope(session, organization_id)
            scope.articles.query(Article.status == ArticleStatus.REJECTED).count()
    """

    def __init__(self, session: Session, organization_id):
        self.session = session
        self.organization_id = _coerce_uuid(organization_id)
        self.articles: TenantRepository[Article] = TenantRepository(session, Article, self.organization_id)
        self.jobs: TenantRepository[CurationJob] = TenantRepository(session, CurationJob, self.organization_id)
        self.sources: TenantRepository[RssSource] = TenantRepository(session, RssSource, self.organization_id)
        self.settings: TenantRepository[OrganizationSettings] = TenantRepository(
            session, OrganizationSettings, self.organization_id
        )

    def create_article(self, **fields) -> Article:
        """
        Insert an Article, translating the per-tenant unique constraint.

        The caller's session is rolled back on conflict, so create_article
        should be the only pending write in that session.
        """
        try:
            return self.articles.add(**fields)
        except IntegrityError as e:
            self.session.rollback()
            if _is_unique_violation(e):
                logger.info(f"Duplicate article rejected by storage: {fields.get('source_url')}")
                raise DuplicateArticleError(fields.get('source_url', '')) from e
            raise


def _is_unique_violation(error: IntegrityError) -> bool:
    message = str(error.orig).lower()
    return (
        'uq_articles_source_url_org' in message
        or 'unique' in message
        or 'duplicate key' in message
    )
