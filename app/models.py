"""
SQLAlchemy Models for the Curation Database Schema

All tenant-owned models carry organization_id and are read and written
through app.tenant.TenantScope. Types degrade to JSON on non-PostgreSQL
engines so the same metadata runs under SQLite in tests.
"""
import enum
import uuid
from datetime import datetime, timezone
from uuid import UUID
from typing import Optional

from sqlalchemy import (
    Column, String, Text, Float, DateTime, Integer, Boolean, JSON, Uuid,
    Enum as SAEnum, ForeignKey, Index, UniqueConstraint, text
)
from sqlalchemy.dialects.postgresql import JSONB, ARRAY
from sqlalchemy.orm import relationship, Mapped
from sqlalchemy.sql import func

from app.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# Portable column types
EmbeddingType = JSON().with_variant(ARRAY(Float), "postgresql")
StringListType = JSON().with_variant(ARRAY(String), "postgresql")
JSONDocType = JSON().with_variant(JSONB, "postgresql")


# ============================================================================
# Enum Definitions
# ============================================================================

class ArticleStatus(enum.Enum):
    """Article review status"""
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class CurationJobStatus(enum.Enum):
    """Curation job lifecycle status"""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not CurationJobStatus.RUNNING


class LogLevel(enum.Enum):
    """Severity of a job log entry"""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


# Counter columns on CurationJob, keyed by their API names
JOB_COUNTER_FIELDS = {
    'total_found': 'totalFound',
    'processed': 'processed',
    'duplicates': 'duplicates',
    'low_score': 'lowScore',
    'curated': 'curated',
    'errors_count': 'errorsCount',
}


# ============================================================================
# Entity Models
# ============================================================================

class Organization(Base):
    """Tenant. Every curation record belongs to exactly one organization."""
    __tablename__ = "organizations"

    id: Mapped[UUID] = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = Column(String(200), nullable=False)
    slug: Mapped[str] = Column(String(100), nullable=False, unique=True)
    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    settings: Mapped[Optional["OrganizationSettings"]] = relationship(
        "OrganizationSettings", back_populates="organization", uselist=False,
        cascade="all, delete-orphan"
    )


class OrganizationSettings(Base):
    """
    Per-tenant curation thresholds.

    NULL columns mean "use the system default" for that field.
    """
    __tablename__ = "organization_settings"

    id: Mapped[UUID] = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[UUID] = Column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )
    relevance_threshold: Mapped[Optional[float]] = Column(Float, nullable=True)
    similarity_threshold: Mapped[Optional[float]] = Column(Float, nullable=True)
    article_max_age_days: Mapped[Optional[int]] = Column(Integer, nullable=True)
    brand_voice: Mapped[Optional[str]] = Column(Text, nullable=True)
    updated_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )

    organization: Mapped["Organization"] = relationship("Organization", back_populates="settings")


class RssSource(Base):
    """RSS/Atom feed configured for a tenant"""
    __tablename__ = "rss_sources"

    id: Mapped[UUID] = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[UUID] = Column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False
    )
    name: Mapped[str] = Column(String(200), nullable=False)
    url: Mapped[str] = Column(String(1000), nullable=False)
    category: Mapped[Optional[str]] = Column(String(100), nullable=True)
    is_active: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    last_fetched_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[Optional[str]] = Column(Text, nullable=True)
    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("url", "organization_id", name="uq_rss_sources_url_org"),
        Index("ix_rss_sources_org_active", "organization_id", "is_active"),
    )


class Article(Base):
    """
    Classified article awaiting (or past) human review

    Workflow: pending_review → (approved | rejected); rejected on entry when
    the relevance score is below the tenant threshold.
    """
    __tablename__ = "articles"

    # Primary Key
    id: Mapped[UUID] = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Tenant
    organization_id: Mapped[UUID] = Column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False
    )

    # Core Fields
    source_url: Mapped[str] = Column(String(1000), nullable=False)
    title: Mapped[str] = Column(String(500), nullable=False)
    content: Mapped[str] = Column(Text, nullable=False, default="")
    author: Mapped[Optional[str]] = Column(String(300), nullable=True)
    source_name: Mapped[Optional[str]] = Column(String(200), nullable=True)
    published_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)

    # AI-Generated Content
    embedding: Mapped[list[float]] = Column(EmbeddingType, nullable=False)
    relevance_score: Mapped[float] = Column(Float, nullable=False)
    summary: Mapped[Optional[str]] = Column(Text, nullable=True)
    categories: Mapped[list[str]] = Column(StringListType, nullable=False, default=list)

    # Workflow State
    status: Mapped[ArticleStatus] = Column(
        SAEnum(ArticleStatus, native_enum=True, name="article_status",
               values_callable=_enum_values),
        nullable=False,
        default=ArticleStatus.PENDING_REVIEW
    )

    # Job that created the record (null for manual curation)
    curation_job_id: Mapped[Optional[UUID]] = Column(
        Uuid,
        ForeignKey("curation_jobs.id", ondelete="SET NULL"),
        nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )

    # The primary duplicate guard: one record per link per tenant
    __table_args__ = (
        UniqueConstraint("source_url", "organization_id", name="uq_articles_source_url_org"),
        Index("ix_articles_org_created_at", "organization_id", "created_at"),
        Index("ix_articles_org_status", "organization_id", "status"),
    )

    def to_dict(self) -> dict:
        return {
            'id': str(self.id),
            'organizationId': str(self.organization_id),
            'sourceUrl': self.source_url,
            'title': self.title,
            'author': self.author,
            'sourceName': self.source_name,
            'publishedAt': as_utc(self.published_at).isoformat() if self.published_at else None,
            'relevanceScore': self.relevance_score,
            'summary': self.summary,
            'categories': list(self.categories or []),
            'status': self.status.value,
            'createdAt': as_utc(self.created_at).isoformat() if self.created_at else None,
        }


class CurationJob(Base):
    """
    One tracked execution of the curation pipeline.

    Counters only grow while running; every mutation is a conditional
    UPDATE guarded by status = 'running' (see app.services.job_manager).
    """
    __tablename__ = "curation_jobs"

    id: Mapped[UUID] = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[UUID] = Column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False
    )

    status: Mapped[CurationJobStatus] = Column(
        SAEnum(CurationJobStatus, native_enum=True, name="curation_job_status",
               values_callable=_enum_values),
        nullable=False,
        default=CurationJobStatus.RUNNING
    )

    # Counters
    total_found: Mapped[int] = Column(Integer, nullable=False, default=0)
    processed: Mapped[int] = Column(Integer, nullable=False, default=0)
    duplicates: Mapped[int] = Column(Integer, nullable=False, default=0)
    low_score: Mapped[int] = Column(Integer, nullable=False, default=0)
    curated: Mapped[int] = Column(Integer, nullable=False, default=0)
    errors_count: Mapped[int] = Column(Integer, nullable=False, default=0)

    # Source filter used for this run, kept so it can be re-run
    source_ids: Mapped[Optional[list[str]]] = Column(JSONDocType, nullable=True)

    # Timing
    started_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[Optional[int]] = Column(Integer, nullable=True)

    logs: Mapped[list["CurationJobLog"]] = relationship(
        "CurationJobLog",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CurationJobLog.id"
    )

    __table_args__ = (
        Index("ix_curation_jobs_org_started_at", "organization_id", "started_at"),
        Index("ix_curation_jobs_status", "status"),
        # At most one running job per tenant
        Index(
            "uq_curation_jobs_one_running_per_org",
            "organization_id",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )

    def counters(self) -> dict:
        return {api: getattr(self, column) for column, api in JOB_COUNTER_FIELDS.items()}

    def to_dict(self, include_logs: bool = True) -> dict:
        data = {
            'id': str(self.id),
            'organizationId': str(self.organization_id),
            'status': self.status.value,
            **self.counters(),
            'sourceIds': list(self.source_ids) if self.source_ids else None,
            'startedAt': as_utc(self.started_at).isoformat() if self.started_at else None,
            'completedAt': as_utc(self.completed_at).isoformat() if self.completed_at else None,
            'durationMs': self.duration_ms,
        }
        if include_logs:
            data['logs'] = [entry.to_dict() for entry in self.logs]
        return data


class CurationJobLog(Base):
    """
    One entry of a job's append-only log.

    Appending is a single INSERT; the integer id gives the order.
    """
    __tablename__ = "curation_job_logs"

    id: Mapped[int] = Column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[UUID] = Column(
        Uuid,
        ForeignKey("curation_jobs.id", ondelete="CASCADE"),
        nullable=False
    )
    timestamp: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    level: Mapped[LogLevel] = Column(
        SAEnum(LogLevel, native_enum=True, name="curation_log_level",
               values_callable=_enum_values),
        nullable=False
    )
    message: Mapped[str] = Column(Text, nullable=False)
    data: Mapped[Optional[dict]] = Column(JSONDocType, nullable=True)

    job: Mapped["CurationJob"] = relationship("CurationJob", back_populates="logs")

    __table_args__ = (
        Index("ix_curation_job_logs_job_id", "job_id", "id"),
    )

    def to_dict(self) -> dict:
        entry = {
            'timestamp': as_utc(self.timestamp).isoformat(),
            'level': self.level.value,
            'message': self.message,
        }
        if self.data is not None:
            entry['data'] = self.data
        return entry
