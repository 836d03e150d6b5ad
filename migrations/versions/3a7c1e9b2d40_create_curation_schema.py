"""Create curation schema

Revision ID: 3a7c1e9b2d40
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3a7c1e9b2d40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Enums (lowercase values, as persisted by the models)
    article_status = postgresql.ENUM(
        'pending_review', 'approved', 'rejected',
        name='article_status'
    )
    article_status.create(op.get_bind(), checkfirst=True)

    curation_job_status = postgresql.ENUM(
        'running', 'completed', 'failed', 'cancelled',
        name='curation_job_status'
    )
    curation_job_status.create(op.get_bind(), checkfirst=True)

    curation_log_level = postgresql.ENUM(
        'info', 'warn', 'error',
        name='curation_log_level'
    )
    curation_log_level.create(op.get_bind(), checkfirst=True)

    # Tenants
    op.create_table(
        'organizations',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )

    op.create_table(
        'organization_settings',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('relevance_threshold', sa.Float(), nullable=True),
        sa.Column('similarity_threshold', sa.Float(), nullable=True),
        sa.Column('article_max_age_days', sa.Integer(), nullable=True),
        sa.Column('brand_voice', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id')
    )

    # Feeds
    op.create_table(
        'rss_sources',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('url', sa.String(1000), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('last_fetched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('url', 'organization_id', name='uq_rss_sources_url_org')
    )
    op.create_index('ix_rss_sources_org_active', 'rss_sources', ['organization_id', 'is_active'], unique=False)

    # Jobs
    op.create_table(
        'curation_jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', postgresql.ENUM('running', 'completed', 'failed', 'cancelled', name='curation_job_status', create_type=False), nullable=False),
        sa.Column('total_found', sa.Integer(), server_default='0', nullable=False),
        sa.Column('processed', sa.Integer(), server_default='0', nullable=False),
        sa.Column('duplicates', sa.Integer(), server_default='0', nullable=False),
        sa.Column('low_score', sa.Integer(), server_default='0', nullable=False),
        sa.Column('curated', sa.Integer(), server_default='0', nullable=False),
        sa.Column('errors_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('source_ids', postgresql.JSONB(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_curation_jobs_org_started_at', 'curation_jobs', ['organization_id', 'started_at'], unique=False)
    op.create_index('ix_curation_jobs_status', 'curation_jobs', ['status'], unique=False)
    # At most one running job per tenant
    op.create_index(
        'uq_curation_jobs_one_running_per_org',
        'curation_jobs',
        ['organization_id'],
        unique=True,
        postgresql_where=sa.text("status = 'running'")
    )

    op.create_table(
        'curation_job_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('level', postgresql.ENUM('info', 'warn', 'error', name='curation_log_level', create_type=False), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', postgresql.JSONB(), nullable=True),
        sa.ForeignKeyConstraint(['job_id'], ['curation_jobs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_curation_job_logs_job_id', 'curation_job_logs', ['job_id', 'id'], unique=False)

    # Articles
    op.create_table(
        'articles',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('source_url', sa.String(1000), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('content', sa.Text(), server_default='', nullable=False),
        sa.Column('author', sa.String(300), nullable=True),
        sa.Column('source_name', sa.String(200), nullable=True),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('embedding', postgresql.ARRAY(sa.Float()), nullable=False),
        sa.Column('relevance_score', sa.Float(), nullable=False),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('categories', postgresql.ARRAY(sa.String()), server_default='{}', nullable=False),
        sa.Column('status', postgresql.ENUM('pending_review', 'approved', 'rejected', name='article_status', create_type=False), nullable=False),
        sa.Column('curation_job_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['curation_job_id'], ['curation_jobs.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_url', 'organization_id', name='uq_articles_source_url_org')
    )
    op.create_index('ix_articles_org_created_at', 'articles', ['organization_id', 'created_at'], unique=False)
    op.create_index('ix_articles_org_status', 'articles', ['organization_id', 'status'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_articles_org_status', table_name='articles')
    op.drop_index('ix_articles_org_created_at', table_name='articles')
    op.drop_table('articles')

    op.drop_index('ix_curation_job_logs_job_id', table_name='curation_job_logs')
    op.drop_table('curation_job_logs')

    op.drop_index('uq_curation_jobs_one_running_per_org', table_name='curation_jobs')
    op.drop_index('ix_curation_jobs_status', table_name='curation_jobs')
    op.drop_index('ix_curation_jobs_org_started_at', table_name='curation_jobs')
    op.drop_table('curation_jobs')

    op.drop_index('ix_rss_sources_org_active', table_name='rss_sources')
    op.drop_table('rss_sources')
    op.drop_table('organization_settings')
    op.drop_table('organizations')

    op.execute('DROP TYPE IF EXISTS curation_log_level')
    op.execute('DROP TYPE IF EXISTS curation_job_status')
    op.execute('DROP TYPE IF EXISTS article_status')
