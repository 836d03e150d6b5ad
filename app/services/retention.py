"""
Retention cleanup for curation data.

Per tenant: fail RUNNING jobs left behind by dead workers, delete finished
jobs past their retention period, and purge old REJECTED articles.
"""

import logging

from app.config import JOB_RETENTION_DAYS, REJECTED_ARTICLE_RETENTION_DAYS, STALE_JOB_MINUTES
from app.database import session_scope
from app.models import Organization
from app.services.deduplicator import cleanup_old_articles
from app.services.job_manager import JobStore
from app.tenant import TenantScope

logger = logging.getLogger(__name__)


def list_organization_ids(session_factory=None) -> list:
    with session_scope(session_factory) as session:
        return [row[0] for row in session.query(Organization.id).order_by(Organization.created_at).all()]


def cleanup_organization(organization_id, session_factory=None,
                         job_retention_days: int = JOB_RETENTION_DAYS,
                         article_retention_days: int = REJECTED_ARTICLE_RETENTION_DAYS,
                         stale_minutes: int = STALE_JOB_MINUTES,
                         dry_run: bool = False) -> dict:
    """
    Run retention for one tenant.

    Stale jobs are failed before old jobs are deleted, so a job abandoned long
    ago is first made terminal and then becomes eligible for deletion.

    Returns:
        Dict with counts: stale_jobs_failed, jobs_deleted, articles_deleted
    """
    store = JobStore(organization_id, session_factory)

    stats = {
        'organization_id': str(organization_id),
        'stale_jobs_failed': 0,
        'jobs_deleted': 0,
        'articles_deleted': 0,
    }

    if dry_run:
        stats['jobs_deleted'] = store.delete_older_than(job_retention_days, dry_run=True)
    else:
        stats['stale_jobs_failed'] = store.fail_stale(stale_minutes)
        stats['jobs_deleted'] = store.delete_older_than(job_retention_days)

    with session_scope(session_factory) as session:
        stats['articles_deleted'] = cleanup_old_articles(
            TenantScope(session, organization_id),
            days=article_retention_days,
            dry_run=dry_run
        )

    logger.info(
        f"Retention for organization {organization_id}: "
        f"{stats['stale_jobs_failed']} stale jobs failed, {stats['jobs_deleted']} jobs, "
        f"{stats['articles_deleted']} rejected articles {'would be ' if dry_run else ''}deleted"
    )
    return stats


def cleanup_all_organizations(session_factory=None, **kwargs) -> list[dict]:
    """Run cleanup_organization for every tenant. A failing tenant stops the run."""
    return [
        cleanup_organization(organization_id, session_factory, **kwargs)
        for organization_id in list_organization_ids(session_factory)
    ]
