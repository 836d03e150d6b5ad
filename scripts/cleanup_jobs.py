#!/usr/bin/env python3
"""
Cleanup script for curation jobs and rejected articles.

For every organization (or the one given):
- fails RUNNING jobs older than the stale limit (worker died mid-run)
- deletes finished jobs older than the retention period
- deletes REJECTED articles older than their retention period

Should be run daily via cron or a scheduled job.

Usage:
    python scripts/cleanup_jobs.py
    python scripts/cleanup_jobs.py --organization <uuid> --days 14 --dry-run

Environment:
    DATABASE_URL - PostgreSQL connection string
    CURATION_JOB_RETENTION_DAYS - Override default 30-day job retention (optional)
    CURATION_REJECTED_RETENTION_DAYS - Override default 90-day article retention (optional)
    CURATION_STALE_JOB_MINUTES - Override default 120-minute stale limit (optional)
"""

import argparse
import logging
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from app.config import JOB_RETENTION_DAYS, REJECTED_ARTICLE_RETENTION_DAYS, STALE_JOB_MINUTES
from app.services.retention import cleanup_all_organizations, cleanup_organization

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
# Silence verbose SQLAlchemy logging
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def main():
    """Run cleanup with command line support."""
    parser = argparse.ArgumentParser(description='Cleanup old curation jobs and rejected articles')
    parser.add_argument(
        '--organization',
        default=None,
        help='Only clean up this organization id (default: all organizations)'
    )
    parser.add_argument(
        '--days',
        type=int,
        default=JOB_RETENTION_DAYS,
        help=f'Job retention period in days (default: {JOB_RETENTION_DAYS})'
    )
    parser.add_argument(
        '--article-days',
        type=int,
        default=REJECTED_ARTICLE_RETENTION_DAYS,
        help=f'Rejected article retention period in days (default: {REJECTED_ARTICLE_RETENTION_DAYS})'
    )
    parser.add_argument(
        '--stale-minutes',
        type=int,
        default=STALE_JOB_MINUTES,
        help=f'Fail running jobs older than this many minutes (default: {STALE_JOB_MINUTES})'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be deleted without actually deleting'
    )

    args = parser.parse_args()
    options = {
        'job_retention_days': args.days,
        'article_retention_days': args.article_days,
        'stale_minutes': args.stale_minutes,
        'dry_run': args.dry_run,
    }

    if args.organization:
        results = [cleanup_organization(args.organization, **options)]
    else:
        results = cleanup_all_organizations(**options)

    prefix = "DRY RUN - Would delete" if args.dry_run else "Cleanup complete"
    for stats in results:
        print(
            f"{prefix} for {stats['organization_id']}: {stats['jobs_deleted']} jobs, "
            f"{stats['articles_deleted']} rejected articles "
            f"({stats['stale_jobs_failed']} stale jobs failed)"
        )


if __name__ == '__main__':
    main()
