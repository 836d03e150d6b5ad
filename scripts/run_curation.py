#!/usr/bin/env python
"""
Run one curation pass for an organization from the command line.

Creates a tracked job, prints progress events as they happen and exits with:
    0 - completed
    1 - failed (or a job is already running)
    2 - cancelled (SIGINT/SIGTERM, or cancelled through the API)

Usage:
    python scripts/run_curation.py <organization-id>
    python scripts/run_curation.py <organization-id> --sources <id>,<id>

Environment:
    DATABASE_URL - PostgreSQL connection string
    ANTHROPIC_API_KEY - Claude API key
    OPENAI_API_KEY - Embeddings API key
"""

import argparse
import json
import logging
import os
import signal
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from app.services.cancellation import CurationCancelledError, JobCancellationToken
from app.services.curator import CurationPipeline, ProgressEvent
from app.services.job_manager import JobAlreadyRunningError, JobStore
from app.tenant import parse_uuid_list

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stderr)
    ]
)
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
logger = logging.getLogger('run_curation')

EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 2


def print_event(event: ProgressEvent):
    print(json.dumps(event.to_dict()), flush=True)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Run one curation pass for an organization')
    parser.add_argument('organization_id', help='Organization id')
    parser.add_argument(
        '--sources',
        default='',
        help='Comma-separated feed source ids (default: all active sources)'
    )
    args = parser.parse_args(argv)

    source_ids = parse_uuid_list([s for s in args.sources.split(',') if s.strip()]) or None
    store = JobStore(args.organization_id)

    try:
        job = store.create(source_ids=source_ids)
    except JobAlreadyRunningError as e:
        logger.error(f"A curation job is already running for this organization: {e.job_id}")
        return EXIT_FAILED

    token = JobCancellationToken(store, job.id)

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, cancelling after the current article...")
        token.cancel()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(f"Started curation job {job.id}")
    try:
        result = CurationPipeline().run(
            args.organization_id,
            on_progress=print_event,
            job_id=job.id,
            source_ids=source_ids,
            cancellation=token
        )
    except CurationCancelledError:
        logger.info(f"Curation job {job.id} cancelled")
        return EXIT_CANCELLED
    except Exception as e:
        logger.error(f"Curation job {job.id} failed: {e}")
        return EXIT_FAILED

    print(json.dumps(result.to_dict()), flush=True)
    return EXIT_COMPLETED


if __name__ == '__main__':
    sys.exit(main())
