"""
Curation Services

This package contains the services behind a curation pass:
- rss_fetcher: Fetch candidate items from a tenant's RSS/Atom feeds
- url_normalizer: Canonicalize links used as the exact duplicate key
- embeddings: OpenAI embeddings and cosine similarity
- text_intelligence: Claude relevance scoring, summaries and categories
- deduplicator: Exact-link then vector-similarity duplicate checks
- job_manager: Tenant-scoped curation job store and state machine
- cancellation: Cooperative cancellation tokens
- curator: Orchestrate the complete curation pass
- retention: Cleanup of old jobs and rejected articles
"""

from app.services.cancellation import CancellationToken, CurationCancelledError, JobCancellationToken
from app.services.curator import (
    CurationPipeline, CurationPipelineError, CurationResult, ProgressEvent, ProgressStage
)
from app.services.deduplicator import Deduplicator, DuplicateReason, DuplicateVerdict
from app.services.job_manager import JobAlreadyRunningError, JobNotFoundError, JobStore
from app.services.url_normalizer import normalize_url

__all__ = [
    'CancellationToken',
    'CurationCancelledError',
    'JobCancellationToken',
    'CurationPipeline',
    'CurationPipelineError',
    'CurationResult',
    'ProgressEvent',
    'ProgressStage',
    'Deduplicator',
    'DuplicateReason',
    'DuplicateVerdict',
    'JobAlreadyRunningError',
    'JobNotFoundError',
    'JobStore',
    'normalize_url',
]
