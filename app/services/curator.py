"""
Curation Pipeline Orchestrator

Turns a batch of feed candidates into classified, deduplicated articles:

    fetch → embed → dedup (link, then vector) → score → reject | summarize + categorize

Candidates are processed strictly one at a time. Each pass reports through an
ordered stream of ProgressEvents and, when given a job id, through the
tenant's CurationJob (counters plus an append-only log).
"""

import enum
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional
from uuid import UUID

from app.config import ITEM_DELAY_SECONDS, MAX_DISPLAYED_ERRORS, CurationSettings, resolve_settings
from app.database import session_scope
from app.models import ArticleStatus, CurationJobStatus, LogLevel, utcnow
from app.services.cancellation import CancellationToken, CurationCancelledError, JobCancellationToken
from app.services.deduplicator import Deduplicator, DuplicateReason, DuplicateVerdict
from app.services.embeddings import OpenAIEmbeddingProvider, build_embedding_text, validate_embedding
from app.services.job_manager import JobStore
from app.services.rss_fetcher import CandidateItem, FeedUnavailableError, RssFeedSource
from app.services.text_intelligence import ClaudeTextIntelligence
from app.services.url_normalizer import normalize_url
from app.tenant import DuplicateArticleError, TenantScope

logger = logging.getLogger(__name__)


class CurationPipelineError(Exception):
    """Pipeline-level failure: the whole pass is aborted."""


class ProgressStage(enum.Enum):
    FETCH = "fetch"
    FETCH_COMPLETE = "fetch_complete"
    PROCESSING = "processing"
    DUPLICATE = "duplicate"
    SCORED = "scored"
    REJECTED = "rejected"
    SUMMARIZING = "summarizing"
    CURATED = "curated"
    ERROR = "error"
    CANCELLED = "cancelled"
    COMPLETE = "complete"
    FATAL_ERROR = "fatal_error"


@dataclass
class ProgressEvent:
    stage: ProgressStage
    message: str
    current: Optional[int] = None
    total: Optional[int] = None
    score: Optional[float] = None
    result: Optional[dict] = None

    def to_dict(self) -> dict:
        data = {'stage': self.stage.value, 'message': self.message}
        for key in ('current', 'total', 'score', 'result'):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class CurationResult:
    """Aggregated outcome of one pass."""
    total: int = 0
    processed: int = 0
    duplicates: int = 0
    low_score: int = 0
    curated: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self, max_errors: int = MAX_DISPLAYED_ERRORS) -> dict:
        return {
            'total': self.total,
            'processed': self.processed,
            'duplicates': self.duplicates,
            'lowScore': self.low_score,
            'curated': self.curated,
            'errors': self.errors[:max_errors],
            'errorsCount': len(self.errors),
        }


class OutcomeStatus(enum.Enum):
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    CURATED = "curated"


@dataclass
class CurationOutcome:
    """Decision for a single item."""
    status: OutcomeStatus
    verdict: Optional[DuplicateVerdict] = None
    score: Optional[float] = None
    article: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'duplicate': self.verdict.to_dict() if self.verdict else None,
            'score': self.score,
            'article': self.article,
        }


ProgressCallback = Callable[[ProgressEvent], None]


class CurationPipeline:
    """
    Curation orchestrator for any tenant.

    Args:
        session_factory: SQLAlchemy session factory (defaults to SessionLocal)
        feed_source: object with fetch_candidates(organization_id, max_age_days, source_ids)
        embedder: object with embed(text) -> list[float]
        intelligence: object with score/summarize/categorize(title, content, context)
        deduplicator: Deduplicator
        item_delay: Seconds to wait after each curated item (0 disables)
        sleep: Sleep function, replaceable in tests
    """

    def __init__(self, session_factory=None, feed_source=None, embedder=None, intelligence=None,
                 deduplicator: Optional[Deduplicator] = None,
                 item_delay: float = ITEM_DELAY_SECONDS, sleep=time.sleep):
        self.session_factory = session_factory
        self.feed_source = feed_source or RssFeedSource(session_factory)
        self.embedder = embedder or OpenAIEmbeddingProvider()
        self.intelligence = intelligence or ClaudeTextIntelligence()
        self.deduplicator = deduplicator or Deduplicator()
        self.item_delay = item_delay
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Full pass
    # ------------------------------------------------------------------

    def run(self, organization_id, on_progress: Optional[ProgressCallback] = None,
            job_id=None, source_ids: Optional[list] = None,
            cancellation: Optional[CancellationToken] = None) -> CurationResult:
        """
        Run one curation pass for a tenant.

        Args:
            organization_id: Tenant
            on_progress: Receives every ProgressEvent, in order
            job_id: Running CurationJob to record counters and logs on
            source_ids: Optional subset of the tenant's feed sources
            cancellation: Token checked before each candidate; defaults to
                one that polls the job's status when job_id is given

        Returns:
            CurationResult

        Raises:
            CurationCancelledError: The pass was cancelled (job marked CANCELLED)
            CurationPipelineError: The feed stage failed (job marked FAILED), or
                job_id is not a running job
            JobNotFoundError: job_id does not belong to this organization
        """
        job_id = UUID(str(job_id)) if job_id else None
        jobs = JobStore(organization_id, self.session_factory) if job_id else None
        if jobs:
            job = jobs.require(job_id)
            if job.status is not CurationJobStatus.RUNNING:
                raise CurationPipelineError(f"Job {job_id} is {job.status.value}, not running")
        if cancellation is None:
            cancellation = JobCancellationToken(jobs, job_id) if jobs else CancellationToken()

        def emit(stage: ProgressStage, message: str, **extra):
            if on_progress is not None:
                on_progress(ProgressEvent(stage=stage, message=message, **extra))

        def job_log(level: LogLevel, message: str, data: Optional[dict] = None):
            if jobs:
                jobs.append_log(job_id, level, message, data)

        def count(**deltas):
            if jobs:
                jobs.increment_counters(job_id, **deltas)

        result = CurationResult()
        started = time.monotonic()
        status = "failed"
        handled = 0

        logger.info(json.dumps({
            "event": "curation_start",
            "organization_id": str(organization_id),
            "job_id": str(job_id) if job_id else None,
            "source_ids": [str(s) for s in source_ids] if source_ids else None,
            "timestamp": utcnow().isoformat(),
        }))

        try:
            settings = self._load_settings(organization_id, job_log)

            emit(ProgressStage.FETCH, "Fetching articles from feeds...")
            try:
                candidates = self.feed_source.fetch_candidates(
                    organization_id, settings.article_max_age_days, source_ids
                )
            except FeedUnavailableError as e:
                raise CurationPipelineError(str(e)) from e

            result.total = len(candidates)
            emit(ProgressStage.FETCH_COMPLETE, f"Found {result.total} articles", total=result.total)
            if jobs:
                jobs.set_counters(job_id, total_found=result.total)
            job_log(LogLevel.INFO, f"Found {result.total} candidate articles")

            for current, item in enumerate(candidates, start=1):
                handled = current - 1
                cancellation.raise_if_cancelled()
                progress = {'current': current, 'total': result.total}
                emit(ProgressStage.PROCESSING, f"Processing: {item.title}", **progress)

                try:
                    outcome = self._curate_item(
                        organization_id, settings, item, job_id, jobs,
                        on_stage=lambda stage, message, **extra: emit(stage, message, **progress, **extra)
                    )
                except CurationCancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Error processing article {item.link}: {e}")
                    result.errors.append(f"{item.title}: {e}")
                    emit(ProgressStage.ERROR, f"Error processing {item.title}: {e}", **progress)
                    job_log(LogLevel.ERROR, f"Error processing article: {item.title}",
                            {'link': item.link, 'error': str(e)})
                    count(errors_count=1)
                    continue

                if outcome.status is OutcomeStatus.DUPLICATE:
                    result.duplicates += 1
                    count(duplicates=1)
                    emit(ProgressStage.DUPLICATE,
                         f"Duplicate ({outcome.verdict.reason.value}): {item.title}", **progress)
                    job_log(LogLevel.INFO, f"Skipped duplicate: {item.title}",
                            {'link': item.link, **outcome.verdict.to_dict()})

                elif outcome.status is OutcomeStatus.REJECTED:
                    result.low_score += 1
                    emit(ProgressStage.REJECTED,
                         f"Rejected (score {outcome.score:.1f} < {settings.relevance_threshold:.1f}): {item.title}",
                         score=outcome.score, **progress)
                    job_log(LogLevel.INFO, f"Rejected low score article: {item.title}",
                            {'link': item.link, 'score': outcome.score})

                else:
                    result.processed += 1
                    result.curated += 1
                    emit(ProgressStage.CURATED, f"Curated: {item.title}", score=outcome.score, **progress)
                    job_log(LogLevel.INFO, f"Curated article: {item.title}",
                            {'link': item.link, 'score': outcome.score, 'articleId': outcome.article['id']})

                    if current < result.total and self.item_delay > 0:
                        self.sleep(self.item_delay)

            handled = result.total
            # A cancel that landed during the last item or the fetch
            cancellation.raise_if_cancelled()

            emit(ProgressStage.COMPLETE,
                 f"Curation complete: {result.curated} curated, {result.duplicates} duplicates, "
                 f"{result.low_score} low score, {len(result.errors)} errors",
                 result=result.to_dict())
            job_log(LogLevel.INFO, "Curation pipeline finished", result.to_dict())
            if jobs:
                jobs.complete(job_id)
            status = "completed"
            return result

        except CurationCancelledError:
            status = "cancelled"
            emit(ProgressStage.CANCELLED,
                 f"Curation cancelled after {handled} of {result.total} articles",
                 current=handled, total=result.total)
            if jobs:
                jobs.cancel(job_id)
            raise

        except Exception as e:
            logger.error(f"Curation pipeline failed: {e}")
            emit(ProgressStage.FATAL_ERROR, f"Curation failed: {e}")
            if jobs:
                jobs.fail(job_id, str(e))
            raise

        finally:
            logger.info(json.dumps({
                "event": "curation_finish",
                "organization_id": str(organization_id),
                "job_id": str(job_id) if job_id else None,
                "status": status,
                "duration_seconds": round(time.monotonic() - started, 2),
                **result.to_dict(),
            }))

    # ------------------------------------------------------------------
    # Single item
    # ------------------------------------------------------------------

    def curate_one(self, organization_id, url: str, title: str, content: str,
                   author: Optional[str] = None, source_name: Optional[str] = None) -> CurationOutcome:
        """
        Classify one externally supplied item without job tracking.

        Raises:
            ValueError: If url, title or content is empty
        """
        link = normalize_url(url or '')
        if not link or not (title or '').strip() or not (content or '').strip():
            raise ValueError("url, title and content are required")

        settings = self._load_settings(organization_id)
        item = CandidateItem(
            link=link,
            title=title.strip(),
            content=content.strip(),
            published_at=utcnow(),
            source_name=source_name or 'Manual',
            author=author,
        )
        outcome = self._curate_item(organization_id, settings, item)
        logger.info(f"Manual curation of {link}: {outcome.status.value}")
        return outcome

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_settings(self, organization_id, job_log=None) -> CurationSettings:
        settings, used_defaults, load_error = resolve_settings(self.session_factory, organization_id)
        if job_log is not None:
            if load_error:
                job_log(LogLevel.WARN, "Could not load organization settings; using system defaults",
                        {'error': load_error})
            elif used_defaults:
                job_log(LogLevel.INFO, "No organization settings; using system defaults")
            job_log(LogLevel.INFO, "Curation pipeline started", settings.to_dict())
        return settings

    def _curate_item(self, organization_id, settings: CurationSettings, item: CandidateItem,
                     job_id: Optional[UUID] = None, jobs: Optional[JobStore] = None,
                     on_stage=None) -> CurationOutcome:
        """
        Embed, dedup, score and persist one candidate.

        With a job, the record and its counter increment commit together; if
        the job stopped running meanwhile neither is written and
        CurationCancelledError is raised.
        """
        def stage(stage_name: ProgressStage, message: str, **extra):
            if on_stage is not None:
                on_stage(stage_name, message, **extra)

        embedding = validate_embedding(
            self.embedder.embed(build_embedding_text(item.title, item.content))
        )

        with session_scope(self.session_factory) as session:
            verdict = self.deduplicator.check_for_duplicates(
                TenantScope(session, organization_id), item.link, embedding,
                settings.similarity_threshold
            )
        if verdict.is_duplicate:
            return CurationOutcome(status=OutcomeStatus.DUPLICATE, verdict=verdict)

        context = settings.brand_voice
        score = self.intelligence.score(item.title, item.content, context)
        stage(ProgressStage.SCORED, f"Score: {score:.1f}/10 - {item.title}", score=score)

        if score < settings.relevance_threshold:
            status = OutcomeStatus.REJECTED
            summary, categories = None, []
            article_status = ArticleStatus.REJECTED
            deltas = {'low_score': 1}
        else:
            stage(ProgressStage.SUMMARIZING, f"Generating summary: {item.title}")
            status = OutcomeStatus.CURATED
            summary = self.intelligence.summarize(item.title, item.content, context)
            categories = self.intelligence.categorize(item.title, item.content, context)
            article_status = ArticleStatus.PENDING_REVIEW
            deltas = {'processed': 1, 'curated': 1}

        try:
            with session_scope(self.session_factory) as session:
                article = TenantScope(session, organization_id).create_article(
                    source_url=item.link,
                    title=item.title[:500],
                    content=item.content,
                    author=item.author[:300] if item.author else None,
                    source_name=item.source_name[:200] if item.source_name else None,
                    published_at=item.published_at,
                    embedding=embedding,
                    relevance_score=score,
                    summary=summary,
                    categories=categories,
                    status=article_status,
                    curation_job_id=job_id,
                )
                article_data = article.to_dict()
                if jobs and not jobs.increment_counters(job_id, session=session, **deltas):
                    raise CurationCancelledError(f"Job {job_id} stopped before {item.link} was saved")
        except DuplicateArticleError:
            # Another pass stored the same link after our dedup check
            return CurationOutcome(
                status=OutcomeStatus.DUPLICATE,
                verdict=DuplicateVerdict(is_duplicate=True, reason=DuplicateReason.URL),
                score=score
            )

        return CurationOutcome(status=status, score=score, article=article_data)
