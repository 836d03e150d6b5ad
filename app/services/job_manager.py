"""
Curation Job Store

Persists curation jobs for one tenant and implements their state machine:

    running → completed | failed | cancelled

Every write is a single statement guarded by status = 'running', so a job
that has reached a terminal state is never modified again and concurrent
writers cannot lose each other's increments or log entries.
"""

import logging
import math
from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from app.database import session_scope
from app.models import (
    CurationJob, CurationJobLog, CurationJobStatus, LogLevel, JOB_COUNTER_FIELDS,
    utcnow, as_utc
)
from app.tenant import TenantScope

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


class JobAlreadyRunningError(Exception):
    """Raised when a tenant already has a running curation job."""

    def __init__(self, job_id: Optional[UUID] = None):
        super().__init__("A curation job is already running")
        self.job_id = job_id


class JobNotFoundError(Exception):
    """Raised when a job id does not exist for the tenant."""


def _validate_counters(counters: dict) -> dict:
    unknown = set(counters) - set(JOB_COUNTER_FIELDS)
    if unknown:
        raise ValueError(f"Unknown job counters: {', '.join(sorted(unknown))}")
    for name, value in counters.items():
        if value is None or int(value) < 0:
            raise ValueError(f"Counter {name} must be a non-negative integer, got {value!r}")
    return {name: int(value) for name, value in counters.items()}


class JobStore:
    """
    Tenant-scoped access to curation jobs.

    Args:
        organization_id: Tenant every operation is confined to
        session_factory: SQLAlchemy session factory (defaults to SessionLocal)
    """

    def __init__(self, organization_id, session_factory=None):
        self.organization_id = organization_id
        self.session_factory = session_factory

    def _scope(self, session) -> TenantScope:
        return TenantScope(session, self.organization_id)

    def _running(self, scope: TenantScope, job_id):
        """Query matching job_id only while it is still running."""
        job_uuid = job_id if isinstance(job_id, UUID) else UUID(str(job_id))
        return scope.jobs.query(
            CurationJob.id == job_uuid,
            CurationJob.status == CurationJobStatus.RUNNING
        )

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def create(self, source_ids: Optional[list] = None) -> CurationJob:
        """
        Insert a running job with zeroed counters and an empty log.

        Raises:
            JobAlreadyRunningError: If the tenant already has a running job
        """
        try:
            with session_scope(self.session_factory) as session:
                scope = self._scope(session)
                running = scope.jobs.query(CurationJob.status == CurationJobStatus.RUNNING).first()
                if running is not None:
                    raise JobAlreadyRunningError(running.id)
                job = scope.jobs.add(
                    status=CurationJobStatus.RUNNING,
                    source_ids=[str(s) for s in source_ids] if source_ids else None,
                    started_at=utcnow(),
                )
                job_id = job.id
        except IntegrityError:
            # Lost the race against another create; the partial unique index decided
            current = self.get_current()
            if current is None:
                raise
            raise JobAlreadyRunningError(current.id)

        logger.info(f"Created curation job {job_id} for organization {self.organization_id}")
        return self.get(job_id)

    def get(self, job_id) -> Optional[CurationJob]:
        """Fetch a job with its log entries; None if missing or another tenant's."""
        try:
            job_uuid = job_id if isinstance(job_id, UUID) else UUID(str(job_id))
        except ValueError:
            return None
        with session_scope(self.session_factory) as session:
            return self._scope(session).jobs.query(CurationJob.id == job_uuid).options(
                selectinload(CurationJob.logs)
            ).first()

    def require(self, job_id) -> CurationJob:
        """Like get(), but raises JobNotFoundError instead of returning None."""
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def get_current(self) -> Optional[CurationJob]:
        """The tenant's running job, if any."""
        with session_scope(self.session_factory) as session:
            return self._scope(session).jobs.query(
                CurationJob.status == CurationJobStatus.RUNNING
            ).options(selectinload(CurationJob.logs)).order_by(CurationJob.started_at.desc()).first()

    def list(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE,
             status: Optional[CurationJobStatus] = None) -> dict:
        """
        Page through the tenant's jobs, newest first.

        Returns:
            Dict with jobs (without logs), total, page, limit, totalPages
        """
        page = max(1, int(page))
        limit = max(1, min(MAX_PAGE_SIZE, int(limit)))

        with session_scope(self.session_factory) as session:
            query = self._scope(session).jobs.query()
            if status is not None:
                query = query.filter(CurationJob.status == status)
            total = query.count()
            jobs = query.order_by(CurationJob.started_at.desc()).offset(
                (page - 1) * limit
            ).limit(limit).all()

        return {
            'jobs': jobs,
            'total': total,
            'page': page,
            'limit': limit,
            'totalPages': math.ceil(total / limit) if total else 0,
        }

    def is_cancelled(self, job_id) -> bool:
        """Cheap status read used as the pipeline's cancellation poll."""
        with session_scope(self.session_factory) as session:
            status = self._scope(session).jobs.query(
                CurationJob.id == (job_id if isinstance(job_id, UUID) else UUID(str(job_id)))
            ).with_entities(CurationJob.status).scalar()
        return status == CurationJobStatus.CANCELLED

    # ------------------------------------------------------------------
    # Mutations while running
    # ------------------------------------------------------------------

    def increment_counters(self, job_id, session=None, **deltas) -> bool:
        """
        Atomically add deltas to counters (e.g. duplicates=1).

        Args:
            session: Optional open session; the increment then commits or
                rolls back with the caller's other writes

        Returns:
            False if the job is missing or no longer running (nothing changed)
        """
        deltas = {name: value for name, value in _validate_counters(deltas).items() if value}
        if not deltas:
            return True
        if session is not None:
            return self._increment(session, job_id, deltas)
        with session_scope(self.session_factory) as own_session:
            return self._increment(own_session, job_id, deltas)

    def _increment(self, session, job_id, deltas: dict) -> bool:
        updated = self._running(self._scope(session), job_id).update(
            {getattr(CurationJob, name): getattr(CurationJob, name) + value
             for name, value in deltas.items()},
            synchronize_session=False
        )
        return updated == 1

    def set_counters(self, job_id, **values) -> bool:
        """
        Set counters to absolute values (e.g. total_found once the fetch is done).

        Returns:
            False if the job is missing or no longer running (nothing changed)
        """
        values = _validate_counters(values)
        if not values:
            return True
        with session_scope(self.session_factory) as session:
            updated = self._running(self._scope(session), job_id).update(
                {getattr(CurationJob, name): value for name, value in values.items()},
                synchronize_session=False
            )
        return updated == 1

    def append_log(self, job_id, level: LogLevel, message: str, data: Optional[dict] = None) -> bool:
        """
        Append one entry to a running job's log.

        Returns:
            False if the job is missing or no longer running (nothing appended)
        """
        level = LogLevel(level)
        with session_scope(self.session_factory) as session:
            job_uuid = self._running(self._scope(session), job_id).with_entities(CurationJob.id).scalar()
            if job_uuid is None:
                return False
            session.add(CurationJobLog(
                job_id=job_uuid,
                timestamp=utcnow(),
                level=level,
                message=message,
                data=data
            ))
        return True

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _finish(self, job_id, status: CurationJobStatus,
                log_level: Optional[LogLevel] = None, log_message: Optional[str] = None) -> Optional[CurationJob]:
        """
        Move a running job to a terminal status, once.

        A job that is already terminal is returned unchanged.
        """
        completed_at = utcnow()
        with session_scope(self.session_factory) as session:
            scope = self._scope(session)
            job = scope.jobs.get(job_id)
            if job is None:
                return None
            if job.status is not CurationJobStatus.RUNNING:
                logger.info(f"Job {job.id} already {job.status.value}; ignoring transition to {status.value}")
            else:
                duration_ms = int((completed_at - as_utc(job.started_at)).total_seconds() * 1000)
                updated = self._running(scope, job.id).update(
                    {
                        CurationJob.status: status,
                        CurationJob.completed_at: completed_at,
                        CurationJob.duration_ms: max(0, duration_ms),
                    },
                    synchronize_session=False
                )
                if updated and log_message:
                    session.add(CurationJobLog(
                        job_id=job.id,
                        timestamp=completed_at,
                        level=log_level,
                        message=log_message
                    ))
                if updated:
                    logger.info(f"Curation job {job.id} {status.value} after {duration_ms}ms")
        return self.get(job_id)

    def complete(self, job_id) -> Optional[CurationJob]:
        return self._finish(job_id, CurationJobStatus.COMPLETED)

    def fail(self, job_id, error_message: Optional[str] = None) -> Optional[CurationJob]:
        return self._finish(job_id, CurationJobStatus.FAILED, LogLevel.ERROR, error_message)

    def cancel(self, job_id) -> Optional[CurationJob]:
        """Cancel a running job; a no-op for jobs already in a terminal state."""
        return self._finish(job_id, CurationJobStatus.CANCELLED, LogLevel.INFO, "Job cancelled by user")

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def delete(self, job_id) -> bool:
        """Delete one job. Running jobs must be cancelled first."""
        with session_scope(self.session_factory) as session:
            scope = self._scope(session)
            job = scope.jobs.get(job_id)
            if job is None:
                return False
            if job.status is CurationJobStatus.RUNNING:
                raise ValueError("Cannot delete a running job; cancel it first")
            scope.jobs.delete(job.id)
        return True

    def delete_older_than(self, days: int, dry_run: bool = False) -> int:
        """
        Delete terminal jobs started more than days ago. Running jobs are never touched.

        Returns:
            Number of jobs deleted (or that would be, with dry_run)
        """
        cutoff = utcnow() - timedelta(days=days)
        with session_scope(self.session_factory) as session:
            query = self._scope(session).jobs.query(
                CurationJob.started_at < cutoff,
                CurationJob.status != CurationJobStatus.RUNNING
            )
            if dry_run:
                return query.count()
            deleted = query.delete(synchronize_session=False)
        logger.info(f"Deleted {deleted} curation jobs older than {days} days for organization {self.organization_id}")
        return deleted

    def fail_stale(self, older_than_minutes: int) -> int:
        """
        Fail running jobs started more than older_than_minutes ago.

        Recovers tenants whose worker died mid-run and left a running job behind.
        """
        cutoff = utcnow() - timedelta(minutes=older_than_minutes)
        with session_scope(self.session_factory) as session:
            stale_ids = [
                row[0] for row in self._scope(session).jobs.query(
                    CurationJob.status == CurationJobStatus.RUNNING,
                    CurationJob.started_at < cutoff
                ).with_entities(CurationJob.id).all()
            ]
        for job_id in stale_ids:
            logger.warning(f"Failing stale curation job {job_id}")
            self.fail(job_id, f"Job exceeded {older_than_minutes} minutes without finishing")
        return len(stale_ids)
