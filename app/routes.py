"""
Flask Routes for the Curation Service

Includes:
- Health check endpoint
- Curation collect/rerun, streamed as Server-Sent Events
- Job query, cancel and retention endpoints
- Manual single-article curation
- Feed source management

Every /api route is tenant-scoped by the X-Organization-Id header.
"""

import json
import logging
import queue
import threading
from datetime import datetime, timezone
from uuid import UUID

import feedparser
import httpx
from flask import Blueprint, Response, abort, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from app.database import get_session_factory, session_scope
from app.models import Article, ArticleStatus, CurationJobStatus, Organization, RssSource, as_utc
from app.services.cancellation import CurationCancelledError
from app.services.curator import CurationPipeline, OutcomeStatus, ProgressEvent
from app.services.job_manager import JobAlreadyRunningError, JobNotFoundError, JobStore
from app.tenant import TenantScope, parse_uuid_list

logger = logging.getLogger(__name__)

# Create blueprint
main = Blueprint('main', __name__)

ARTICLES_PER_PAGE = 50
MAX_ARTICLES_PER_PAGE = 200

# End-of-stream marker for the SSE queue
_STREAM_DONE = object()


@main.errorhandler(HTTPException)
def handle_http_error(e: HTTPException):
    return jsonify({'error': e.description}), e.code


@main.errorhandler(JobNotFoundError)
def handle_job_not_found(e: JobNotFoundError):
    return jsonify({'error': 'Job not found'}), 404


@main.route('/health')
def health_check():
    """Health check endpoint."""
    return {'status': 'healthy', 'timestamp': datetime.now(timezone.utc).isoformat()}


# =============================================================================
# Request helpers
# =============================================================================

def _session_factory():
    return current_app.config.get('SESSION_FACTORY') or get_session_factory()


def _build_pipeline() -> CurationPipeline:
    factory = current_app.config.get('PIPELINE_FACTORY')
    if factory is not None:
        return factory(_session_factory())
    return CurationPipeline(_session_factory())


def _organization_id() -> UUID:
    """Tenant from the X-Organization-Id header; 400 if malformed, 404 if unknown."""
    raw = request.headers.get('X-Organization-Id', '').strip()
    if not raw:
        abort(400, 'X-Organization-Id header is required')
    try:
        organization_id = UUID(raw)
    except ValueError:
        abort(400, 'X-Organization-Id header must be a valid id')

    with session_scope(_session_factory()) as session:
        exists = session.query(Organization.id).filter(Organization.id == organization_id).first()
    if not exists:
        abort(404, 'Organization not found')
    return organization_id


def _job_store(organization_id: UUID) -> JobStore:
    return JobStore(organization_id, _session_factory())


def _int_arg(name: str, default: int, minimum: int = 0) -> int:
    value = request.args.get(name)
    if value is None or value == '':
        return default
    try:
        parsed = int(value)
    except ValueError:
        abort(400, f'{name} must be an integer')
    if parsed < minimum:
        abort(400, f'{name} must be at least {minimum}')
    return parsed


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _stream_curation(organization_id: UUID, job_id: UUID, source_ids) -> Response:
    """
    Run a pass in a worker thread and stream its events.

    The pass keeps running if the client disconnects; use the cancel endpoint
    to stop it.
    """
    events = queue.Queue()
    pipeline = _build_pipeline()

    def worker():
        try:
            result = pipeline.run(
                organization_id,
                on_progress=events.put,
                job_id=job_id,
                source_ids=source_ids
            )
            events.put(('complete', {'jobId': str(job_id), 'result': result.to_dict()}))
        except CurationCancelledError:
            events.put(('cancelled', {'jobId': str(job_id)}))
        except Exception as e:
            logger.error(f"Curation job {job_id} failed: {e}")
            events.put(('error', {'jobId': str(job_id), 'error': str(e)}))
        finally:
            events.put(_STREAM_DONE)

    threading.Thread(target=worker, name=f"curation-{job_id}", daemon=True).start()

    def generate():
        yield _sse('start', {'jobId': str(job_id)})
        while True:
            item = events.get()
            if item is _STREAM_DONE:
                break
            if isinstance(item, ProgressEvent):
                yield _sse('progress', item.to_dict())
            else:
                name, data = item
                yield _sse(name, data)

    return Response(
        generate(),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'}
    )


def _start_job(store: JobStore, source_ids):
    try:
        return store.create(source_ids=source_ids)
    except JobAlreadyRunningError as e:
        return jsonify({
            'error': 'A curation job is already running',
            'jobId': str(e.job_id) if e.job_id else None
        }), 409


# =============================================================================
# Curation Routes
# =============================================================================

@main.route('/api/curation/collect', methods=['POST'])
def collect():
    """
    Start a curation pass for the tenant and stream its progress.

    Query params:
        sourceIds: Optional comma-separated feed source ids
    """
    organization_id = _organization_id()
    raw_ids = request.args.get('sourceIds', '')
    source_ids = parse_uuid_list([s for s in raw_ids.split(',') if s.strip()]) or None

    started = _start_job(_job_store(organization_id), source_ids)
    if isinstance(started, tuple):
        return started

    logger.info(f"Starting curation job {started.id} for organization {organization_id}")
    return _stream_curation(organization_id, started.id, source_ids)


@main.route('/api/curation/cancel', methods=['POST'])
def cancel_current():
    """Cancel the tenant's running job."""
    store = _job_store(_organization_id())
    current = store.get_current()
    if current is None:
        return jsonify({'error': 'No running curation job'}), 404

    job = store.cancel(current.id)
    logger.info(f"Cancellation requested for curation job {current.id}")
    return jsonify({'success': True, 'job': job.to_dict()})


@main.route('/api/curation/jobs', methods=['GET'])
def list_jobs():
    store = _job_store(_organization_id())

    status = None
    status_value = request.args.get('status', '')
    if status_value:
        try:
            status = CurationJobStatus(status_value)
        except ValueError:
            abort(400, f'Unknown status: {status_value}')

    page = store.list(
        page=_int_arg('page', 1, minimum=1),
        limit=_int_arg('limit', 10, minimum=1),
        status=status
    )
    page['jobs'] = [job.to_dict(include_logs=False) for job in page['jobs']]
    return jsonify(page)


@main.route('/api/curation/jobs', methods=['DELETE'])
def delete_old_jobs():
    """Bulk-delete finished jobs older than ?olderThanDays=N. Running jobs are kept."""
    store = _job_store(_organization_id())
    if 'olderThanDays' not in request.args:
        abort(400, 'olderThanDays is required')
    deleted = store.delete_older_than(_int_arg('olderThanDays', 0))
    return jsonify({'success': True, 'deleted': deleted})


@main.route('/api/curation/jobs/current', methods=['GET'])
def current_job():
    job = _job_store(_organization_id()).get_current()
    return jsonify({'job': job.to_dict() if job else None})


@main.route('/api/curation/jobs/<job_id>', methods=['GET'])
def get_job(job_id: str):
    job = _job_store(_organization_id()).require(job_id)
    return jsonify({'job': job.to_dict()})


@main.route('/api/curation/jobs/<job_id>', methods=['DELETE'])
def delete_job(job_id: str):
    store = _job_store(_organization_id())
    try:
        deleted = store.delete(job_id)
    except ValueError as e:
        return jsonify({'error': str(e)}), 409
    if not deleted:
        return jsonify({'error': 'Job not found'}), 404
    return jsonify({'success': True})


@main.route('/api/curation/jobs/<job_id>/rerun', methods=['POST'])
def rerun_job(job_id: str):
    """Start a new pass with the same source filter as a finished job."""
    organization_id = _organization_id()
    store = _job_store(organization_id)
    previous = store.require(job_id)
    if not previous.status.is_terminal:
        return jsonify({'error': 'Job is still running'}), 409

    source_ids = parse_uuid_list(previous.source_ids) or None
    started = _start_job(store, source_ids)
    if isinstance(started, tuple):
        return started

    logger.info(f"Re-running curation job {previous.id} as {started.id}")
    return _stream_curation(organization_id, started.id, source_ids)


@main.route('/api/curation/articles', methods=['POST'])
def curate_article():
    """
    Curate one externally supplied article.

    JSON body: url, title, content, optional author and sourceName
    """
    organization_id = _organization_id()
    data = request.get_json(silent=True) or {}

    try:
        outcome = _build_pipeline().curate_one(
            organization_id,
            url=data.get('url', ''),
            title=data.get('title', ''),
            content=data.get('content', ''),
            author=data.get('author'),
            source_name=data.get('sourceName'),
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    status_code = 200 if outcome.status is OutcomeStatus.DUPLICATE else 201
    return jsonify(outcome.to_dict()), status_code


@main.route('/api/curation/articles', methods=['GET'])
def list_articles():
    """Review queue. Defaults to pending_review, newest first."""
    organization_id = _organization_id()
    status_value = request.args.get('status', ArticleStatus.PENDING_REVIEW.value)
    try:
        status = ArticleStatus(status_value)
    except ValueError:
        abort(400, f'Unknown status: {status_value}')

    page = _int_arg('page', 1, minimum=1)
    limit = min(_int_arg('limit', ARTICLES_PER_PAGE, minimum=1), MAX_ARTICLES_PER_PAGE)

    with session_scope(_session_factory()) as session:
        query = TenantScope(session, organization_id).articles.query(Article.status == status)
        total = query.count()
        articles = query.order_by(Article.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        payload = [article.to_dict() for article in articles]

    return jsonify({'articles': payload, 'total': total, 'page': page, 'limit': limit})


# =============================================================================
# RSS Source Management Routes
# =============================================================================

# RSS validation configuration
RSS_VALIDATION_TIMEOUT = 10  # seconds
RSS_USER_AGENT = 'NewsletterCurator/1.0'


def validate_rss_url(url: str) -> tuple[bool, str]:
    """
    Validate that a URL points to a valid RSS/Atom feed.

    Uses httpx to fetch with timeout, then feedparser to validate content.

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        response = httpx.get(
            url,
            timeout=RSS_VALIDATION_TIMEOUT,
            follow_redirects=True,
            headers={
                'User-Agent': RSS_USER_AGENT,
                'Accept': 'application/rss+xml, application/atom+xml, application/xml, text/xml',
            }
        )
        response.raise_for_status()
    except httpx.TimeoutException:
        return False, f"Timeout: feed took longer than {RSS_VALIDATION_TIMEOUT} seconds to respond"
    except httpx.HTTPStatusError as e:
        return False, f"URL returned HTTP {e.response.status_code}"
    except httpx.RequestError as e:
        return False, f"Error fetching URL: {str(e)}"

    result = feedparser.parse(response.content)
    if result.bozo and not result.entries:
        return False, f"Invalid RSS/Atom feed: {getattr(result, 'bozo_exception', None)}"
    # Entries can be empty for new feeds, but the feed element must exist
    if not result.get('feed'):
        return False, "URL does not contain a valid RSS/Atom feed"
    return True, ""


def _source_dict(source: RssSource) -> dict:
    return {
        'id': str(source.id),
        'name': source.name,
        'url': source.url,
        'category': source.category,
        'isActive': source.is_active,
        'lastFetchedAt': as_utc(source.last_fetched_at).isoformat() if source.last_fetched_at else None,
        'lastError': source.last_error,
    }


@main.route('/api/sources', methods=['GET'])
def list_sources():
    organization_id = _organization_id()
    with session_scope(_session_factory()) as session:
        sources = TenantScope(session, organization_id).sources.query().order_by(RssSource.name).all()
        return jsonify({'sources': [_source_dict(s) for s in sources]})


@main.route('/api/sources', methods=['POST'])
def add_source():
    """
    Add an RSS feed source.

    Validates the URL is a valid RSS/Atom feed before saving.
    """
    organization_id = _organization_id()
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    url = (data.get('url') or '').strip()
    category = (data.get('category') or '').strip() or None

    if not name:
        return jsonify({'error': 'Feed name is required'}), 400
    if not url:
        return jsonify({'error': 'Feed URL is required'}), 400

    with session_scope(_session_factory()) as session:
        existing = TenantScope(session, organization_id).sources.query(RssSource.url == url).first()
        if existing:
            return jsonify({'error': f'This feed URL already exists as "{existing.name}"'}), 409

    is_valid, error_msg = validate_rss_url(url)
    if not is_valid:
        return jsonify({'error': f'Invalid RSS feed: {error_msg}'}), 400

    try:
        with session_scope(_session_factory()) as session:
            source = TenantScope(session, organization_id).sources.add(
                name=name, url=url, category=category, is_active=True
            )
            payload = _source_dict(source)
    except IntegrityError:
        # Added concurrently while the feed was being validated
        return jsonify({'error': 'This feed URL already exists'}), 409

    logger.info(f"New RSS source added: {name} ({url})")
    return jsonify({'success': True, 'source': payload}), 201


def _set_source_active(source_id: str, is_active: bool):
    organization_id = _organization_id()
    with session_scope(_session_factory()) as session:
        source = TenantScope(session, organization_id).sources.get(source_id)
        if source is None:
            return jsonify({'error': 'Source not found'}), 404
        source.is_active = is_active
        logger.info(f"RSS source {'resumed' if is_active else 'paused'}: {source.name}")
    return jsonify({'success': True, 'isActive': is_active})


@main.route('/api/sources/<source_id>/pause', methods=['POST'])
def pause_source(source_id: str):
    """Pause an active RSS feed source."""
    return _set_source_active(source_id, False)


@main.route('/api/sources/<source_id>/resume', methods=['POST'])
def resume_source(source_id: str):
    """Resume a paused RSS feed source."""
    return _set_source_active(source_id, True)


@main.route('/api/sources/<source_id>', methods=['DELETE'])
def delete_source(source_id: str):
    organization_id = _organization_id()
    with session_scope(_session_factory()) as session:
        deleted = TenantScope(session, organization_id).sources.delete(source_id)
    if not deleted:
        return jsonify({'error': 'Source not found'}), 404
    return jsonify({'success': True})
