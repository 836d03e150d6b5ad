"""
Integration tests for the curation HTTP API.

Tests the /api/curation routes for:
- Tenant header validation
- Streaming a pass over Server-Sent Events
- Job listing, cancellation, deletion and re-runs
- Manual article curation and the review queue
"""

import json
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from app import create_app
from app.models import Article, ArticleStatus, CurationJob, CurationJobStatus
from app.services.curator import CurationPipeline
from app.services.job_manager import JobStore
from tests.fixtures.fakes import FakeEmbedder, FakeFeedSource, FakeIntelligence
from tests.fixtures.sample_data import create_article, create_candidate, create_job


@pytest.fixture
def feed_source():
    return FakeFeedSource([create_candidate(title="Story A"), create_candidate(title="Story B")])


@pytest.fixture
def app(session_factory, feed_source):
    def build_pipeline(factory):
        return CurationPipeline(
            factory,
            feed_source=feed_source,
            embedder=FakeEmbedder(),
            intelligence=FakeIntelligence(scores={"Story B": 1.0}),
            item_delay=0
        )

    return create_app({
        'TESTING': True,
        'SESSION_FACTORY': session_factory,
        'PIPELINE_FACTORY': build_pipeline,
    })


@pytest.fixture
def headers(organization):
    return {'X-Organization-Id': str(organization.id)}


@pytest.fixture
def jobs(session_factory, organization):
    return JobStore(organization.id, session_factory)


def parse_sse(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.strip().split("\n\n"):
        name, data = None, None
        for line in block.splitlines():
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append((name, data))
    return events


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'

    def test_unknown_route_is_json(self, client):
        response = client.get('/api/nothing-here')
        assert response.status_code == 404
        assert 'error' in response.get_json()

    def test_wrong_method_is_json(self, client, headers):
        response = client.put('/api/curation/collect', headers=headers)
        assert response.status_code == 405
        assert 'error' in response.get_json()


class TestTenantHeader:

    def test_missing_header(self, client):
        response = client.get('/api/curation/jobs')
        assert response.status_code == 400
        assert 'X-Organization-Id' in response.get_json()['error']

    def test_malformed_header(self, client):
        response = client.get('/api/curation/jobs', headers={'X-Organization-Id': 'acme'})
        assert response.status_code == 400

    def test_unknown_organization(self, client):
        response = client.get('/api/curation/jobs', headers={'X-Organization-Id': str(uuid4())})
        assert response.status_code == 404


class TestCollect:

    def test_streams_pass_and_completes_job(self, client, headers, jobs, db_session):
        response = client.post('/api/curation/collect', headers=headers)

        assert response.status_code == 200
        assert response.mimetype == 'text/event-stream'
        events = parse_sse(response.get_data(as_text=True))

        names = [name for name, _ in events]
        assert names[0] == 'start'
        assert names[-1] == 'complete'
        job_id = events[0][1]['jobId']

        stages = [data['stage'] for name, data in events if name == 'progress']
        assert stages[:2] == ['fetch', 'fetch_complete']
        assert 'curated' in stages and 'rejected' in stages

        final = events[-1][1]
        assert final['jobId'] == job_id
        assert final['result']['curated'] == 1
        assert final['result']['lowScore'] == 1

        job = jobs.get(job_id)
        assert job.status is CurationJobStatus.COMPLETED
        assert job.total_found == 2
        assert db_session.query(Article).count() == 2

    def test_source_filter_passed_through(self, client, headers, feed_source, jobs):
        source_id = uuid4()
        response = client.post(f'/api/curation/collect?sourceIds={source_id},not-an-id', headers=headers)
        response.get_data()

        assert feed_source.calls[0]['source_ids'] == [source_id]
        job = jobs.list()['jobs'][0]
        assert job.source_ids == [str(source_id)]

    def test_rejects_second_run(self, client, headers, jobs):
        running = jobs.create()

        response = client.post('/api/curation/collect', headers=headers)

        assert response.status_code == 409
        assert response.get_json()['jobId'] == str(running.id)

    def test_feed_failure_streams_error(self, client, headers, feed_source, jobs):
        feed_source.error = "All 1 feed sources failed"

        events = parse_sse(client.post('/api/curation/collect', headers=headers).get_data(as_text=True))

        assert events[-1][0] == 'error'
        assert "All 1 feed sources failed" in events[-1][1]['error']
        assert jobs.get(events[0][1]['jobId']).status is CurationJobStatus.FAILED


class TestCancel:

    def test_nothing_running(self, client, headers):
        response = client.post('/api/curation/cancel', headers=headers)
        assert response.status_code == 404

    def test_cancels_running_job(self, client, headers, jobs):
        running = jobs.create()

        response = client.post('/api/curation/cancel', headers=headers)

        assert response.status_code == 200
        assert response.get_json()['job']['status'] == 'cancelled'
        assert jobs.get(running.id).status is CurationJobStatus.CANCELLED

    def test_other_tenant_job_untouched(self, client, headers, session_factory, other_organization):
        theirs = JobStore(other_organization.id, session_factory).create()

        response = client.post('/api/curation/cancel', headers=headers)

        assert response.status_code == 404
        assert JobStore(other_organization.id, session_factory).get(theirs.id).status is CurationJobStatus.RUNNING


class TestJobs:

    def _seed(self, db_session, organization, count=3, **kwargs):
        now = datetime.now(timezone.utc)
        jobs = [create_job(organization.id, started_at=now - timedelta(days=i), **kwargs) for i in range(count)]
        db_session.add_all(jobs)
        db_session.commit()
        return jobs

    def test_list_paginated(self, client, headers, db_session, organization):
        self._seed(db_session, organization)

        body = client.get('/api/curation/jobs?page=2&limit=2', headers=headers).get_json()

        assert body['total'] == 3
        assert body['totalPages'] == 2
        assert body['page'] == 2
        assert len(body['jobs']) == 1
        assert 'logs' not in body['jobs'][0]

    def test_list_status_filter(self, client, headers, db_session, organization):
        self._seed(db_session, organization, count=2)
        self._seed(db_session, organization, count=1, status=CurationJobStatus.FAILED)

        body = client.get('/api/curation/jobs?status=failed', headers=headers).get_json()

        assert body['total'] == 1
        assert body['jobs'][0]['status'] == 'failed'

    def test_list_invalid_arguments(self, client, headers):
        assert client.get('/api/curation/jobs?status=bogus', headers=headers).status_code == 400
        assert client.get('/api/curation/jobs?page=zero', headers=headers).status_code == 400
        assert client.get('/api/curation/jobs?page=0', headers=headers).status_code == 400

    def test_current(self, client, headers, jobs):
        assert client.get('/api/curation/jobs/current', headers=headers).get_json() == {'job': None}

        running = jobs.create()
        body = client.get('/api/curation/jobs/current', headers=headers).get_json()
        assert body['job']['id'] == str(running.id)
        assert body['job']['logs'] == []

    def test_get_job(self, client, headers, db_session, organization):
        [job] = self._seed(db_session, organization, count=1)

        body = client.get(f'/api/curation/jobs/{job.id}', headers=headers).get_json()

        assert body['job']['id'] == str(job.id)
        assert body['job']['status'] == 'completed'

    def test_get_other_tenant_job(self, client, headers, db_session, other_organization):
        [theirs] = self._seed(db_session, other_organization, count=1)
        assert client.get(f'/api/curation/jobs/{theirs.id}', headers=headers).status_code == 404

    def test_get_malformed_id(self, client, headers):
        assert client.get('/api/curation/jobs/not-a-uuid', headers=headers).status_code == 404

    def test_delete_job(self, client, headers, db_session, organization):
        [job] = self._seed(db_session, organization, count=1)

        assert client.delete(f'/api/curation/jobs/{job.id}', headers=headers).status_code == 200
        assert client.delete(f'/api/curation/jobs/{job.id}', headers=headers).status_code == 404

    def test_delete_running_job_conflicts(self, client, headers, jobs):
        running = jobs.create()
        assert client.delete(f'/api/curation/jobs/{running.id}', headers=headers).status_code == 409
        assert jobs.get(running.id) is not None

    def test_bulk_delete_requires_age(self, client, headers):
        assert client.delete('/api/curation/jobs', headers=headers).status_code == 400

    def test_bulk_delete(self, client, headers, db_session, organization, jobs):
        now = datetime.now(timezone.utc)
        db_session.add_all([
            create_job(organization.id, started_at=now - timedelta(days=60)),
            create_job(organization.id, started_at=now - timedelta(days=2)),
        ])
        db_session.commit()
        jobs.create()

        body = client.delete('/api/curation/jobs?olderThanDays=30', headers=headers).get_json()

        assert body == {'success': True, 'deleted': 1}
        assert db_session.query(CurationJob).count() == 2


class TestRerun:

    def test_rerun_uses_previous_source_filter(self, client, headers, db_session, organization,
                                               feed_source, jobs):
        source_id = uuid4()
        previous = create_job(organization.id, status=CurationJobStatus.FAILED, source_ids=[str(source_id)])
        db_session.add(previous)
        db_session.commit()

        response = client.post(f'/api/curation/jobs/{previous.id}/rerun', headers=headers)
        events = parse_sse(response.get_data(as_text=True))

        new_job_id = events[0][1]['jobId']
        assert new_job_id != str(previous.id)
        assert events[-1][0] == 'complete'
        assert feed_source.calls[0]['source_ids'] == [source_id]
        assert jobs.get(new_job_id).source_ids == [str(source_id)]

    def test_rerun_running_job_conflicts(self, client, headers, jobs):
        running = jobs.create()
        assert client.post(f'/api/curation/jobs/{running.id}/rerun', headers=headers).status_code == 409

    def test_rerun_missing_job(self, client, headers):
        assert client.post(f'/api/curation/jobs/{uuid4()}/rerun', headers=headers).status_code == 404


class TestArticles:

    def test_curate_article(self, client, headers):
        response = client.post('/api/curation/articles', headers=headers, json={
            'url': 'https://example.com/piece?utm_source=x',
            'title': 'A piece',
            'content': 'Body text',
            'sourceName': 'Tip line',
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body['status'] == 'curated'
        assert body['article']['sourceUrl'] == 'https://example.com/piece'
        assert body['article']['sourceName'] == 'Tip line'

    def test_duplicate_article(self, client, headers, db_session, organization):
        db_session.add(create_article(organization.id, source_url='https://example.com/piece'))
        db_session.commit()

        response = client.post('/api/curation/articles', headers=headers, json={
            'url': 'https://example.com/piece', 'title': 'Again', 'content': 'Body',
        })

        assert response.status_code == 200
        assert response.get_json()['duplicate']['reason'] == 'url'

    def test_missing_fields(self, client, headers):
        response = client.post('/api/curation/articles', headers=headers, json={'url': 'https://example.com/x'})
        assert response.status_code == 400

    def test_review_queue(self, client, headers, db_session, organization, other_organization):
        db_session.add_all([
            create_article(organization.id, title="Pending"),
            create_article(organization.id, title="Rejected", status=ArticleStatus.REJECTED),
            create_article(other_organization.id, title="Theirs"),
        ])
        db_session.commit()

        pending = client.get('/api/curation/articles', headers=headers).get_json()
        rejected = client.get('/api/curation/articles?status=rejected', headers=headers).get_json()

        assert [a['title'] for a in pending['articles']] == ["Pending"]
        assert [a['title'] for a in rejected['articles']] == ["Rejected"]
        assert client.get('/api/curation/articles?status=nope', headers=headers).status_code == 400
