"""
Integration tests for RSS Source Management feature.

Tests the /api/sources routes for:
- Listing sources
- Adding new sources
- Pausing/resuming sources
- Deleting sources
"""

from unittest.mock import patch
from uuid import uuid4

import httpx
import pytest

from app.models import RssSource
from app.routes import validate_rss_url
from tests.fixtures.sample_data import create_source


@pytest.fixture
def headers(organization):
    return {'X-Organization-Id': str(organization.id)}


@pytest.fixture
def test_source(db_session, organization):
    """Create a test RSS source."""
    source = create_source(organization.id, name="Test Feed", url="https://example.com/test-feed.xml")
    db_session.add(source)
    db_session.commit()
    return source


@pytest.fixture
def paused_source(db_session, organization):
    """Create a paused RSS source."""
    source = create_source(organization.id, name="Paused Feed",
                           url="https://example.com/paused-feed.xml", is_active=False)
    db_session.add(source)
    db_session.commit()
    return source


class TestListSources:
    """Tests for GET /api/sources"""

    def test_list_sources_empty(self, client, headers):
        response = client.get('/api/sources', headers=headers)
        assert response.status_code == 200
        assert response.get_json() == {'sources': []}

    def test_list_sources_with_data(self, client, headers, test_source, paused_source):
        sources = client.get('/api/sources', headers=headers).get_json()['sources']

        assert [s['name'] for s in sources] == ["Paused Feed", "Test Feed"]
        assert sources[0]['isActive'] is False
        assert sources[1]['url'] == "https://example.com/test-feed.xml"

    def test_other_tenant_sources_hidden(self, client, db_session, other_organization, headers):
        db_session.add(create_source(other_organization.id, name="Their Feed"))
        db_session.commit()

        assert client.get('/api/sources', headers=headers).get_json()['sources'] == []


class TestAddSource:
    """Tests for POST /api/sources"""

    def test_add_valid_source(self, client, headers, db_session):
        with patch('app.routes.validate_rss_url', return_value=(True, "")):
            response = client.post('/api/sources', headers=headers, json={
                'name': 'New Feed',
                'url': 'https://example.com/new-feed.xml',
                'category': 'Local',
            })

        assert response.status_code == 201
        body = response.get_json()
        assert body['source']['name'] == 'New Feed'
        assert body['source']['category'] == 'Local'
        assert body['source']['isActive'] is True
        assert db_session.query(RssSource).filter_by(url='https://example.com/new-feed.xml').count() == 1

    def test_add_source_missing_name(self, client, headers):
        response = client.post('/api/sources', headers=headers, json={'url': 'https://example.com/f.xml'})
        assert response.status_code == 400
        assert 'name is required' in response.get_json()['error']

    def test_add_source_missing_url(self, client, headers):
        response = client.post('/api/sources', headers=headers, json={'name': 'Feed'})
        assert response.status_code == 400

    def test_add_duplicate_url(self, client, headers, test_source):
        with patch('app.routes.validate_rss_url') as validate:
            response = client.post('/api/sources', headers=headers, json={
                'name': 'Again', 'url': test_source.url,
            })

        assert response.status_code == 409
        assert 'Test Feed' in response.get_json()['error']
        validate.assert_not_called()

    def test_add_races_concurrent_add(self, client, headers, db_session, organization):
        url = 'https://example.com/raced.xml'

        def validate_while_another_request_saves(feed_url):
            db_session.add(create_source(organization.id, name="Other request", url=feed_url))
            db_session.commit()
            return True, ""

        with patch('app.routes.validate_rss_url', side_effect=validate_while_another_request_saves):
            response = client.post('/api/sources', headers=headers, json={'name': 'Raced', 'url': url})

        assert response.status_code == 409
        assert db_session.query(RssSource).filter_by(url=url).count() == 1

    def test_same_url_allowed_for_other_tenant(self, client, db_session, other_organization, headers):
        db_session.add(create_source(other_organization.id, url="https://example.com/shared.xml"))
        db_session.commit()

        with patch('app.routes.validate_rss_url', return_value=(True, "")):
            response = client.post('/api/sources', headers=headers, json={
                'name': 'Shared', 'url': 'https://example.com/shared.xml',
            })

        assert response.status_code == 201

    def test_add_invalid_feed(self, client, headers, db_session):
        with patch('app.routes.validate_rss_url', return_value=(False, "URL returned HTTP 404")):
            response = client.post('/api/sources', headers=headers, json={
                'name': 'Broken', 'url': 'https://example.com/missing.xml',
            })

        assert response.status_code == 400
        assert 'HTTP 404' in response.get_json()['error']
        assert db_session.query(RssSource).count() == 0


class TestPauseResume:
    """Tests for POST /api/sources/<id>/pause and /resume"""

    def test_pause_source(self, client, headers, db_session, test_source):
        response = client.post(f'/api/sources/{test_source.id}/pause', headers=headers)

        assert response.status_code == 200
        assert response.get_json()['isActive'] is False
        db_session.expire_all()
        assert db_session.get(RssSource, test_source.id).is_active is False

    def test_resume_source(self, client, headers, db_session, paused_source):
        response = client.post(f'/api/sources/{paused_source.id}/resume', headers=headers)

        assert response.status_code == 200
        db_session.expire_all()
        assert db_session.get(RssSource, paused_source.id).is_active is True

    def test_pause_missing_source(self, client, headers):
        assert client.post(f'/api/sources/{uuid4()}/pause', headers=headers).status_code == 404

    def test_pause_other_tenant_source(self, client, db_session, other_organization, headers):
        theirs = create_source(other_organization.id)
        db_session.add(theirs)
        db_session.commit()

        assert client.post(f'/api/sources/{theirs.id}/pause', headers=headers).status_code == 404


class TestDeleteSource:
    """Tests for DELETE /api/sources/<id>"""

    def test_delete_source(self, client, headers, db_session, test_source):
        source_id = test_source.id
        response = client.delete(f'/api/sources/{source_id}', headers=headers)

        assert response.status_code == 200
        db_session.expire_all()
        assert db_session.get(RssSource, source_id) is None

    def test_delete_missing_source(self, client, headers):
        assert client.delete(f'/api/sources/{uuid4()}', headers=headers).status_code == 404


class TestValidateRssUrl:
    """Tests for the feed validation helper"""

    FEED = b"""<?xml version="1.0"?><rss version="2.0"><channel><title>Feed</title>
    <link>https://example.com</link><description>d</description></channel></rss>"""

    def _response(self, status, content=b""):
        return httpx.Response(status, content=content, request=httpx.Request("GET", "https://example.com/f"))

    def test_valid_feed_without_entries(self):
        with patch('app.routes.httpx.get', return_value=self._response(200, self.FEED)):
            assert validate_rss_url("https://example.com/f") == (True, "")

    def test_http_error(self):
        with patch('app.routes.httpx.get', return_value=self._response(404)):
            is_valid, error = validate_rss_url("https://example.com/f")
        assert not is_valid
        assert error == "URL returned HTTP 404"

    def test_timeout(self):
        with patch('app.routes.httpx.get', side_effect=httpx.ReadTimeout("slow")):
            is_valid, error = validate_rss_url("https://example.com/f")
        assert not is_valid
        assert error.startswith("Timeout")
