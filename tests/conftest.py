"""
Root pytest configuration for Newsletter Curator tests

Adds project root to Python path and provides common fixtures. Every test
gets a fresh in-memory SQLite database built from the model metadata.
"""
import sys
import os

import pytest
from dotenv import load_dotenv
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to Python path so tests can import app
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

# Load environment variables
load_dotenv()

from app import create_app  # noqa: E402
from app.database import Base, create_sqlite_engine  # noqa: E402
import app.models  # noqa: E402,F401

from tests.fixtures.sample_data import create_organization  # noqa: E402


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite engine shared by every session (and thread) in a test."""
    test_engine = create_sqlite_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(test_engine)
        test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """
    Provides a database session for tests.

    Session is automatically closed after each test.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def organization(db_session):
    org = create_organization(name="Acme Weekly", slug="acme")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture
def other_organization(db_session):
    org = create_organization(name="Globex Digest", slug="globex")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture
def app(session_factory):
    return create_app({
        'TESTING': True,
        'SESSION_FACTORY': session_factory,
    })


@pytest.fixture
def client(app):
    return app.test_client()
