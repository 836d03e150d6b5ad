#!/usr/bin/env python
"""
Seed Data Script

Creates an organization (if it does not exist yet) and seeds its RSS feed
sources and curation settings from a JSON file.

Usage:
    python scripts/seed_data.py --slug acme --name "Acme Weekly" --file feeds.json

JSON format:
    {
        "settings": {"relevance_threshold": 6.5, "brand_voice": "..."},
        "sources": [{"name": "...", "url": "...", "category": "..."}]
    }

Idempotent: Running multiple times will not create duplicates.
"""

import argparse
import json
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from app.database import session_scope
from app.models import Organization, RssSource
from app.tenant import TenantScope

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger('seed_data')

SETTINGS_FIELDS = ('relevance_threshold', 'similarity_threshold', 'article_max_age_days', 'brand_voice')


def load_json(filepath: str) -> dict:
    with open(filepath, 'r') as f:
        return json.load(f)


def ensure_organization(session, slug: str, name: str) -> Organization:
    organization = session.query(Organization).filter_by(slug=slug).first()
    if organization:
        logger.info(f"Organization '{slug}' already exists ({organization.id})")
        return organization
    organization = Organization(slug=slug, name=name or slug)
    session.add(organization)
    session.flush()
    logger.info(f"Created organization '{slug}' ({organization.id})")
    return organization


def seed_settings(scope: TenantScope, values: dict) -> None:
    values = {k: v for k, v in values.items() if k in SETTINGS_FIELDS}
    if not values:
        return
    row = scope.settings.query().first()
    if row is None:
        scope.settings.add(**values)
        logger.info("Created organization settings")
    else:
        for key, value in values.items():
            setattr(row, key, value)
        logger.info("Updated organization settings")


def seed_sources(scope: TenantScope, sources: list) -> tuple[int, int]:
    """Returns (created, skipped)."""
    created = 0
    skipped = 0
    for source_data in sources:
        if scope.sources.query(RssSource.url == source_data['url']).first():
            logger.debug(f"Source '{source_data['url']}' already exists, skipping")
            skipped += 1
            continue
        scope.sources.add(
            name=source_data['name'],
            url=source_data['url'],
            category=source_data.get('category'),
            is_active=source_data.get('is_active', True),
        )
        created += 1
        logger.info(f"Created source: {source_data['name']}")
    return created, skipped


def main():
    parser = argparse.ArgumentParser(description='Seed an organization with feeds and settings')
    parser.add_argument('--slug', required=True, help='Organization slug')
    parser.add_argument('--name', default=None, help='Organization display name')
    parser.add_argument('--file', default=None, help='JSON file with settings and sources')
    args = parser.parse_args()

    data = load_json(args.file) if args.file else {}

    with session_scope() as session:
        organization = ensure_organization(session, args.slug, args.name)
        scope = TenantScope(session, organization.id)
        seed_settings(scope, data.get('settings', {}))
        created, skipped = seed_sources(scope, data.get('sources', []))
        organization_id = organization.id

    print(f"Organization {organization_id}: {created} sources created, {skipped} skipped")


if __name__ == '__main__':
    main()
