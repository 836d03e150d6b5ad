"""
Curation Configuration

System defaults come from the environment. Tenant overrides live in
organization_settings. Loading never raises: load_settings() returns
(settings, error) and resolve_settings() is the one place that decides to
fall back to the system defaults.
"""
import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

from app.database import session_scope
from app.tenant import TenantScope

logger = logging.getLogger(__name__)

# System defaults
DEFAULT_RELEVANCE_THRESHOLD = float(os.environ.get("CURATION_RELEVANCE_THRESHOLD", "6.0"))
DEFAULT_SIMILARITY_THRESHOLD = float(os.environ.get("CURATION_SIMILARITY_THRESHOLD", "0.85"))
DEFAULT_MAX_AGE_DAYS = int(os.environ.get("CURATION_MAX_AGE_DAYS", "7"))
DEDUP_LOOKBACK_DAYS = int(os.environ.get("CURATION_DEDUP_LOOKBACK_DAYS", "30"))
ITEM_DELAY_SECONDS = float(os.environ.get("CURATION_ITEM_DELAY_SECONDS", "2.0"))
MAX_DISPLAYED_ERRORS = int(os.environ.get("CURATION_MAX_DISPLAYED_ERRORS", "20"))
REJECTED_ARTICLE_RETENTION_DAYS = int(os.environ.get("CURATION_REJECTED_RETENTION_DAYS", "90"))
JOB_RETENTION_DAYS = int(os.environ.get("CURATION_JOB_RETENTION_DAYS", "30"))
STALE_JOB_MINUTES = int(os.environ.get("CURATION_STALE_JOB_MINUTES", "120"))


@dataclass(frozen=True)
class CurationSettings:
    """Thresholds the pipeline uses for one tenant."""
    relevance_threshold: float = DEFAULT_RELEVANCE_THRESHOLD
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    article_max_age_days: int = DEFAULT_MAX_AGE_DAYS
    brand_voice: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'relevanceThreshold': self.relevance_threshold,
            'similarityThreshold': self.similarity_threshold,
            'articleMaxAgeDays': self.article_max_age_days,
            'hasBrandVoice': bool(self.brand_voice),
        }


DEFAULT_SETTINGS = CurationSettings()


def load_settings(session_factory, organization_id) -> tuple[Optional[CurationSettings], Optional[str]]:
    """
    Load tenant settings.

    Returns:
        (settings, None) on success, (None, None) when the tenant has no
        settings row, (None, error message) when the read failed.
    """
    try:
        with session_scope(session_factory) as session:
            row = TenantScope(session, organization_id).settings.query().first()
            if row is None:
                return None, None
            settings = replace(
                DEFAULT_SETTINGS,
                **{
                    field: value
                    for field, value in (
                        ('relevance_threshold', row.relevance_threshold),
                        ('similarity_threshold', row.similarity_threshold),
                        ('article_max_age_days', row.article_max_age_days),
                        ('brand_voice', row.brand_voice),
                    )
                    if value is not None
                }
            )
            return settings, None
    except Exception as e:
        return None, f"{type(e).__name__}: {e}"


def resolve_settings(session_factory, organization_id) -> tuple[CurationSettings, bool, Optional[str]]:
    """
    Decide which settings a pass runs with.

    Returns:
        (settings, used_defaults, load_error)
    """
    settings, error = load_settings(session_factory, organization_id)
    if settings is not None:
        return settings, False, None

    if error:
        logger.warning(f"Could not load settings for organization {organization_id}, using defaults: {error}")
    else:
        logger.info(f"No settings for organization {organization_id}, using defaults")
    return DEFAULT_SETTINGS, True, error
