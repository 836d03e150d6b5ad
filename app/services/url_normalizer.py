"""
URL Canonicalization Service

Turns feed item links into the canonical link used as the exact-match
duplicate key. Tracking parameters and cosmetic differences are removed so
the same article reached through different feeds maps to one key.
"""

import logging
from urllib.parse import urlparse, urlunparse, parse_qsl, urlencode

logger = logging.getLogger(__name__)

# Query parameters to always remove (tracking)
REMOVE_PARAMS = {
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'fbclid', 'gclid', 'ref', 'mc_cid', 'mc_eid',
    '_ga', '_gl', 'ncid', 'ocid', 'sr_share', 'cmpid', 'rss',
}


def normalize_url(url: str) -> str:
    """
    Canonicalize a URL for duplicate detection.

    Rules:
    1. Standardize to https://
    2. Lowercase the host and remove the www. prefix
    3. Remove trailing slashes from the path (path case is preserved)
    4. Remove tracking query parameters, keep the rest in original order
    5. Remove fragments (#...)

    Args:
        url: Original URL

    Returns:
        Canonical URL string, '' for empty input, the stripped original
        if it cannot be parsed as an absolute URL
    """
    if not url:
        return ''

    stripped = url.strip()
    try:
        parsed = urlparse(stripped)
        if not parsed.netloc:
            return stripped

        netloc = parsed.netloc.lower()
        if netloc.startswith('www.'):
            netloc = netloc[4:]

        path = parsed.path.rstrip('/')

        query = ''
        if parsed.query:
            params = [
                (key, value)
                for key, value in parse_qsl(parsed.query, keep_blank_values=False)
                if key.lower() not in REMOVE_PARAMS and not key.lower().startswith('utm_')
            ]
            query = urlencode(params) if params else ''

        return urlunparse(('https', netloc, path, '', query, ''))

    except ValueError as e:
        logger.warning(f"URL normalization failed for '{url}': {e}")
        return stripped
