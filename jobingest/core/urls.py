"""
Source URL canonicalization for boards that expose friendlier endpoints.
"""
import logging
from urllib.parse import urlencode, urlparse, parse_qs

logger = logging.getLogger(__name__)

INDEED_HOST = 'www.indeed.com'
JOOBLE_SEARCH_URL = 'https://jooble.org/SearchResult'


def is_feed_url(url: str) -> bool:
    lowered = url.lower()
    return (
        '.rss' in lowered
        or '/rss' in lowered
        or 'feed' in lowered
        or lowered.endswith('.xml')
        or lowered.endswith('.atom')
    )


def host_of(url: str) -> str:
    try:
        return (urlparse(url).hostname or '').lower()
    except ValueError:
        return ''


def _first(params, key: str) -> str:
    values = params.get(key) or ['']
    return values[0]


def canonicalize_indeed_url(url: str, prefer_feed: bool) -> str:
    """
    Country subdomains (it.indeed.com, uk.indeed.com) are routed to
    www.indeed.com. A search URL becomes the equivalent RSS feed when the
    source is feed-based.
    """
    parsed = urlparse(url)
    host = (parsed.hostname or '').lower()
    if 'indeed.' not in host:
        return url
    params = parse_qs(parsed.query)

    if '/rss' in parsed.path:
        if host == INDEED_HOST:
            return url
        converted = f"https://{INDEED_HOST}/rss?{parsed.query}" if parsed.query else f"https://{INDEED_HOST}/rss"
        logger.info(f"[urls] Converted Indeed RSS URL from {host} to {INDEED_HOST}: {converted}")
        return converted

    if prefer_feed and parsed.path.startswith('/jobs'):
        query = _first(params, 'q')
        if query:
            rss_params = {'q': query}
            location = _first(params, 'l')
            if location:
                rss_params['l'] = location
            converted = f"https://{INDEED_HOST}/rss?{urlencode(rss_params)}"
            logger.info(f"[urls] Converted Indeed search URL to RSS feed: {converted}")
            return converted

    if host != INDEED_HOST and host.endswith('indeed.com'):
        return parsed._replace(netloc=INDEED_HOST, scheme='https').geturl()
    return url


def canonicalize_jooble_url(url: str) -> str:
    """The Jooble API endpoint needs credentials; use the public search page instead"""
    parsed = urlparse(url)
    if 'jooble.' not in (parsed.hostname or '') or '/api/search' not in parsed.path:
        return url
    params = parse_qs(parsed.query)
    search_params = {}
    keywords = _first(params, 'keywords')
    location = _first(params, 'location')
    if keywords:
        search_params['ukw'] = keywords
    if location:
        search_params['rgns'] = location
    converted = f"{JOOBLE_SEARCH_URL}?{urlencode(search_params)}"
    logger.info(f"[urls] Converted Jooble API URL to search page: {converted}")
    return converted


def canonicalize_source_url(url: str, prefer_feed: bool = False) -> str:
    url = url.strip()
    host = host_of(url)
    if 'indeed.' in host:
        return canonicalize_indeed_url(url, prefer_feed)
    if 'jooble.' in host:
        return canonicalize_jooble_url(url)
    return url
