"""
Bot-challenge (interstitial) detection by title and content heuristics.
"""
import re
import logging
from typing import Optional

logger = logging.getLogger(__name__)

CHALLENGE_TITLE_MARKERS = (
    'just a moment',
    'checking your browser',
    'attention required',
    'challenge',
    'security check',
    'access denied',
)

CHALLENGE_BODY_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r'challenge-platform',
        r'cf-browser-verification',
        r'cf-chl-',
        r'__cf_chl_',
        r'<div[^>]*class="[^"]*captcha[^"]*"',
        r'<form[^>]*captcha',
        r'please\s+verify\s+you\s+are\s+human',
        r'verify\s+you\s+are\s+human',
        r'unusual\s+traffic',
        r'enable\s+javascript\s+and\s+cookies\s+to\s+continue',
    )
]

TITLE_PATTERN = re.compile(r'<title[^>]*>(.*?)</title>', re.IGNORECASE | re.DOTALL)

# Challenge pages are small; a large listing page that happens to embed a
# captcha widget somewhere is not an interstitial.
MAX_CHALLENGE_PAGE_BYTES = 200_000


def extract_title(html: str) -> str:
    match = TITLE_PATTERN.search(html or '')
    return match.group(1).strip() if match else ''


def is_challenge_title(title: Optional[str]) -> bool:
    if not title:
        return False
    lowered = title.lower()
    return any(marker in lowered for marker in CHALLENGE_TITLE_MARKERS)


def find_challenge_marker(html: Optional[str], title: Optional[str] = None) -> Optional[str]:
    """
    Return the marker that identifies html as a bot-challenge page, or None.

    Feed documents (XML) are never treated as challenges.
    """
    if not html:
        return None
    head = html.lstrip().lstrip('\ufeff').lstrip()[:200].lower()
    if head.startswith('<?xml') or head.startswith('<rss') or head.startswith('<feed'):
        return None

    page_title = title if title is not None else extract_title(html)
    if is_challenge_title(page_title):
        return f"title:{page_title[:60]}"

    if len(html) > MAX_CHALLENGE_PAGE_BYTES:
        return None
    for pattern in CHALLENGE_BODY_PATTERNS:
        if pattern.search(html):
            return f"body:{pattern.pattern}"
    return None


def is_challenge_page(html: Optional[str], title: Optional[str] = None) -> bool:
    marker = find_challenge_marker(html, title)
    if marker:
        logger.debug(f"[challenge] Detected challenge marker {marker}")
    return marker is not None
