"""
Jooble search-result page parser.

Jooble sits behind Cloudflare; pages usually arrive only through the
rendering proxy or the headless browser, and the source is a candidate
for auto-deactivation when every strategy is challenged.
"""
import re
from typing import Optional

from bs4 import Tag

from jobingest.core.urls import host_of
from jobingest.models import FAMILY_JOOBLE, SourceDescriptor
from .base import CandidateSelectors, CardListingParser

JOB_ID_PATTERN = re.compile(r'/(?:job|vacancy|search|desc)/([^/?#]+)')


class JoobleParser(CardListingParser):
    base_url = 'https://jooble.org'
    card_selectors = [
        CandidateSelectors(
            '.vacancy-item',
            '.job-item',
            '.result-item',
            '.vacancy-wrapper',
            '[data-testid="job-item"]',
            '[data-testid="vacancy-item"]',
            '.job-card',
            'article[class*="job"]',
            'article[class*="vacancy"]',
            'div[class*="vacancy"]',
            'div[class*="job"]',
            'li[class*="vacancy"]',
            'li[class*="job"]',
        ),
        # Broad patterns only count when they repeat like a result list
        CandidateSelectors(
            'div[class*="result"]',
            'div[class*="listing"]',
            'div[class*="item"]',
            'article',
            'section[class*="job"]',
            min_matches=4,
        ),
    ]
    title_selectors = CandidateSelectors(
        '.vacancy-title',
        '.job-title',
        '[data-testid="job-title"]',
        '[data-testid="vacancy-title"]',
        'h2',
        'h3',
        'a[class*="title"]',
        'a[class*="link"]',
        'a',
        'h4',
    )
    description_selectors = CandidateSelectors(
        '.job-description',
        '.vacancy-description',
        '[data-testid="job-description"]',
        '.snippet',
        'p',
    )
    location_selectors = CandidateSelectors(
        '.job-location', '.vacancy-location', '[data-testid="job-location"]', '.location', '[class*="location"]',
    )
    company_selectors = CandidateSelectors(
        '.job-company', '.vacancy-company', '[data-testid="job-company"]', '.company', '[class*="company"]',
    )
    salary_selectors = CandidateSelectors(
        '.job-salary', '.vacancy-salary', '[data-testid="job-salary"]', '.salary', '[class*="salary"]',
    )
    date_selectors = CandidateSelectors(
        '.job-date', '.vacancy-date', '[data-testid="job-date"]', '.date', '[class*="date"]',
    )
    link_selectors = CandidateSelectors(
        'a[href*="/job/"]',
        'a[href*="/vacancy/"]',
        'a[href*="/position/"]',
        'a[href*="/offer/"]',
        'a[href*="/desc/"]',
        'a[class*="link"][href]',
        'a[class*="title"][href]',
        'a[href]',
    )
    anchor_selector = 'a[href*="/job/"], a[href*="/vacancy/"], a[href*="/position/"], a[href*="/offer/"]'

    def __init__(self):
        super().__init__(family=FAMILY_JOOBLE, priority=70)

    def can_handle(self, source: SourceDescriptor) -> bool:
        return 'jooble.' in host_of(source.url)

    def extract_id(self, card: Tag, url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        match = JOB_ID_PATTERN.search(url)
        return match.group(1) if match else None
