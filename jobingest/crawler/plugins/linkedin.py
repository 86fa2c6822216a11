"""
LinkedIn public job search page parser.
"""
import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

from bs4 import Tag

from jobingest.core.urls import host_of
from jobingest.models import FAMILY_LINKEDIN, SourceDescriptor
from .base import CandidateSelectors, CardListingParser

JOB_VIEW_PATTERN = re.compile(r'/jobs/view/(?:[^/?#]*-)?(\d+)')


class LinkedInParser(CardListingParser):
    base_url = 'https://www.linkedin.com'
    card_selectors = [
        CandidateSelectors(
            '.jobs-search__results-list li',
            '.scaffold-layout__list-item',
            '[class*="job-card"]',
            '[class*="job-result"]',
            'li[class*="job"]',
            'div[class*="job-card"]',
        ),
    ]
    title_selectors = CandidateSelectors(
        '.base-search-card__title',
        '.job-card-list__title',
        '.job-result-card__title',
        '[class*="job-title"]',
        'h3',
        'h4',
        'a[class*="title"]',
        'a',
    )
    description_selectors = CandidateSelectors(
        '.job-result-card__snippet',
        '.job-card-container__description',
        '[class*="description"]',
        '[class*="snippet"]',
        'p',
    )
    location_selectors = CandidateSelectors(
        '.job-search-card__location',
        '.job-result-card__location',
        '.job-card-container__metadata-item',
        '[class*="location"]',
    )
    company_selectors = CandidateSelectors(
        '.base-search-card__subtitle',
        '.job-result-card__company-name',
        '.job-card-container__company-name',
        '[class*="company"]',
    )
    date_selectors = CandidateSelectors(
        'time',
        '.job-result-card__listdate',
        '[class*="date"]',
        '[class*="time"]',
    )
    link_selectors = CandidateSelectors(
        'a[href*="/jobs/view/"]',
        'a[href*="/jobs/collections/"]',
        'a[class*="link"][href]',
        'a[href]',
    )
    anchor_selector = 'a[href*="/jobs/view/"], a[href*="/jobs/collections/"]'

    def __init__(self):
        super().__init__(family=FAMILY_LINKEDIN, priority=70)

    def can_handle(self, source: SourceDescriptor) -> bool:
        return 'linkedin.' in host_of(source.url)

    def extract_id(self, card: Tag, url: Optional[str]) -> Optional[str]:
        urn = card.get('data-entity-urn') or ''
        if not urn:
            inner = card.select_one('[data-entity-urn]')
            urn = inner.get('data-entity-urn', '') if inner is not None else ''
        if urn and urn.rsplit(':', 1)[-1].isdigit():
            return urn.rsplit(':', 1)[-1]
        if not url:
            return None
        match = JOB_VIEW_PATTERN.search(url)
        if match:
            return match.group(1)
        current = parse_qs(urlparse(url).query).get('currentJobId')
        return current[0] if current else None
