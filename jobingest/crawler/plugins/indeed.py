"""
Indeed search-result page parser.
"""
from typing import Optional

from bs4 import Tag

from jobingest.core.urls import host_of, is_feed_url
from jobingest.models import FAMILY_INDEED, SourceDescriptor, SourceKind
from .base import CandidateSelectors, CardListingParser

VIEWJOB_URL = 'https://www.indeed.com/viewjob?jk={jk}'


class IndeedParser(CardListingParser):
    base_url = 'https://www.indeed.com'
    card_selectors = [
        CandidateSelectors(
            'div[data-jk]',
            'div.job_seen_beacon',
            'a[data-jk]',
            'div[class*="job"]',
            'div[class*="result"]',
        ),
    ]
    title_selectors = CandidateSelectors(
        'h2.jobTitle a span[title]',
        'h2.jobTitle a',
        'a[data-jk] span[title]',
        'h2 a span[title]',
        '.jobTitle span',
        'h2 a',
    )
    company_selectors = CandidateSelectors('.companyName', '[data-testid="company-name"]', '.company')
    location_selectors = CandidateSelectors('.companyLocation', '[data-testid="text-location"]', '.location')
    description_selectors = CandidateSelectors('.job-snippet', '.summary', '.job-snippet-container')
    salary_selectors = CandidateSelectors('.salary-snippet', '.salary', '[data-testid="attribute_snippet_testid"]')
    date_selectors = CandidateSelectors('.date', 'span[class*="date"]')
    link_selectors = CandidateSelectors('h2.jobTitle a[href]', 'a[data-jk][href]', 'h2 a[href]', 'a[href*="/viewjob"]')
    anchor_selector = 'a[href*="/viewjob"], a[href*="/rc/clk"], a[href*="jk="]'

    def __init__(self):
        super().__init__(family=FAMILY_INDEED, priority=70)

    def can_handle(self, source: SourceDescriptor) -> bool:
        return (
            source.kind != SourceKind.XML_FEED
            and 'indeed.' in host_of(source.url)
            and not is_feed_url(source.url)
        )

    def extract_id(self, card: Tag, url: Optional[str]) -> Optional[str]:
        jk = card.get('data-jk')
        if not jk:
            inner = card.select_one('[data-jk]')
            jk = inner.get('data-jk') if inner is not None else None
        return jk.strip() if jk else None

    def parse_card(self, card, source, selectors):
        job = super().parse_card(card, source, selectors)
        if job is not None and job.external_id and (not job.url or 'jk=' not in job.url):
            job.url = VIEWJOB_URL.format(jk=job.external_id)
        return job
