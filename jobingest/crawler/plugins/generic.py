"""
Generic HTML parser.

Uses the CSS selectors configured on the source first, then common job
listing patterns. This is the fallback when no board-specific parser matches.
"""
from typing import Dict, List

from jobingest.models import FAMILY_GENERIC, SourceDescriptor, SourceKind
from .base import CandidateSelectors, CardListingParser

# Common job listing selectors (heuristics)
JOB_SELECTORS = CandidateSelectors(
    '.job-listing', '.job-item', '.career-item', '.position',
    'article.job', 'div.vacancy', 'tr.job-row', 'li.job',
    'article[class*="job"]', 'div[class*="job-card"]', 'li[class*="job"]',
    'div[class*="vacancy"]', 'li[class*="vacancy"]', 'div[class*="position"]',
    'ul.jobs li', 'ul.positions li', 'ul.vacancies li',
)
BROAD_SELECTORS = CandidateSelectors(
    '[class*="job"]', '[class*="posting"]', '[class*="opening"]', '[role="article"]',
    min_matches=3,
)


class GenericParser(CardListingParser):
    title_selectors = CandidateSelectors(
        '.job-title', '[class*="title"]', 'h2 a', 'h3 a', 'h2', 'h3', 'h4', 'a',
    )
    link_selectors = CandidateSelectors('a[href*="job"]', 'a[href*="career"]', 'a[href]')
    anchor_selector = (
        'a[href*="/job/"], a[href*="/jobs/"], a[href*="/career"], '
        'a[href*="/vacanc"], a[href*="/position"], a[href*="/opening"]'
    )

    def __init__(self):
        super().__init__(family=FAMILY_GENERIC, priority=10)  # Low priority - fallback only

    def can_handle(self, source: SourceDescriptor) -> bool:
        return source.kind != SourceKind.XML_FEED

    def card_candidates(self, source: SourceDescriptor) -> List[CandidateSelectors]:
        configured = source.scraping_config.job_item_selector
        candidates = [JOB_SELECTORS, BROAD_SELECTORS]
        if configured:
            candidates.insert(0, CandidateSelectors(configured))
        return candidates

    def field_selectors(self, source: SourceDescriptor) -> Dict[str, CandidateSelectors]:
        config = source.scraping_config
        selectors = super().field_selectors(source)
        configured = {
            'title': config.title_selector,
            'company': config.company_selector,
            'location': config.location_selector,
            'salary': config.salary_selector,
            'description': config.description_selector,
            'link': config.link_selector,
        }
        for name, selector in configured.items():
            if selector:
                selectors[name] = selectors[name].with_preferred(selector)
        return selectors
