"""
Base parser interface for turning fetched documents into raw jobs.
"""
import re
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from jobingest.models import RawJob, SourceDescriptor

logger = logging.getLogger(__name__)


class ParseResult:
    """Result from a parser"""
    def __init__(
        self,
        jobs: List[RawJob],
        selector: Optional[str] = None,
        message: Optional[str] = None,
        metadata: Optional[Dict] = None
    ):
        self.jobs = jobs
        self.selector = selector  # selector or structure that matched
        self.message = message
        self.metadata = metadata or {}

    def is_success(self) -> bool:
        return len(self.jobs) > 0

    def __repr__(self):
        return f"ParseResult(jobs={len(self.jobs)}, selector={self.selector!r})"


class CandidateSelectors:
    """
    Ordered list of CSS selectors tried in turn.

    The first selector matching at least min_matches elements wins; new
    candidates are added to the list, not to control flow.
    """

    def __init__(self, *selectors: str, min_matches: int = 1):
        self.selectors: Tuple[str, ...] = tuple(s for s in selectors if s)
        self.min_matches = min_matches

    def with_preferred(self, *selectors: Optional[str]) -> 'CandidateSelectors':
        """Copy with extra selectors tried before the built-in ones"""
        preferred = tuple(s for s in selectors if s)
        return CandidateSelectors(*preferred, *self.selectors, min_matches=self.min_matches)

    def select(self, root: Tag) -> Tuple[Optional[str], List[Tag]]:
        for selector in self.selectors:
            try:
                elements = root.select(selector)
            except SelectorSyntaxError as e:
                # soupsieve rejects malformed selectors (often operator-supplied)
                logger.warning(f"[selectors] Invalid selector {selector!r}: {e}")
                continue
            if len(elements) >= self.min_matches:
                return selector, elements
        return None, []

    def first(self, root: Tag) -> Optional[Tag]:
        for selector in self.selectors:
            try:
                element = root.select_one(selector)
            except SelectorSyntaxError as e:
                logger.warning(f"[selectors] Invalid selector {selector!r}: {e}")
                continue
            if element is not None:
                return element
        return None

    def text(self, root: Tag) -> Optional[str]:
        """Text of the first candidate with non-empty text"""
        for selector in self.selectors:
            try:
                element = root.select_one(selector)
            except SelectorSyntaxError:
                continue
            if element is None:
                continue
            text = element_text(element)
            if text:
                return text
        return None

    def __len__(self):
        return len(self.selectors)

    def __repr__(self):
        return f"CandidateSelectors({', '.join(self.selectors)})"


def element_text(element: Optional[Tag]) -> str:
    if element is None:
        return ''
    text = element.get_text(' ', strip=True)
    if not text and element.has_attr('title'):
        text = element['title']
    return ' '.join(text.split())


def absolute_url(href: Optional[str], base_url: str) -> Optional[str]:
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith('#') or href.lower().startswith(('javascript:', 'mailto:')):
        return None
    return urljoin(base_url, href)


def scan_job_anchors(
    soup: BeautifulSoup,
    href_selector: str,
    base_url: str,
    min_title_length: int = 5,
) -> List[Tuple[str, str, Tag]]:
    """
    Fallback extraction: anchors whose href looks like a job-detail link.

    Returns (title, absolute_url, anchor) tuples, one per distinct URL.
    """
    found = []
    seen = set()
    for anchor in soup.select(href_selector):
        title = element_text(anchor)
        if len(title) <= min_title_length:
            heading = anchor.find(['span', 'h2', 'h3', 'h4', 'div'])
            title = element_text(heading)
        url = absolute_url(anchor.get('href'), base_url)
        if not url or url in seen or len(title) <= min_title_length:
            continue
        seen.add(url)
        found.append((title, url, anchor))
    return found


def compose_description(fields: Dict[str, Optional[str]]) -> str:
    """Description for cards that carry no snippet, so storage never gets an empty one"""
    title = fields.get('title') or ''
    parts = []
    if fields.get('company'):
        parts.append(f"Company: {fields['company']}")
    if fields.get('location'):
        parts.append(f"Location: {fields['location']}")
    if fields.get('date'):
        parts.append(f"Posted: {fields['date']}")
    if not parts:
        return title
    return f"{title}. " + ". ".join(parts)


XML_PAYLOAD_PATTERN = re.compile(r'(<\?xml[\s\S]*?</(?:rss|feed|source|jobs)>|<(rss|feed)\b[\s\S]*?</\2>)', re.IGNORECASE)


def unwrap_xml_payload(content: str) -> str:
    """
    Return the XML document, unwrapping it from an HTML page when a rendering
    strategy displayed the feed instead of returning it raw.
    """
    stripped = content.lstrip('\ufeff \t\r\n')
    head = stripped[:300].lower()
    if not (head.startswith('<!doctype html') or head.startswith('<html')):
        return stripped

    match = XML_PAYLOAD_PATTERN.search(stripped)
    if match:
        return match.group(0)

    # Browsers show raw XML escaped inside <pre>
    text = BeautifulSoup(stripped, 'lxml').get_text()
    match = XML_PAYLOAD_PATTERN.search(text)
    if match:
        return match.group(0)
    return stripped


class FormatParser(ABC):
    """
    Base class for format parsers.

    Each parser handles one source family and must be usable offline
    against a fixture document.
    """

    def __init__(self, family: str, priority: int = 50):
        """
        Args:
            family: Source family handled (e.g. 'rss', 'html-indeed')
            priority: Inference priority when a source declares no family (higher first)
        """
        self.family = family
        self.priority = priority
        self.logger = logging.getLogger(f"{__name__}.{family}")

    @abstractmethod
    def can_handle(self, source: SourceDescriptor) -> bool:
        """Whether this parser should handle a source that declares no family"""

    @abstractmethod
    def parse(self, content: str, source: SourceDescriptor) -> ParseResult:
        """
        Parse a fetched document.

        Raises:
            ParseError: if the document is malformed for this format
        """

    def get_soup(self, html: str) -> BeautifulSoup:
        return BeautifulSoup(html, 'lxml')

    def __repr__(self):
        return f"<{self.__class__.__name__}(family={self.family}, priority={self.priority})>"


class CardListingParser(FormatParser):
    """
    Search-result page parser: locate job cards with ordered candidate
    selectors, read fields per card, fall back to scanning job-detail anchors.

    Subclasses configure the selector lists and identity rules.
    """

    base_url: str = ''
    card_selectors: List[CandidateSelectors] = []
    title_selectors = CandidateSelectors('h2 a', 'h3 a', 'h2', 'h3', 'a')
    company_selectors = CandidateSelectors('[class*="company"]')
    location_selectors = CandidateSelectors('[class*="location"]')
    salary_selectors = CandidateSelectors('[class*="salary"]')
    description_selectors = CandidateSelectors('[class*="description"]', 'p')
    date_selectors = CandidateSelectors('time', '[class*="date"]')
    link_selectors = CandidateSelectors('a[href]')
    anchor_selector: str = 'a[href]'
    max_jobs = 200

    def page_base(self, source: SourceDescriptor) -> str:
        return self.base_url or source.url

    def card_candidates(self, source: SourceDescriptor) -> List[CandidateSelectors]:
        return self.card_selectors

    def field_selectors(self, source: SourceDescriptor) -> Dict[str, CandidateSelectors]:
        return {
            'title': self.title_selectors,
            'company': self.company_selectors,
            'location': self.location_selectors,
            'salary': self.salary_selectors,
            'description': self.description_selectors,
            'date': self.date_selectors,
            'link': self.link_selectors,
        }

    def extract_id(self, card: Tag, url: Optional[str]) -> Optional[str]:
        """Board-specific job id; None lets the normalizer derive one"""
        return None

    def build_description(self, fields: Dict[str, Optional[str]]) -> str:
        return fields.get('description') or compose_description(fields)

    def find_cards(self, soup: BeautifulSoup, source: SourceDescriptor) -> Tuple[Optional[str], List[Tag]]:
        for candidates in self.card_candidates(source):
            selector, cards = candidates.select(soup)
            if cards:
                return selector, cards
        return None, []

    def parse_card(self, card: Tag, source: SourceDescriptor, selectors: Dict[str, CandidateSelectors]) -> Optional[RawJob]:
        base = self.page_base(source)
        fields = {
            name: selectors[name].text(card)
            for name in ('title', 'company', 'location', 'salary', 'description', 'date')
        }
        if not fields['title']:
            return None

        link = selectors['link'].first(card)
        if link is None and card.name == 'a':
            link = card
        url = absolute_url(link.get('href') if link is not None else None, base)

        return RawJob(
            title=fields['title'],
            description=self.build_description(fields),
            location=fields['location'],
            company=fields['company'],
            salary_text=fields['salary'],
            external_id=self.extract_id(card, url),
            url=url,
        )

    def parse_anchor(self, title: str, url: str, anchor: Tag) -> RawJob:
        container = anchor.find_parent(['li', 'article', 'div'])
        description = ''
        if container is not None:
            description = element_text(container.select_one('p, .description, .snippet'))
        fields = {'title': title, 'description': description, 'company': None, 'location': None}
        return RawJob(
            title=title,
            description=self.build_description(fields),
            external_id=self.extract_id(anchor, url),
            url=url,
        )

    def parse(self, content: str, source: SourceDescriptor) -> ParseResult:
        soup = self.get_soup(content)
        selectors = self.field_selectors(source)
        selector, cards = self.find_cards(soup, source)

        jobs: List[RawJob] = []
        if cards:
            self.logger.debug(f"[{self.family}] {len(cards)} cards via {selector}")
            for card in cards[:self.max_jobs]:
                job = self.parse_card(card, source, selectors)
                if job:
                    jobs.append(job)

        if not jobs:
            anchors = scan_job_anchors(soup, self.anchor_selector, self.page_base(source))
            if anchors:
                selector = f"anchors:{self.anchor_selector}"
                jobs = [self.parse_anchor(title, url, a) for title, url, a in anchors[:self.max_jobs]]

        self.logger.info(f"[{self.family}] Parsed {len(jobs)} jobs from {source.url}")
        return ParseResult(jobs, selector=selector, message=None if jobs else 'no job cards found')
