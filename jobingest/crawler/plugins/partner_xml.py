"""
Partner XML feed parser (staffing agencies exporting <source><job>...</job></source>).

The reference number is used directly as the external id. Descriptions are
scrubbed of branding and links syndicated from other boards.
"""
import logging
from typing import List, Optional

from bs4 import BeautifulSoup, Tag
from dateutil import parser as date_parser

from jobingest.core.errors import ParseError
from jobingest.core.normalize import clean_partner_description, clean_text
from jobingest.models import FAMILY_PARTNER_XML, RawJob, SourceDescriptor, SourceKind
from .base import FormatParser, ParseResult, unwrap_xml_payload

logger = logging.getLogger(__name__)

KNOWN_ROOTS = ('source', 'jobs', 'rss', 'job', 'feed', 'channel')

FIELDS = {
    'title': ('title', 'jobtitle', 'name'),
    'description': ('description', 'desc', 'summary', 'details'),
    'reference': ('referencenumber', 'id', 'guid'),
    'url': ('url', 'link', 'joburl'),
    'company': ('company', 'employer', 'employername'),
    'date': ('date', 'pubdate', 'publisheddate'),
    'location': ('location', 'locality', 'address'),
    'salary': ('salary', 'salaryrange', 'compensation'),
    'job_type': ('jobtype', 'type', 'employmenttype'),
}
LOCATION_PARTS = ('city', 'state', 'country')


def child_text(node: Tag, names) -> Optional[str]:
    """Text of the first direct child (then any descendant) named in names"""
    for recursive in (False, True):
        for name in names:
            child = node.find(name, recursive=recursive)
            if child is not None:
                text = child.get_text().strip()
                if text:
                    return text
    return None


class PartnerXMLParser(FormatParser):
    """Source-specific partner XML schema"""

    def __init__(self):
        super().__init__(family=FAMILY_PARTNER_XML, priority=60)

    def can_handle(self, source: SourceDescriptor) -> bool:
        url = source.url.lower()
        return (
            source.kind == SourceKind.XML_FEED
            and (url.endswith('.xml') or 'xml' in url)
            and '/rss' not in url
        )

    def find_job_nodes(self, soup: BeautifulSoup) -> List[Tag]:
        jobs = soup.find_all('job')
        if jobs:
            return jobs
        channel = soup.find('channel')
        if channel is not None:
            return channel.find_all('item')
        return []

    def parse(self, content: str, source: SourceDescriptor) -> ParseResult:
        document = unwrap_xml_payload(content)
        soup = BeautifulSoup(document, 'xml')
        root = next((child for child in soup.children if isinstance(child, Tag)), None)
        if root is None:
            raise ParseError(f"Empty or malformed partner XML from {source.url}")

        nodes = self.find_job_nodes(soup)
        if not nodes and root.name.lower() not in KNOWN_ROOTS:
            raise ParseError(f"Unrecognized partner XML structure <{root.name}> from {source.url}")

        jobs = [self._parse_job(node) for node in nodes]
        self.logger.info(f"[partner_xml] Parsed {len(jobs)} jobs from {source.url} (root <{root.name}>)")
        return ParseResult(jobs, selector=root.name)

    def _location(self, node: Tag) -> Optional[str]:
        parts = []
        for name in LOCATION_PARTS:
            value = child_text(node, (name,))
            if value:
                parts.append(clean_text(value))
        if parts:
            return ', '.join(parts)
        return clean_text(child_text(node, FIELDS['location'])) or None

    def _parse_job(self, node: Tag) -> RawJob:
        published_at = None
        raw_date = child_text(node, FIELDS['date'])
        if raw_date:
            try:
                published_at = date_parser.parse(raw_date)
            except (ValueError, OverflowError):
                logger.debug(f"[partner_xml] Unparseable date {raw_date!r}")

        description = clean_partner_description(child_text(node, FIELDS['description']))
        return RawJob(
            title=clean_text(child_text(node, FIELDS['title'])),
            description=clean_text(description),
            location=self._location(node),
            company=clean_text(child_text(node, FIELDS['company'])) or None,
            salary_text=clean_text(child_text(node, FIELDS['salary'])) or None,
            job_type_text=child_text(node, FIELDS['job_type']),
            external_id=child_text(node, FIELDS['reference']),
            url=child_text(node, FIELDS['url']),
            published_at=published_at,
        )
