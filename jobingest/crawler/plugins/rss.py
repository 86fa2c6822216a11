"""
Generic RSS/Atom feed parser.

Job feeds disagree on where fields live (plain RSS tags, job:, dc:, geo:
namespaces, content:encoded). feedparser flattens namespaced elements into
keys such as 'job_location', so each field probes an ordered list of keys.
"""
import calendar
import logging
from datetime import datetime, timezone
from typing import List, Optional

import feedparser
from dateutil import parser as date_parser

from jobingest.core.errors import ParseError
from jobingest.core.normalize import clean_text
from jobingest.core.urls import is_feed_url
from jobingest.models import FAMILY_RSS, RawJob, SourceDescriptor, SourceKind
from .base import FormatParser, ParseResult, unwrap_xml_payload

logger = logging.getLogger(__name__)

# feedparser key names; 'description' is exposed as 'summary', 'guid' as 'id',
# dc:creator as 'author', content:encoded as 'content'
FIELD_CANDIDATES = {
    'title': ('title', 'job_title', 'dc_title'),
    'description': ('summary', 'job_description', 'content', 'dc_description'),
    'link': ('link', 'job_link', 'job_url'),
    'location': ('location', 'job_location', 'geo_location', 'city', 'job_city'),
    'company': ('company', 'job_company', 'employer', 'source', 'author', 'dc_creator'),
    'salary': ('salary', 'job_salary', 'compensation', 'job_compensation'),
    'job_type': ('jobtype', 'job_type', 'job_jobtype', 'employmenttype', 'job_employmenttype'),
    'date': ('published', 'updated', 'dc_date', 'job_date', 'date'),
}


def entry_value(entry, keys) -> Optional[str]:
    """First non-empty value among candidate keys of a feed entry"""
    for key in keys:
        value = entry.get(key)
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, dict):
            value = value.get('value') or value.get('title') or value.get('name')
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def entry_date(entry) -> Optional[datetime]:
    for key in ('published_parsed', 'updated_parsed'):
        parsed = entry.get(key)
        if parsed:
            return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
    raw = entry_value(entry, FIELD_CANDIDATES['date'])
    if not raw:
        return None
    try:
        return date_parser.parse(raw)
    except (ValueError, OverflowError):
        logger.debug(f"[rss] Unparseable date {raw!r}")
        return None


class RSSParser(FormatParser):
    """RSS 2.0 / Atom job feeds"""

    def __init__(self):
        super().__init__(family=FAMILY_RSS, priority=50)

    def can_handle(self, source: SourceDescriptor) -> bool:
        return source.kind == SourceKind.XML_FEED or is_feed_url(source.url)

    def parse(self, content: str, source: SourceDescriptor) -> ParseResult:
        document = unwrap_xml_payload(content)
        feed = feedparser.parse(document)

        if not feed.entries:
            if feed.bozo and not feed.get('version'):
                raise ParseError(f"Malformed feed from {source.url}: {feed.get('bozo_exception')}")
            self.logger.warning(f"[rss] No entries found in feed: {source.url}")
            return ParseResult([], message='feed has no entries')

        jobs: List[RawJob] = []
        for entry in feed.entries:
            job = self._parse_entry(entry)
            if job is not None:
                jobs.append(job)

        self.logger.info(f"[rss] Parsed {len(jobs)} jobs from {source.url}")
        return ParseResult(jobs, selector=feed.get('version') or 'rss')

    def _parse_entry(self, entry) -> Optional[RawJob]:
        title = clean_text(entry_value(entry, FIELD_CANDIDATES['title']))
        link = entry_value(entry, FIELD_CANDIDATES['link'])
        guid = entry.get('id')

        external_id = None
        if guid and str(guid).strip():
            guid = str(guid).strip()
            if guid.startswith(('http://', 'https://')):
                link = link or guid
            else:
                external_id = guid

        # Keep entries without a title so the runner can count them as failures
        return RawJob(
            title=title,
            description=clean_text(entry_value(entry, FIELD_CANDIDATES['description'])),
            location=clean_text(entry_value(entry, FIELD_CANDIDATES['location'])) or None,
            company=clean_text(entry_value(entry, FIELD_CANDIDATES['company'])) or None,
            salary_text=clean_text(entry_value(entry, FIELD_CANDIDATES['salary'])) or None,
            job_type_text=entry_value(entry, FIELD_CANDIDATES['job_type']),
            external_id=external_id,
            url=link,
            published_at=entry_date(entry),
        )
