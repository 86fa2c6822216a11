"""
Normalization of raw jobs into job records.

Pure functions:
- Salary parsing (currency + min/max from free text)
- Employment type classification by keyword
- Text cleaning (HTML stripping, entities, whitespace) and partner branding removal
- Deterministic external id derivation
- Description synthesis for listings that ship without one
"""
import re
import html
import hashlib
from datetime import datetime, timezone
from typing import Optional, Tuple
from urllib.parse import urlparse, parse_qs

from bs4 import BeautifulSoup

from jobingest.core.errors import NormalizationError
from jobingest.models import (
    EmploymentType,
    JobRecord,
    JobStatus,
    RawJob,
    Salary,
    SourceDescriptor,
)

CURRENCY_SYMBOLS = {
    '€': 'EUR',
    '$': 'USD',
    '£': 'GBP',
}
CURRENCY_PATTERN = re.compile(r'(€|\$|£|\b(?:EUR|USD|GBP)\b)', re.IGNORECASE)
AMOUNT_PATTERN = re.compile(r'(\d[\d.,]*)(\s*[kK]\b)?')

PART_TIME_PATTERN = re.compile(r'\bpart[\s\-]?time\b', re.IGNORECASE)
CONTRACT_PATTERN = re.compile(r'\b(contract|contractor|freelance|freelancer|temporary|fixed[\s\-]term)\b', re.IGNORECASE)
INTERNSHIP_PATTERN = re.compile(r'\b(intern|interns|internship|internships|stage|stagista|tirocinio)\b', re.IGNORECASE)

WHITESPACE_PATTERN = re.compile(r'\s+')

# Branding left behind by partners that syndicate from other boards
BRANDING_PATTERNS = [
    re.compile(r'apply\s+(?:on|via)\s+indeed', re.IGNORECASE),
    re.compile(r'candidati\s+su\s+indeed', re.IGNORECASE),
    re.compile(r'indeed\.com', re.IGNORECASE),
    re.compile(r'apply\s+on\s+linkedin', re.IGNORECASE),
    re.compile(r'candidati\s+su\s+linkedin', re.IGNORECASE),
    re.compile(r'linkedin\.com', re.IGNORECASE),
    re.compile(r'apply\s+now\s+on\s+[a-z]+', re.IGNORECASE),
    re.compile(r'apply\s+on\s+[a-z]+', re.IGNORECASE),
    re.compile(r'candidati\s+su\s+[a-z]+', re.IGNORECASE),
    re.compile(r'applica\s+ora\s+su\s+[a-z]+', re.IGNORECASE),
    re.compile(r'clicca\s+qui\s+per\s+candidarti', re.IGNORECASE),
    re.compile(r'click\s+here\s+to\s+apply', re.IGNORECASE),
]
ANCHOR_PATTERN = re.compile(r'<a\b[^>]*>(.*?)</a>', re.IGNORECASE | re.DOTALL)
URL_PATTERN = re.compile(r'https?://\S+', re.IGNORECASE)
EMAIL_PATTERN = re.compile(r'[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}')
TRAILER_PATTERNS = [
    re.compile(r'for\s+more\s+information[^.]*\.?', re.IGNORECASE),
    re.compile(r'per\s+maggiori\s+informazioni[^.]*\.?', re.IGNORECASE),
    re.compile(r'\bvisita\s+[^.]*\.', re.IGNORECASE),
]

# Query parameters that carry a job id on common boards
ID_QUERY_PARAMS = ('jk', 'id', 'jobId', 'jobid', 'currentJobId')
GENERIC_PATH_SEGMENTS = {'jobs', 'job', 'search', 'viewjob', 'rss', 'feed', 'careers', 'index.html', 'index.php'}


def _parse_amount(token: str, thousands: bool) -> Optional[float]:
    """Turn '35,000', '35.000', '1.500,00' or '42.5' into a number"""
    token = token.rstrip('.,')
    if not token:
        return None
    last_comma = token.rfind(',')
    if last_comma > token.rfind('.') and 1 <= len(token) - last_comma - 1 <= 2:
        # 1.500,00 uses a decimal comma with dots grouping thousands
        token = token.replace('.', '').replace(',', '.')
    else:
        token = token.replace(',', '')
    if token.count('.') > 1:
        token = token.replace('.', '')
    elif '.' in token and len(token.rsplit('.', 1)[1]) == 3:
        # 35.000 is a European thousand separator, not a decimal
        token = token.replace('.', '')
    try:
        value = float(token)
    except ValueError:
        return None
    return value * 1000 if thousands else value


def parse_salary(text: Optional[str], default_currency: str = 'EUR') -> Optional[Salary]:
    """
    Parse a salary range from free text.

    "€35,000 - €40,000" -> Salary(min=35000, max=40000, currency='EUR')
    "$30"               -> Salary(min=30, max=30, currency='USD')
    "Competitive"       -> None
    """
    if not text or not re.search(r'\d', text):
        return None

    currency = default_currency.upper()
    match = CURRENCY_PATTERN.search(text)
    if match:
        token = match.group(1)
        currency = CURRENCY_SYMBOLS.get(token, token.upper())

    amounts = []
    for number, k_suffix in AMOUNT_PATTERN.findall(text):
        value = _parse_amount(number, bool(k_suffix))
        if value is not None:
            amounts.append(value)

    if not amounts:
        return None
    return Salary(min=min(amounts), max=max(amounts), currency=currency)


def classify_employment_type(
    title: Optional[str],
    description: Optional[str] = None,
    hint: Optional[str] = None,
) -> EmploymentType:
    """
    Classify employment type by keyword.

    An explicit job-type field (hint) wins over title and description; within
    a text the order is part-time, contract, internship, else full-time.
    """
    if hint:
        lowered = hint.lower()
        if 'full' in lowered or 'permanent' in lowered:
            return EmploymentType.FULL_TIME
        if 'part' in lowered:
            return EmploymentType.PART_TIME
        if CONTRACT_PATTERN.search(hint):
            return EmploymentType.CONTRACT
        if 'intern' in lowered or INTERNSHIP_PATTERN.search(hint):
            return EmploymentType.INTERNSHIP

    text = f"{title or ''} {description or ''}"
    if PART_TIME_PATTERN.search(text):
        return EmploymentType.PART_TIME
    if CONTRACT_PATTERN.search(text):
        return EmploymentType.CONTRACT
    if INTERNSHIP_PATTERN.search(text):
        return EmploymentType.INTERNSHIP
    return EmploymentType.FULL_TIME


def collapse_whitespace(text: str) -> str:
    return WHITESPACE_PATTERN.sub(' ', text).strip()


def clean_text(value: Optional[str]) -> str:
    """Strip HTML tags, decode entities and collapse whitespace"""
    if not value:
        return ''
    text = str(value)
    if '<' in text and '>' in text:
        text = BeautifulSoup(text, 'lxml').get_text(' ')
    # Entities can be double-encoded in feeds (&amp;amp;)
    for _ in range(2):
        decoded = html.unescape(text)
        if decoded == text:
            break
        text = decoded
    return collapse_whitespace(text.replace('\xa0', ' '))


def clean_partner_description(value: Optional[str]) -> str:
    """
    Remove external branding, embedded links, URLs and emails from a partner
    feed description.
    """
    if not value:
        return ''
    cleaned = str(value)
    for pattern in BRANDING_PATTERNS:
        cleaned = pattern.sub('', cleaned)
    cleaned = ANCHOR_PATTERN.sub(r'\1', cleaned)
    cleaned = URL_PATTERN.sub('', cleaned)
    cleaned = EMAIL_PATTERN.sub('', cleaned)
    for pattern in TRAILER_PATTERNS:
        cleaned = pattern.sub('', cleaned)
    return collapse_whitespace(cleaned)


def id_from_url(url: Optional[str]) -> Optional[str]:
    """Job id embedded in a detail URL: a known query parameter, else the last path segment"""
    if not url:
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None

    query = parse_qs(parsed.query)
    for param in ID_QUERY_PARAMS:
        values = query.get(param)
        if values and values[0].strip():
            return values[0].strip()

    segments = [s for s in parsed.path.split('/') if s]
    if segments and segments[-1].lower() not in GENERIC_PATH_SEGMENTS:
        return segments[-1]
    return None


def hash_id(source_id: str, title: str) -> str:
    digest = hashlib.sha256(f"{source_id}|{collapse_whitespace(title).lower()}".encode('utf-8'))
    return f"gen-{digest.hexdigest()[:20]}"


def derive_external_id(
    source_id: str,
    title: str,
    url: Optional[str] = None,
    supplied_id: Optional[str] = None,
) -> Tuple[str, str]:
    """
    Derive a stable external id and report where it came from.

    Returns (external_id, origin) where origin is 'source', 'url' or 'hash'.
    """
    if supplied_id and str(supplied_id).strip():
        return str(supplied_id).strip(), 'source'
    from_url = id_from_url(url)
    if from_url:
        return from_url, 'url'
    return hash_id(source_id, title), 'hash'


def synthesize_description(
    title: str,
    company: Optional[str] = None,
    location: Optional[str] = None,
    salary_text: Optional[str] = None,
    url: Optional[str] = None,
) -> str:
    parts = [f"We are looking for a {title}" + (f" at {company}." if company else ".")]
    if location:
        parts.append(f"Location: {location}.")
    if salary_text:
        parts.append(f"Salary: {salary_text}.")
    if url:
        parts.append(f"For more details, visit: {url}")
    parts.append("Please visit the original listing for the full job description and requirements.")
    return ' '.join(parts)


def normalize_job(
    raw: RawJob,
    source: SourceDescriptor,
    default_currency: str = 'EUR',
    scraped_at: Optional[datetime] = None,
) -> JobRecord:
    """
    Normalize a raw job into a job record.

    Raises:
        NormalizationError: if the job has no usable title
    """
    title = clean_text(raw.title)
    if not title:
        raise NormalizationError(f"Job without title from source {source.id}")

    location = clean_text(raw.location) or None
    company = clean_text(raw.company) or None
    salary_text = clean_text(raw.salary_text) or None

    # A link pointing back at the listing page identifies nothing
    detail_url = raw.url.strip() if raw.url and raw.url.strip() else None
    id_url = detail_url if detail_url and detail_url.rstrip('/') != source.url.rstrip('/') else None
    external_id, origin = derive_external_id(source.id, title, id_url, raw.external_id)

    description = clean_text(raw.description)
    if not description:
        description = synthesize_description(title, company, location, salary_text, detail_url)

    return JobRecord(
        source_id=source.id,
        external_id=external_id,
        external_id_origin=origin,
        external_url=detail_url or source.url,
        scraped_at=scraped_at or datetime.now(timezone.utc),
        title=title,
        description=description,
        location=location,
        company=company,
        salary=parse_salary(salary_text, default_currency),
        job_type=classify_employment_type(title, description, raw.job_type_text),
        status=JobStatus.ACTIVE,
        published_at=raw.published_at,
    )
