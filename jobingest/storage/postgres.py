"""
Postgres-backed store (psycopg2).

Blocking database calls run in a worker thread so the event loop keeps
serving other passes.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from jobingest.core.errors import SaveError
from jobingest.models import BookkeepingUpdate, JobRecord, Salary, SourceDescriptor
from .base import JobStore

logger = logging.getLogger(__name__)

SOURCE_COLUMNS = """
    id, name, url, kind, family, is_active, scrape_interval_minutes,
    scraping_config, last_scraped_at, last_success_at, last_error,
    consecutive_failures
"""

JOB_COLUMNS = """
    id, source_id, external_id, external_url, external_id_origin, scraped_at,
    title, description, location, company, salary_min, salary_max,
    salary_currency, job_type, status, published_at
"""


def _source_from_row(row: Dict[str, Any]) -> SourceDescriptor:
    data = dict(row)
    data['id'] = str(data['id'])
    return SourceDescriptor.model_validate(data)


def _job_from_row(row: Dict[str, Any]) -> JobRecord:
    data = dict(row)
    data['id'] = str(data['id'])
    data['source_id'] = str(data['source_id'])
    salary_min = data.pop('salary_min', None)
    salary_max = data.pop('salary_max', None)
    currency = data.pop('salary_currency', None)
    if salary_min is not None and salary_max is not None:
        data['salary'] = Salary(min=float(salary_min), max=float(salary_max), currency=currency or 'EUR')
    return JobRecord.model_validate(data)


def _job_params(record: JobRecord) -> Dict[str, Any]:
    salary = record.salary
    return {
        'source_id': record.source_id,
        'external_id': record.external_id,
        'external_url': record.external_url,
        'external_id_origin': record.external_id_origin,
        'scraped_at': record.scraped_at,
        'title': record.title,
        'description': record.description,
        'location': record.location,
        'company': record.company,
        'salary_min': salary.min if salary else None,
        'salary_max': salary.max if salary else None,
        'salary_currency': salary.currency if salary else None,
        'job_type': record.job_type.value,
        'status': record.status.value,
        'published_at': record.published_at,
    }


class PostgresStore(JobStore):
    def __init__(self, db_url: str, connect_retries: int = 3, connect_timeout: int = 10):
        self.db_url = db_url
        self.connect_retries = connect_retries
        self.connect_timeout = connect_timeout

    def _get_db_conn(self):
        """Get database connection with retry logic"""
        last_error = None
        for attempt in range(self.connect_retries):
            try:
                return psycopg2.connect(dsn=self.db_url, connect_timeout=self.connect_timeout)
            except psycopg2.OperationalError as e:
                last_error = e
                if attempt < self.connect_retries - 1:
                    wait_time = 2 ** attempt
                    logger.warning(f"[postgres] Connection attempt {attempt + 1} failed, retrying in {wait_time}s: {e}")
                    time.sleep(wait_time)
        logger.error(f"[postgres] Database connection failed after {self.connect_retries} attempt(s): {last_error}")
        raise last_error

    def _fetchall(self, sql: str, params=None) -> List[Dict[str, Any]]:
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return cur.fetchall()
        finally:
            conn.close()

    def _fetchone(self, sql: str, params=None) -> Optional[Dict[str, Any]]:
        rows = self._fetchall(sql, params)
        return rows[0] if rows else None

    # Sources

    async def list_sources(self) -> List[SourceDescriptor]:
        rows = await asyncio.to_thread(self._fetchall, f"SELECT {SOURCE_COLUMNS} FROM sources ORDER BY name")
        return [_source_from_row(r) for r in rows]

    async def list_active_sources(self) -> List[SourceDescriptor]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {SOURCE_COLUMNS} FROM sources WHERE is_active = TRUE ORDER BY name",
        )
        return [_source_from_row(r) for r in rows]

    async def get_source(self, source_id: str) -> Optional[SourceDescriptor]:
        row = await asyncio.to_thread(
            self._fetchone, f"SELECT {SOURCE_COLUMNS} FROM sources WHERE id = %s", (source_id,)
        )
        return _source_from_row(row) if row else None

    def _update_bookkeeping(self, source_id: str, update: BookkeepingUpdate):
        assignments = ["last_scraped_at = %s"]
        params: List[Any] = [update.last_scraped_at]
        if update.last_success_at is not None:
            assignments.append("last_success_at = %s")
            params.append(update.last_success_at)
        if update.last_error is not None:
            assignments.append("last_error = %s")
            params.append(update.last_error[:1000])
        elif update.clear_error:
            assignments.append("last_error = NULL")
        if update.consecutive_failures is not None:
            assignments.append("consecutive_failures = %s")
            params.append(update.consecutive_failures)
        if update.is_active is not None:
            assignments.append("is_active = %s")
            params.append(update.is_active)
        params.append(source_id)

        conn = self._get_db_conn()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE sources SET {', '.join(assignments)}, updated_at = NOW() WHERE id = %s",
                    params,
                )
            conn.commit()
        finally:
            conn.close()

    async def update_source_bookkeeping(self, source_id: str, update: BookkeepingUpdate) -> None:
        await asyncio.to_thread(self._update_bookkeeping, source_id, update)

    # Jobs

    async def find_job_by_dedup_key(
        self,
        source_id: str,
        external_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Optional[JobRecord]:
        row = None
        if external_id:
            row = await asyncio.to_thread(
                self._fetchone,
                f"SELECT {JOB_COLUMNS} FROM jobs WHERE source_id = %s AND external_id = %s",
                (source_id, external_id),
            )
        if row is None and title:
            row = await asyncio.to_thread(
                self._fetchone,
                f"""SELECT {JOB_COLUMNS} FROM jobs
                    WHERE source_id = %s AND LOWER(TRIM(title)) = LOWER(TRIM(%s))
                    ORDER BY scraped_at DESC LIMIT 1""",
                (source_id, title),
            )
        return _job_from_row(row) if row else None

    def _upsert(self, record: JobRecord) -> JobRecord:
        params = _job_params(record)
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                if record.id:
                    params['id'] = record.id
                    cur.execute("""
                        UPDATE jobs SET
                            external_id = %(external_id)s,
                            external_url = %(external_url)s,
                            external_id_origin = %(external_id_origin)s,
                            scraped_at = %(scraped_at)s,
                            title = %(title)s,
                            description = %(description)s,
                            location = %(location)s,
                            company = %(company)s,
                            salary_min = %(salary_min)s,
                            salary_max = %(salary_max)s,
                            salary_currency = %(salary_currency)s,
                            job_type = %(job_type)s,
                            status = %(status)s,
                            published_at = COALESCE(%(published_at)s, published_at),
                            updated_at = NOW()
                        WHERE id = %(id)s
                        RETURNING id
                    """, params)
                else:
                    cur.execute("""
                        INSERT INTO jobs (
                            source_id, external_id, external_url, external_id_origin, scraped_at,
                            title, description, location, company, salary_min, salary_max,
                            salary_currency, job_type, status, published_at
                        ) VALUES (
                            %(source_id)s, %(external_id)s, %(external_url)s, %(external_id_origin)s,
                            %(scraped_at)s, %(title)s, %(description)s, %(location)s, %(company)s,
                            %(salary_min)s, %(salary_max)s, %(salary_currency)s, %(job_type)s,
                            %(status)s, %(published_at)s
                        )
                        ON CONFLICT (source_id, external_id) DO UPDATE SET
                            external_url = EXCLUDED.external_url,
                            scraped_at = EXCLUDED.scraped_at,
                            title = EXCLUDED.title,
                            description = EXCLUDED.description,
                            location = EXCLUDED.location,
                            company = EXCLUDED.company,
                            salary_min = EXCLUDED.salary_min,
                            salary_max = EXCLUDED.salary_max,
                            salary_currency = EXCLUDED.salary_currency,
                            job_type = EXCLUDED.job_type,
                            status = 'active',
                            published_at = COALESCE(EXCLUDED.published_at, jobs.published_at),
                            updated_at = NOW()
                        RETURNING id
                    """, params)
                row = cur.fetchone()
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            raise SaveError(f"Failed to save job '{record.title[:60]}': {e}") from e
        finally:
            conn.close()

        if row is None:
            raise SaveError(f"Job {record.id} no longer exists")
        return record.model_copy(update={'id': str(row['id'])})

    async def upsert_job(self, record: JobRecord) -> JobRecord:
        return await asyncio.to_thread(self._upsert, record)
