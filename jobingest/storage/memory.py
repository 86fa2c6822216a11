"""
In-process store, used by tests and offline CLI runs.
"""
import asyncio
import uuid
from typing import Dict, List, Optional, Tuple

from jobingest.core.errors import SaveError
from jobingest.models import BookkeepingUpdate, JobRecord, SourceDescriptor
from .base import JobStore


class InMemoryStore(JobStore):
    def __init__(self, sources: Optional[List[SourceDescriptor]] = None):
        self._sources: Dict[str, SourceDescriptor] = {}
        self._jobs: Dict[str, JobRecord] = {}
        self._by_key: Dict[Tuple[str, str], str] = {}
        self._lock = asyncio.Lock()
        self.bookkeeping_log: List[Tuple[str, BookkeepingUpdate]] = []
        for source in sources or []:
            self.add_source(source)

    # Operator-side helpers

    def add_source(self, source: SourceDescriptor) -> SourceDescriptor:
        self._sources[source.id] = source.model_copy(deep=True)
        return self._sources[source.id]

    def configure_source(self, source_id: str, **changes) -> SourceDescriptor:
        updated = self._sources[source_id].model_copy(update=changes)
        self._sources[source_id] = updated
        return updated

    def remove_source(self, source_id: str):
        self._sources.pop(source_id, None)

    def jobs(self, source_id: Optional[str] = None) -> List[JobRecord]:
        return [j for j in self._jobs.values() if source_id is None or j.source_id == source_id]

    # JobStore

    async def list_sources(self) -> List[SourceDescriptor]:
        return [s.model_copy(deep=True) for s in self._sources.values()]

    async def get_source(self, source_id: str) -> Optional[SourceDescriptor]:
        source = self._sources.get(source_id)
        return source.model_copy(deep=True) if source else None

    async def update_source_bookkeeping(self, source_id: str, update: BookkeepingUpdate) -> None:
        source = self._sources.get(source_id)
        if source is None:
            return
        changes = {'last_scraped_at': update.last_scraped_at}
        if update.last_success_at is not None:
            changes['last_success_at'] = update.last_success_at
        if update.last_error is not None:
            changes['last_error'] = update.last_error
        elif update.clear_error:
            changes['last_error'] = None
        if update.consecutive_failures is not None:
            changes['consecutive_failures'] = update.consecutive_failures
        if update.is_active is not None:
            changes['is_active'] = update.is_active
        self._sources[source_id] = source.model_copy(update=changes)
        self.bookkeeping_log.append((source_id, update))

    async def find_job_by_dedup_key(
        self,
        source_id: str,
        external_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Optional[JobRecord]:
        if external_id:
            job_id = self._by_key.get((source_id, external_id))
            if job_id:
                return self._jobs[job_id].model_copy()
        if title:
            wanted = title.strip().lower()
            for job in self._jobs.values():
                if job.source_id == source_id and job.title.strip().lower() == wanted:
                    return job.model_copy()
        return None

    async def upsert_job(self, record: JobRecord) -> JobRecord:
        if not record.title or not record.external_id:
            raise SaveError(f"Job record missing title or external id ({record.source_id})")

        async with self._lock:
            job_id = record.id or self._by_key.get((record.source_id, record.external_id))
            if job_id and job_id in self._jobs:
                previous = self._jobs[job_id]
                self._by_key.pop((previous.source_id, previous.external_id), None)
            else:
                job_id = str(uuid.uuid4())
            stored = record.model_copy(update={'id': job_id})
            self._jobs[job_id] = stored
            self._by_key[(stored.source_id, stored.external_id)] = job_id
            return stored.model_copy()

    def __repr__(self):
        return f"InMemoryStore(sources={len(self._sources)}, jobs={len(self._jobs)})"
