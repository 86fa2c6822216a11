"""
Record store interface consumed by the pipeline.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from jobingest.models import BookkeepingUpdate, JobRecord, SourceDescriptor


class JobStore(ABC):
    """Source descriptors and job records"""

    @abstractmethod
    async def list_sources(self) -> List[SourceDescriptor]:
        ...

    async def list_active_sources(self) -> List[SourceDescriptor]:
        return [s for s in await self.list_sources() if s.is_active]

    @abstractmethod
    async def get_source(self, source_id: str) -> Optional[SourceDescriptor]:
        ...

    @abstractmethod
    async def update_source_bookkeeping(self, source_id: str, update: BookkeepingUpdate) -> None:
        ...

    @abstractmethod
    async def find_job_by_dedup_key(
        self,
        source_id: str,
        external_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Optional[JobRecord]:
        """Existing job by (source_id, external_id), else by (source_id, title) when a title is given"""

    @abstractmethod
    async def upsert_job(self, record: JobRecord) -> JobRecord:
        """
        Insert, or update when record.id is set or the dedup key exists.

        Raises:
            SaveError: if the record is rejected
        """
