"""
Deduplicating upsert of normalized job records.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from jobingest.core.errors import SaveError
from jobingest.models import JobRecord, JobStatus
from jobingest.storage.base import JobStore

logger = logging.getLogger(__name__)


@dataclass
class UpsertStats:
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def saved(self) -> int:
        return self.created + self.updated


class JobUpserter:
    """Insert new jobs, overwrite jobs seen before"""

    def __init__(self, store: JobStore):
        self.store = store

    @staticmethod
    def collapse_duplicates(records: List[JobRecord]) -> Tuple[List[JobRecord], int]:
        """Keep the last record per dedup key. Returns (unique records, number dropped)."""
        unique: Dict[tuple, JobRecord] = {}
        for record in records:
            unique[record.dedup_key] = record
        return list(unique.values()), len(records) - len(unique)

    async def upsert_one(self, record: JobRecord) -> bool:
        """
        Upsert a single record.

        Returns:
            True if it was created, False if an existing job was updated
        """
        title_key = record.title if record.external_id_origin == 'hash' else None
        existing = await self.store.find_job_by_dedup_key(
            record.source_id,
            external_id=record.external_id,
            title=title_key,
        )

        if existing is not None:
            # Keep the stored identity, refresh everything else
            record = record.model_copy(update={
                'id': existing.id,
                'external_id': existing.external_id,
                'status': JobStatus.ACTIVE,
                'published_at': record.published_at or existing.published_at,
            })
        else:
            record = record.model_copy(update={'status': JobStatus.ACTIVE})

        await self.store.upsert_job(record)
        return existing is None

    async def upsert_batch(self, records: List[JobRecord]) -> UpsertStats:
        stats = UpsertStats()
        records, stats.skipped = self.collapse_duplicates(records)
        if stats.skipped:
            logger.info(f"[upsert] Collapsed {stats.skipped} duplicate record(s) within the pass")

        for record in records:
            try:
                created = await self.upsert_one(record)
            except SaveError as e:
                stats.failed += 1
                stats.errors.append(e.message)
                logger.error(f"[upsert] {e.message}")
                continue
            except Exception as e:
                stats.failed += 1
                stats.errors.append(f"{record.external_id}: {e}")
                logger.error(f"[upsert] Error saving job {record.external_id} for source {record.source_id}: {e}")
                continue

            if created:
                stats.created += 1
            else:
                stats.updated += 1

        logger.info(
            f"[upsert] {stats.created} created, {stats.updated} updated, "
            f"{stats.failed} failed, {stats.skipped} skipped"
        )
        return stats
