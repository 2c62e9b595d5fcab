"""Durable progress records for bulk uploads."""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, List, Optional

import redis
from sqlalchemy.orm import Session, sessionmaker

from wms.config import get_settings
from wms.database import SessionLocal
from wms.models.upload_job import UploadJob
from wms.schemas.upload import JobStatus, UploadProgress

logger = logging.getLogger(__name__)

Mutator = Callable[[UploadProgress], None]

COUNTER_FIELDS = (
    "total",
    "processed",
    "success_count",
    "error_count",
    "duplicate_count",
    "cross_warehouse_count",
    "in_batch_duplicate_count",
    "skipped_count",
)

_RECORD_FIELDS = COUNTER_FIELDS + (
    "pipeline",
    "status",
    "batch_id",
    "warehouse_id",
    "filename",
    "file_type",
    "file_size",
    "start_time",
    "finished_at",
    "error",
)


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in the upload_jobs table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ProgressStore(ABC):
    """Key-value store of upload progress records, keyed by job id."""

    def __init__(self, retention_seconds: int = 3600):
        self.retention = timedelta(seconds=retention_seconds)

    @abstractmethod
    def create(self, progress: UploadProgress) -> UploadProgress:
        """Persist the initial record; visible to get() once this returns."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[UploadProgress]:
        """Return the record, or None when it does not exist."""

    @abstractmethod
    def update(self, job_id: str, mutator: Mutator) -> Optional[UploadProgress]:
        """Read, mutate and write back a record; None when it no longer exists."""

    @abstractmethod
    def delete(self, job_id: str) -> bool:
        """Remove a record; True when something was removed."""

    @abstractmethod
    def list_active(self, pipeline: Optional[str] = None) -> List[UploadProgress]:
        """Return every record still processing, optionally for one pipeline."""

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Remove terminal records older than the retention window."""
        return 0


class SqlProgressStore(ProgressStore):
    """Progress records kept in the upload_jobs table, one row per job."""

    def __init__(self, session_factory: sessionmaker, retention_seconds: int = 3600):
        super().__init__(retention_seconds)
        self.session_factory = session_factory

    def create(self, progress: UploadProgress) -> UploadProgress:
        with self.session_factory() as db:
            job = UploadJob(id=progress.job_id)
            self._apply(job, progress)
            db.add(job)
            db.commit()
        logger.info(f"💾 Progress record created: job_id={progress.job_id}")
        return progress

    def get(self, job_id: str) -> Optional[UploadProgress]:
        with self.session_factory() as db:
            job = db.get(UploadJob, job_id)
            return self._to_progress(job) if job else None

    def update(self, job_id: str, mutator: Mutator) -> Optional[UploadProgress]:
        with self.session_factory() as db:
            job = self._locked(db, job_id)
            if not job:
                return None
            progress = self._to_progress(job)
            mutator(progress)
            self._apply(job, progress)
            db.commit()
            return progress

    def delete(self, job_id: str) -> bool:
        with self.session_factory() as db:
            deleted = db.query(UploadJob).filter(UploadJob.id == job_id).delete()
            db.commit()
        return deleted > 0

    def list_active(self, pipeline: Optional[str] = None) -> List[UploadProgress]:
        with self.session_factory() as db:
            query = db.query(UploadJob).filter(
                UploadJob.status == JobStatus.PROCESSING.value
            )
            if pipeline:
                query = query.filter(UploadJob.pipeline == pipeline)
            jobs = query.order_by(UploadJob.start_time.desc()).all()
            return [self._to_progress(job) for job in jobs]

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or utcnow()) - self.retention
        with self.session_factory() as db:
            purged = (
                db.query(UploadJob)
                .filter(
                    UploadJob.status != JobStatus.PROCESSING.value,
                    UploadJob.finished_at.isnot(None),
                    UploadJob.finished_at < cutoff,
                )
                .delete(synchronize_session=False)
            )
            db.commit()
        if purged:
            logger.info(f"🧹 Purged {purged} expired progress records")
        return purged

    @staticmethod
    def _locked(db: Session, job_id: str) -> Optional[UploadJob]:
        return (
            db.query(UploadJob)
            .filter(UploadJob.id == job_id)
            .with_for_update()
            .first()
        )

    @staticmethod
    def _apply(job: UploadJob, progress: UploadProgress) -> None:
        for name in _RECORD_FIELDS:
            value = getattr(progress, name)
            if isinstance(value, JobStatus):
                value = value.value
            setattr(job, name, value)

    @staticmethod
    def _to_progress(job: UploadJob) -> UploadProgress:
        data = {name: getattr(job, name) for name in _RECORD_FIELDS}
        return UploadProgress(job_id=job.id, **data)


class RedisProgressStore(ProgressStore):
    """
    Progress records kept as JSON strings in Redis.

    Processing job ids are tracked in a set so they can be listed after a
    page reload or restart. Terminal records expire on their own after the
    retention window.
    """

    KEY_PREFIX = "upload:progress:"
    ACTIVE_SET = "upload:active"

    def __init__(self, client: redis.Redis, retention_seconds: int = 3600):
        super().__init__(retention_seconds)
        self.client = client

    def _key(self, job_id: str) -> str:
        return f"{self.KEY_PREFIX}{job_id}"

    def create(self, progress: UploadProgress) -> UploadProgress:
        self.client.set(self._key(progress.job_id), progress.model_dump_json())
        if progress.status is JobStatus.PROCESSING:
            self.client.sadd(self.ACTIVE_SET, progress.job_id)
        logger.info(f"💾 Progress record created in Redis: job_id={progress.job_id}")
        return progress

    def get(self, job_id: str) -> Optional[UploadProgress]:
        raw = self.client.get(self._key(job_id))
        return UploadProgress.model_validate_json(raw) if raw else None

    def update(self, job_id: str, mutator: Mutator) -> Optional[UploadProgress]:
        progress = self.get(job_id)
        if progress is None:
            return None
        mutator(progress)

        # xx: never resurrect a record deleted by a cancel in the meantime
        written = self.client.set(
            self._key(job_id), progress.model_dump_json(), xx=True
        )
        if not written:
            return None
        if progress.status.is_terminal:
            self.client.expire(self._key(job_id), int(self.retention.total_seconds()))
            self.client.srem(self.ACTIVE_SET, job_id)
        return progress

    def delete(self, job_id: str) -> bool:
        self.client.srem(self.ACTIVE_SET, job_id)
        return bool(self.client.delete(self._key(job_id)))

    def list_active(self, pipeline: Optional[str] = None) -> List[UploadProgress]:
        active = []
        for job_id in sorted(self.client.smembers(self.ACTIVE_SET)):
            progress = self.get(job_id)
            if progress is None or progress.status is not JobStatus.PROCESSING:
                self.client.srem(self.ACTIVE_SET, job_id)
                continue
            if pipeline and progress.pipeline != pipeline:
                continue
            active.append(progress)
        return sorted(active, key=lambda p: p.start_time, reverse=True)


class ProgressPublisher:
    """Publishes progress snapshots to Redis pub/sub for SSE streaming."""

    def __init__(self, redis_url: str, enabled: bool = True):
        self.redis_url = redis_url
        self.enabled = enabled
        self._client = None

    @staticmethod
    def channel(job_id: str) -> str:
        return f"upload:{job_id}"

    def publish(self, progress: UploadProgress) -> None:
        """Publish a snapshot; Redis being unavailable never fails the import."""
        if not self.enabled:
            return
        try:
            if self._client is None:
                self._client = redis.Redis.from_url(self.redis_url, decode_responses=True)
            self._client.publish(self.channel(progress.job_id), progress.model_dump_json())
        except redis.RedisError as e:
            logger.warning(f"⚠️ Failed to publish progress for job {progress.job_id}: {e}")


@lru_cache
def get_progress_store() -> ProgressStore:
    """Progress store selected by PROGRESS_BACKEND."""
    settings = get_settings()
    if settings.progress_backend == "redis":
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisProgressStore(client, settings.job_retention_seconds)

    return SqlProgressStore(SessionLocal, settings.job_retention_seconds)


@lru_cache
def get_progress_publisher() -> ProgressPublisher:
    """Publisher configured from settings."""
    settings = get_settings()
    return ProgressPublisher(settings.redis_url, enabled=settings.publish_progress)
