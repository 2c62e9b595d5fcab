"""Streaming ingestion of one uploaded file into a goods-tracking table."""
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from wms.config import Settings, get_settings
from wms.exceptions import ChunkWriteError, InvalidPartitionError
from wms.models.warehouse import Warehouse
from wms.schemas.upload import JobStatus, MultiEntryResult, UploadProgress
from wms.services.bulk_writer import ChunkedBulkWriter
from wms.services.file_reader import XLSX, convert_spreadsheet_to_csv, detect_format, iter_csv_rows
from wms.services.normalizer import CanonicalRow
from wms.services.pipelines import PipelineDefinition
from wms.services.progress import COUNTER_FIELDS, ProgressPublisher, ProgressStore, utcnow
from wms.services.resolver import BatchSeenIndex, Classification, build_existing_index, classify

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    """Who uploaded, and into which warehouse; stamped on every written row."""

    warehouse_id: Optional[int] = None
    warehouse_name: Optional[str] = None
    created_by: Optional[int] = None
    created_user_name: Optional[str] = None

    def columns(self, pipeline: PipelineDefinition) -> Dict[str, Any]:
        if not pipeline.is_partitioned:
            return {}
        return asdict(self)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def resolve_context(
    db: Session,
    pipeline: PipelineDefinition,
    warehouse_id: Optional[int],
    created_by: Optional[int] = None,
    created_user_name: Optional[str] = None,
) -> JobContext:
    """
    Build the job context, checking the target warehouse exists.

    Raises:
        InvalidPartitionError: A warehouse-scoped pipeline got no or an unknown warehouse
    """
    context = JobContext(
        created_by=created_by, created_user_name=created_user_name or "Unknown"
    )
    if not pipeline.is_partitioned:
        return context
    if warehouse_id is None:
        raise InvalidPartitionError("warehouse_id is required")

    warehouse = db.query(Warehouse).filter(Warehouse.id == warehouse_id).first()
    if not warehouse:
        raise InvalidPartitionError(f"Warehouse {warehouse_id} not found")

    context.warehouse_id = warehouse.id
    context.warehouse_name = warehouse.name
    return context


@dataclass
class RunCounters:
    """Counters of one ingestion run, mirrored into the progress record."""

    total: int = 0
    processed: int = 0
    success_count: int = 0
    error_count: int = 0
    duplicate_count: int = 0
    cross_warehouse_count: int = 0
    in_batch_duplicate_count: int = 0
    skipped_count: int = 0

    def record(self, outcome: Classification) -> None:
        if outcome is Classification.DUPLICATE_SAME_PARTITION:
            self.duplicate_count += 1
        elif outcome is Classification.DUPLICATE_CROSS_PARTITION:
            self.cross_warehouse_count += 1
        elif outcome is Classification.DUPLICATE_IN_BATCH:
            self.in_batch_duplicate_count += 1

    def apply_to(self, progress: UploadProgress) -> None:
        """Advance the record's counters; they never move backwards."""
        for name in COUNTER_FIELDS:
            setattr(progress, name, max(getattr(progress, name), getattr(self, name)))


class JobCancelled(Exception):
    """The progress record disappeared while the job was running."""


class IngestionDriver:
    """
    Runs one upload through normalize -> classify -> buffer -> flush.

    Rows are pulled from the file one at a time. When the buffer reaches the
    chunk size, no further row is read until the chunk is written and the
    progress record updated, so memory stays bounded by the chunk size.

    The driver owns all per-job state (seen keys, counters, buffer), so any
    number of jobs can run side by side.
    """

    def __init__(
        self,
        pipeline: PipelineDefinition,
        session_factory: sessionmaker,
        store: ProgressStore,
        publisher: Optional[ProgressPublisher] = None,
        settings: Optional[Settings] = None,
    ):
        self.pipeline = pipeline
        self.session_factory = session_factory
        self.store = store
        self.publisher = publisher
        self.settings = settings or get_settings()
        self.chunk_size = pipeline.chunk_size(self.settings)
        with session_factory() as db:
            dialect = db.get_bind().dialect.name
        self.writer = ChunkedBulkWriter(
            pipeline.model, dialect, pipeline.natural_key, self.chunk_size
        )

    def run(self, job_id: str, file_path: str, context: JobContext) -> Optional[UploadProgress]:
        """
        Ingest an uploaded file and drive its progress record to a terminal state.

        The upload, and the CSV converted from it when it is a workbook, are
        deleted whatever the outcome.

        Args:
            job_id: Progress record created when the upload was accepted
            file_path: Saved upload
            context: Warehouse and uploader stamped on written rows

        Returns:
            Final progress record, or None when the job was cancelled
        """
        logger.info(f"🚀 Starting {self.pipeline.name} ingestion: job_id={job_id}, file={file_path}")
        temp_files: List[str] = [file_path]
        counters = RunCounters()

        try:
            progress = self.store.get(job_id)
            if progress is None:
                raise JobCancelled(job_id)

            csv_path = file_path
            if detect_format(file_path) == XLSX:
                csv_path = f"{os.path.splitext(file_path)[0]}.converted.csv"
                temp_files.append(csv_path)
                convert_spreadsheet_to_csv(file_path, csv_path)

            keys = self._count_rows(csv_path, counters)
            self._report(job_id, counters)
            logger.info(
                f"🔢 {counters.total} keyed rows, {counters.skipped_count} without WSN for job {job_id}"
            )

            with self.session_factory() as db:
                existing_index = {}
                if self.pipeline.screen_duplicates:
                    existing_index = build_existing_index(
                        db,
                        self.pipeline.model,
                        keys,
                        self.pipeline.natural_key,
                        self.pipeline.partition_column,
                        self.settings.existing_lookup_slice,
                    )
                self._stream(db, job_id, csv_path, progress.batch_id, context, existing_index, counters)

            final = self._finish(job_id, counters, JobStatus.COMPLETED)
            logger.info(
                f"🎉 Job {job_id} completed: success={counters.success_count}, "
                f"errors={counters.error_count}, duplicates={counters.duplicate_count}, "
                f"cross_warehouse={counters.cross_warehouse_count}, "
                f"in_batch={counters.in_batch_duplicate_count}"
            )
            return final

        except JobCancelled:
            logger.warning(f"🛑 Job {job_id} was cancelled, stopped after {counters.processed} rows")
            return None

        except Exception as e:
            logger.error(f"💥 Ingestion failed for job {job_id}: {str(e)}", exc_info=True)
            return self._finish(job_id, counters, JobStatus.FAILED, error=str(e))

        finally:
            for path in temp_files:
                try:
                    Path(path).unlink(missing_ok=True)
                    logger.info(f"🧹 Temp file cleaned up: {path}")
                except OSError as cleanup_error:
                    logger.warning(f"⚠️ Failed to clean up temp file {path}: {cleanup_error}")

    def _count_rows(self, csv_path: str, counters: RunCounters) -> List[str]:
        """First pass: count keyed rows and collect their keys for the existing-key lookup."""
        normalizer = self.pipeline.normalizer
        keys: List[str] = []
        for raw in iter_csv_rows(csv_path):
            key = normalizer.key_of(raw)
            if key is None:
                counters.skipped_count += 1
                continue
            counters.total += 1
            if self.pipeline.screen_duplicates:
                keys.append(key)

        if self.settings.count_missing_key_as_error:
            counters.error_count += counters.skipped_count
        return keys

    def _stream(
        self,
        db: Session,
        job_id: str,
        csv_path: str,
        batch_id: str,
        context: JobContext,
        existing_index: Dict[str, Any],
        counters: RunCounters,
    ) -> None:
        """Second pass: normalize, screen, buffer and flush in chunks."""
        normalizer = self.pipeline.normalizer
        natural_key = self.pipeline.natural_key
        context_columns = context.columns(self.pipeline)
        seen = BatchSeenIndex()
        buffer: List[CanonicalRow] = []
        since_report = 0

        for raw in iter_csv_rows(csv_path):
            row = normalizer.normalize(raw, batch_id)
            if row is None:
                continue
            counters.processed += 1
            since_report += 1

            if self.pipeline.screen_duplicates:
                seen.add(row[natural_key])
                outcome = classify(
                    row, existing_index, seen, context.warehouse_id, natural_key
                )
                counters.record(outcome)
                if outcome is not Classification.NEW:
                    continue

            row.update(context_columns)
            buffer.append(row)

            if len(buffer) >= self.chunk_size:
                self._flush(db, buffer, counters)
                buffer = []
                since_report = self.chunk_size

            if since_report >= self.chunk_size:
                self._report(job_id, counters)
                since_report = 0
                logger.info(f"📊 Progress: {counters.processed}/{counters.total} rows for job {job_id}")

        if buffer:
            logger.info(f"📦 Processing final chunk of {len(buffer)} rows for job {job_id}")
            self._flush(db, buffer, counters)

    def _flush(self, db: Session, rows: List[CanonicalRow], counters: RunCounters) -> None:
        """Write one chunk; a failed chunk is counted and skipped, never retried."""
        try:
            enrich_rows(db, self.pipeline, rows)
            inserted = self.writer.flush(db, rows)
        except ChunkWriteError as e:
            logger.error(f"✗ Chunk of {e.row_count} rows failed: {e}", exc_info=True)
            counters.error_count += e.row_count
            return
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"✗ Enrichment of chunk of {len(rows)} rows failed: {e}", exc_info=True)
            counters.error_count += len(rows)
            return

        counters.success_count += inserted
        logger.info(f"✓ Chunk written: {inserted}/{len(rows)} inserted")

    def _report(self, job_id: str, counters: RunCounters) -> UploadProgress:
        """Push counters into the progress record; a vanished record cancels the job."""
        progress = self.store.update(job_id, counters.apply_to)
        if progress is None:
            raise JobCancelled(job_id)
        self._publish(progress)
        return progress

    def _finish(
        self, job_id: str, counters: RunCounters, status: JobStatus, error: Optional[str] = None
    ) -> Optional[UploadProgress]:
        def mutate(progress: UploadProgress) -> None:
            counters.apply_to(progress)
            progress.status = status
            progress.error = error
            progress.finished_at = utcnow()

        progress = self.store.update(job_id, mutate)
        if progress is None:
            logger.warning(f"⚠️ Progress record for job {job_id} is gone, final state not recorded")
            return None
        self._publish(progress)
        return progress

    def _publish(self, progress: UploadProgress) -> None:
        if self.publisher is not None:
            self.publisher.publish(progress)


def enrich_rows(db: Session, pipeline: PipelineDefinition, rows: Sequence[CanonicalRow]) -> None:
    """Fill attributes missing from uploaded rows from the pipeline's enrichment table."""
    enrichment = pipeline.enrichment
    if enrichment is None or not rows:
        return

    key_col = getattr(enrichment.model, pipeline.natural_key)
    columns = [getattr(enrichment.model, name) for name in enrichment.fields]
    keys = list({row[pipeline.natural_key] for row in rows})
    found = {
        record[0]: record[1:]
        for record in db.query(key_col, *columns).filter(key_col.in_(keys))
    }

    for row in rows:
        stored = found.get(row[pipeline.natural_key])
        if stored is None:
            continue
        for name, value in zip(enrichment.fields, stored):
            if row.get(name) is None:
                row[name] = value


_ENTRY_OUTCOMES: Dict[Classification, Tuple[str, str, bool]] = {
    Classification.DUPLICATE_CROSS_PARTITION: (
        "CROSS_WAREHOUSE_ERROR", "WSN exists in different warehouse", False
    ),
    Classification.DUPLICATE_SAME_PARTITION: (
        "DUPLICATE", "Duplicate WSN in same warehouse", True
    ),
    Classification.DUPLICATE_IN_BATCH: (
        "DUPLICATE_IN_BATCH", "Duplicate WSN in this batch", True
    ),
}


def ingest_entries(
    db: Session,
    pipeline: PipelineDefinition,
    entries: Sequence[Dict[str, Any]],
    context: JobContext,
    chunk_size: int,
) -> List[MultiEntryResult]:
    """
    Screen and write hand-entered rows inside the request.

    Same normalizer, resolver and writer as a bulk upload, but the outcome
    is reported per row and rows carry no batch id.
    """
    writer = ChunkedBulkWriter(
        pipeline.model, db.get_bind().dialect.name, pipeline.natural_key, chunk_size
    )
    normalizer = pipeline.normalizer
    natural_key = pipeline.natural_key
    results: List[Optional[MultiEntryResult]] = [None] * len(entries)
    rows = [normalizer.normalize(entry, None) for entry in entries]

    existing_index = {}
    if pipeline.screen_duplicates:
        existing_index = build_existing_index(
            db,
            pipeline.model,
            [row[natural_key] for row in rows if row],
            natural_key,
            pipeline.partition_column,
        )

    seen = BatchSeenIndex()
    accepted: List[Tuple[int, CanonicalRow]] = []
    for position, row in enumerate(rows):
        if row is None:
            results[position] = MultiEntryResult(status="SKIPPED", message="Missing WSN")
            continue
        if pipeline.screen_duplicates:
            seen.add(row[natural_key])
            outcome = classify(row, existing_index, seen, context.warehouse_id, natural_key)
            if outcome is not Classification.NEW:
                status, message, highlight = _ENTRY_OUTCOMES[outcome]
                results[position] = MultiEntryResult(
                    wsn=row[natural_key], status=status, message=message, highlight=highlight
                )
                continue
        row.update(context.columns(pipeline))
        accepted.append((position, row))

    for start in range(0, len(accepted), chunk_size):
        chunk = accepted[start:start + chunk_size]
        chunk_rows = [row for _, row in chunk]
        try:
            enrich_rows(db, pipeline, chunk_rows)
            inserted = set(writer.flush_returning_keys(db, chunk_rows))
        except (ChunkWriteError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"❌ Multi-entry chunk failed: {e}", exc_info=True)
            for position, row in chunk:
                results[position] = MultiEntryResult(
                    wsn=row[natural_key], status="ERROR", message="Insert failed"
                )
            continue

        for position, row in chunk:
            key = row[natural_key]
            if key in inserted:
                results[position] = MultiEntryResult(wsn=key, status="SUCCESS")
                inserted.discard(key)
            else:
                results[position] = MultiEntryResult(
                    wsn=key, status="DUPLICATE", message="WSN already exists", highlight=True
                )

    return results


def new_progress(
    job_id: str,
    pipeline: PipelineDefinition,
    batch_id: str,
    context: JobContext,
    filename: str,
    file_type: str,
    file_size: int,
) -> UploadProgress:
    """Initial processing record for an accepted upload."""
    return UploadProgress(
        job_id=job_id,
        pipeline=pipeline.name,
        status=JobStatus.PROCESSING,
        batch_id=batch_id,
        warehouse_id=context.warehouse_id,
        filename=filename,
        file_type=file_type,
        file_size=file_size,
        start_time=utcnow(),
    )
