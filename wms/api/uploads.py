"""Bulk upload API endpoints, one router per ingestion pipeline."""
import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import redis.asyncio as aioredis
from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
)
from fastapi.responses import StreamingResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from wms.config import Settings, get_settings
from wms.database import get_db
from wms.exceptions import InvalidPartitionError, UploadFormatError
from wms.schemas.upload import (
    BatchDeleteResponse,
    BatchSummary,
    CancelResponse,
    MultiEntryRequest,
    MultiEntryResponse,
    UploadAcceptedResponse,
    UploadProgress,
)
from wms.services.file_reader import detect_format, validate_upload
from wms.services.ingestion import ingest_entries, new_progress, resolve_context
from wms.services.pipelines import PipelineDefinition, generate_batch_id
from wms.services.progress import ProgressPublisher, ProgressStore, get_progress_store
from wms.tasks.import_tasks import process_upload, run_upload_job

logger = logging.getLogger(__name__)

SAVE_CHUNK_SIZE = 8192  # 8KB


def build_router(pipeline: PipelineDefinition) -> APIRouter:
    """Create the upload, progress, batch and multi-entry routes of one pipeline."""
    router = APIRouter(prefix=f"/api/{pipeline.name}", tags=[pipeline.name])
    model = pipeline.model

    @router.post("/upload", response_model=UploadAcceptedResponse, status_code=202)
    async def upload_file(
        background_tasks: BackgroundTasks,
        file: Optional[UploadFile] = File(None),
        warehouse_id: Optional[int] = Form(None),
        created_by: Optional[int] = Form(None),
        created_user_name: Optional[str] = Form(None),
        db: Session = Depends(get_db),
        store: ProgressStore = Depends(get_progress_store),
        settings: Settings = Depends(get_settings),
    ):
        """
        Accept a CSV or Excel file for bulk ingestion.

        This endpoint:
        1. Rejects unsupported, oversized, unreadable or empty files
        2. Saves the file to the upload directory
        3. Creates the progress record (pollable as soon as this returns)
        4. Schedules ingestion to run after the response is sent
        5. Returns job_id and batch_id for progress tracking
        """
        if file is None or not file.filename:
            raise HTTPException(status_code=400, detail="No file uploaded")

        logger.info(
            f"📁 Starting {pipeline.name} upload: filename={file.filename}, "
            f"warehouse_id={warehouse_id}"
        )
        try:
            file_type = detect_format(file.filename)
        except UploadFormatError as e:
            logger.warning(f"❌ Invalid file type: {file.filename}")
            raise HTTPException(status_code=400, detail=str(e))

        try:
            context = resolve_context(
                db, pipeline, warehouse_id, created_by, created_user_name
            )
        except InvalidPartitionError as e:
            raise HTTPException(status_code=400, detail=str(e))

        job_id = str(uuid.uuid4())
        batch_id = generate_batch_id(pipeline.batch_prefix)
        upload_dir = Path(settings.upload_dir)
        upload_dir.mkdir(parents=True, exist_ok=True)
        temp_file_path = upload_dir / f"{job_id}{Path(file.filename).suffix.lower()}"

        max_bytes = settings.max_upload_size_mb * 1024 * 1024
        bytes_written = 0
        too_large = False
        with open(temp_file_path, "wb") as buffer:
            # Stream file in chunks to handle large files
            content = await file.read(SAVE_CHUNK_SIZE)
            while content:
                bytes_written += len(content)
                if bytes_written > max_bytes:
                    too_large = True
                    break
                buffer.write(content)
                content = await file.read(SAVE_CHUNK_SIZE)

        if too_large:
            temp_file_path.unlink(missing_ok=True)
            logger.warning(f"❌ File too large: more than {max_bytes} bytes")
            raise HTTPException(
                status_code=413,
                detail=f"File too large (max {settings.max_upload_size_mb}MB)",
            )

        try:
            validate_upload(temp_file_path, file_type)
        except UploadFormatError as e:
            temp_file_path.unlink(missing_ok=True)
            logger.warning(f"❌ Rejected upload {file.filename}: {e}")
            raise HTTPException(status_code=400, detail=str(e))

        logger.info(f"✅ File saved: {temp_file_path} ({bytes_written} bytes)")

        store.purge_expired()
        store.create(
            new_progress(
                job_id, pipeline, batch_id, context, file.filename, file_type, bytes_written
            )
        )

        args = (pipeline.name, job_id, str(temp_file_path), context.to_dict())
        try:
            if settings.ingestion_backend == "inline":
                background_tasks.add_task(run_upload_job, *args)
            else:
                process_upload.delay(*args)
        except Exception as e:
            logger.error(f"💥 Scheduling failed for job {job_id}: {str(e)}", exc_info=True)
            store.delete(job_id)
            temp_file_path.unlink(missing_ok=True)
            raise HTTPException(status_code=500, detail=f"Upload failed: {str(e)}")

        logger.info(f"🎉 Upload accepted: job_id={job_id}, batch_id={batch_id}")
        return UploadAcceptedResponse(
            job_id=job_id,
            batch_id=batch_id,
            file_type=file_type,
            file_size=bytes_written,
        )

    def get_owned_job(job_id: str, store: ProgressStore) -> UploadProgress:
        progress = store.get(job_id)
        if not progress or progress.pipeline != pipeline.name:
            raise HTTPException(status_code=404, detail="Job not found")
        return progress

    @router.get("/upload/active", response_model=List[UploadProgress])
    def get_active_uploads(store: ProgressStore = Depends(get_progress_store)):
        """Uploads still processing, so a reloaded page can reattach to them."""
        return store.list_active(pipeline.name)

    @router.get("/upload/progress/{job_id}", response_model=UploadProgress)
    def get_upload_progress(
        job_id: str, store: ProgressStore = Depends(get_progress_store)
    ):
        """Get upload job status and progress (polling)."""
        return get_owned_job(job_id, store)

    @router.get("/upload/progress/{job_id}/stream")
    async def stream_progress(
        job_id: str,
        store: ProgressStore = Depends(get_progress_store),
        settings: Settings = Depends(get_settings),
    ):
        """
        Server-Sent Events endpoint for real-time progress streaming.

        Sends the current record first, then relays every update published by
        the worker until the job reaches a terminal state.
        """
        current = get_owned_job(job_id, store)

        def closing_event() -> Optional[str]:
            """Last event for a job that ended without this subscriber hearing of it."""
            latest = store.get(job_id)
            if latest is None:
                return f"data: {json.dumps({'job_id': job_id, 'status': 'cancelled'})}\n\n"
            if latest.status.is_terminal:
                return f"data: {latest.model_dump_json()}\n\n"
            return None

        async def event_generator():
            yield f"data: {current.model_dump_json()}\n\n"
            if current.status.is_terminal:
                return

            redis_client = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
            pubsub = redis_client.pubsub()
            await pubsub.subscribe(ProgressPublisher.channel(job_id))
            try:
                # the job may have finished before the subscription was in place
                event = closing_event()
                if event:
                    yield event
                    return

                while True:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=1.0
                    )
                    if message is None:
                        # publishing may be off, or the final update was missed
                        event = closing_event()
                        if event:
                            yield event
                            break
                        continue
                    if message["type"] == "message":
                        yield f"data: {message['data']}\n\n"
                        if json.loads(message["data"]).get("status") != "processing":
                            break
            except aioredis.RedisError as e:
                logger.warning(f"SSE stream error for job {job_id}: {str(e)}")
                yield f"data: {json.dumps({'status': 'error', 'error': 'Stream error'})}\n\n"
            finally:
                await pubsub.unsubscribe(ProgressPublisher.channel(job_id))
                await pubsub.aclose()
                await redis_client.aclose()

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )

    @router.delete("/upload/cancel/{job_id}", response_model=CancelResponse)
    def cancel_upload(job_id: str, store: ProgressStore = Depends(get_progress_store)):
        """
        Cancel an upload by deleting its progress record.

        A running job notices at its next progress update and stops reading;
        chunks already written stay in place.
        """
        get_owned_job(job_id, store)
        store.delete(job_id)
        logger.info(f"🛑 Upload cancelled: job_id={job_id}")
        return CancelResponse(job_id=job_id)

    @router.get("/batches", response_model=List[BatchSummary])
    def list_batches(
        warehouse_id: Optional[int] = Query(None, description="Filter by warehouse"),
        db: Session = Depends(get_db),
    ):
        """Batches written by bulk uploads, newest first."""
        last_updated = func.max(model.created_at).label("last_updated")
        query = db.query(
            model.batch_id, func.count(model.id).label("count"), last_updated
        ).filter(model.batch_id.isnot(None))
        if warehouse_id is not None and pipeline.is_partitioned:
            query = query.filter(getattr(model, pipeline.partition_column) == warehouse_id)
        rows = query.group_by(model.batch_id).order_by(last_updated.desc()).all()
        return [
            BatchSummary(batch_id=row.batch_id, count=row.count, last_updated=row.last_updated)
            for row in rows
        ]

    @router.delete("/batches/{batch_id}", response_model=BatchDeleteResponse)
    def delete_batch(batch_id: str, db: Session = Depends(get_db)):
        """Delete every row a bulk upload produced."""
        count = db.query(model).filter(model.batch_id == batch_id).delete(
            synchronize_session=False
        )
        db.commit()
        logger.info(f"🗑️ Deleted batch {batch_id} from {model.__tablename__}: {count} rows")
        return BatchDeleteResponse(batch_id=batch_id, count=count)

    @router.post("/multi", response_model=MultiEntryResponse)
    def multi_entry(
        request: MultiEntryRequest,
        db: Session = Depends(get_db),
        settings: Settings = Depends(get_settings),
    ):
        """
        Enter several rows at once.

        Each row is reported as SUCCESS, DUPLICATE (highlighted),
        DUPLICATE_IN_BATCH (highlighted), CROSS_WAREHOUSE_ERROR, SKIPPED or ERROR.
        """
        try:
            context = resolve_context(
                db,
                pipeline,
                request.warehouse_id,
                request.created_by,
                request.created_user_name,
            )
        except InvalidPartitionError as e:
            raise HTTPException(status_code=400, detail=str(e))

        results = ingest_entries(
            db, pipeline, request.entries, context, pipeline.chunk_size(settings)
        )
        return MultiEntryResponse(
            timestamp=datetime.now(),
            success_count=sum(1 for r in results if r.status == "SUCCESS"),
            total_count=len(request.entries),
            results=results,
        )

    return router
