"""Background execution of bulk uploads."""
import logging
from typing import Any, Dict, Optional

from wms.database import SessionLocal
from wms.services.ingestion import IngestionDriver, JobContext
from wms.services.pipelines import get_pipeline
from wms.services.progress import get_progress_publisher, get_progress_store
from wms.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_upload_job(
    pipeline_name: str, job_id: str, file_path: str, context: Dict[str, Any]
) -> Optional[dict]:
    """
    Ingest one saved upload.

    Called by the Celery task, or directly from FastAPI BackgroundTasks when
    INGESTION_BACKEND=inline.

    Args:
        pipeline_name: Registered pipeline, e.g. "inbound"
        job_id: Progress record id
        file_path: Saved upload
        context: JobContext fields (plain dict so it survives JSON serialization)

    Returns:
        Final progress record as a dict, or None when the job was cancelled
    """
    driver = IngestionDriver(
        get_pipeline(pipeline_name),
        SessionLocal,
        get_progress_store(),
        get_progress_publisher(),
    )
    progress = driver.run(job_id, file_path, JobContext(**context))
    return progress.model_dump(mode="json") if progress else None


@celery_app.task(bind=True)
def process_upload(
    self, pipeline_name: str, job_id: str, file_path: str, context: Dict[str, Any]
) -> Optional[dict]:
    """Process a saved upload in a Celery worker, outside the web request."""
    logger.info(f"🚀 Celery task {self.request.id} picked up job {job_id} ({pipeline_name})")
    return run_upload_job(pipeline_name, job_id, file_path, context)


@celery_app.task
def purge_expired_uploads() -> int:
    """Drop finished progress records past the retention window."""
    return get_progress_store().purge_expired()
