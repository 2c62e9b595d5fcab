"""Upload job model for tracking bulk import progress."""
from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from wms.database import Base


class UploadJob(Base):
    """Progress record of one bulk upload, addressable by its job id."""

    __tablename__ = "upload_jobs"

    id = Column(String(64), primary_key=True)
    pipeline = Column(String(50), nullable=False, index=True)
    status = Column(
        String(50), nullable=False, default="processing", index=True
    )  # processing, completed, failed, cancelled
    batch_id = Column(String(100), nullable=False)
    warehouse_id = Column(Integer, nullable=True)
    filename = Column(String(500), nullable=True)
    file_type = Column(String(20), nullable=True)
    file_size = Column(Integer, default=0, nullable=False)
    total = Column(Integer, default=0, nullable=False)
    processed = Column(Integer, default=0, nullable=False)
    success_count = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    duplicate_count = Column(Integer, default=0, nullable=False)
    cross_warehouse_count = Column(Integer, default=0, nullable=False)
    in_batch_duplicate_count = Column(Integer, default=0, nullable=False)
    skipped_count = Column(Integer, default=0, nullable=False)
    error = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True, index=True)
    updated_at = Column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )
