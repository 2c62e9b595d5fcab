"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wms.api.uploads import build_router
from wms.database import Base, engine
from wms.models import InboundEntry, MasterData, PickingEntry, QCEntry, UploadJob, Warehouse  # noqa: F401 - Import to register models
from wms.services.bulk_writer import check_dialect
from wms.services.pipelines import PIPELINES

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),  # Console output
        logging.FileHandler("app.log"),  # File output
    ],
)

# Set specific log levels for noisy libraries
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Check the database can take bulk inserts, then create tables on startup."""
    check_dialect(engine.dialect.name)
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="Warehouse Bulk Ingestion",
    description="Bulk upload of master data, inbound, QC and picking spreadsheets",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include one router per ingestion pipeline
for pipeline in PIPELINES.values():
    app.include_router(build_router(pipeline))


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
