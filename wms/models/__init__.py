"""Database models."""
from wms.models.inbound import InboundEntry
from wms.models.master_data import MasterData
from wms.models.picking import PickingEntry
from wms.models.qc import QCEntry
from wms.models.upload_job import UploadJob
from wms.models.warehouse import Warehouse

__all__ = [
    "InboundEntry",
    "MasterData",
    "PickingEntry",
    "QCEntry",
    "UploadJob",
    "Warehouse",
]
