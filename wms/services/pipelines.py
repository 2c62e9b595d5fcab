"""Per-domain configuration of the bulk ingestion pipeline."""
import random
import string
import time
from dataclasses import dataclass
from datetime import date
from functools import cached_property
from typing import Dict, Optional, Tuple

from wms.config import Settings
from wms.models import InboundEntry, MasterData, PickingEntry, QCEntry
from wms.services.normalizer import FieldSpec, RowNormalizer, parse_date

PRODUCT_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("wsn", ("WSN", "wsn_no", "wsn_number")),
    FieldSpec("wid", ("WID",)),
    FieldSpec("fsn", ("FSN",)),
    FieldSpec("order_id", ("Order_ID", "Order No", "Order Number")),
    FieldSpec("fkqc_remark", ("FKQC_Remark", "FK QC Remark")),
    FieldSpec("fk_grade", ("FK_Grade",)),
    FieldSpec("product_title", ("Product_Title", "Title", "Product Name")),
    FieldSpec("hsn_sac", ("HSN/SAC", "HSN", "HSN Code")),
    FieldSpec("igst_rate", ("IGST_Rate", "IGST", "GST Rate")),
    FieldSpec("fsp", ("FSP",)),
    FieldSpec("mrp", ("MRP",)),
    FieldSpec("invoice_date", ("Invoice_Date",)),
    FieldSpec("fkt_link", ("Fkt_Link", "Link")),
    FieldSpec("wh_location", ("Wh_Location", "Location", "Warehouse Location")),
    FieldSpec("brand", ("BRAND",)),
    FieldSpec("cms_vertical", ("CMS_Vertical", "Vertical", "Category")),
    FieldSpec("vrp", ("VRP",)),
    FieldSpec("yield_value", ("Yield_Value", "Yield")),
    FieldSpec("p_type", ("P_Type", "Product Type")),
    FieldSpec("p_size", ("P_Size", "Product Size")),
)

ENRICHED_FIELDS: Tuple[str, ...] = tuple(
    spec.name for spec in PRODUCT_FIELDS if spec.name != "wsn"
)

_LOCATION_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("rack_no", ("RACK_NO", "Rack", "Rack Number")),
    FieldSpec(
        "product_serial_number",
        ("PRODUCT_SERIAL_NUMBER", "Serial No", "Serial Number"),
    ),
)

INBOUND_FIELDS: Tuple[FieldSpec, ...] = PRODUCT_FIELDS + _LOCATION_FIELDS + (
    FieldSpec("inbound_date", ("INBOUND_DATE", "Date"), parse_date, date.today),
    FieldSpec("vehicle_no", ("VEHICLE_NO", "Vehicle", "Vehicle Number")),
    FieldSpec("unload_remarks", ("UNLOAD_REMARKS", "Remarks", "Unload Remark")),
)

QC_FIELDS: Tuple[FieldSpec, ...] = PRODUCT_FIELDS + _LOCATION_FIELDS + (
    FieldSpec("qc_date", ("QC_DATE", "Date"), parse_date, date.today),
    FieldSpec("qc_by", ("QC_BY", "Checked By", "QC Done By")),
    FieldSpec("qc_grade", ("QC_GRADE", "Grade")),
    FieldSpec("qc_remarks", ("QC_REMARKS", "Remarks", "QC Remark")),
)

PICKING_FIELDS: Tuple[FieldSpec, ...] = PRODUCT_FIELDS + _LOCATION_FIELDS + (
    FieldSpec("picking_date", ("PICKING_DATE", "Date"), parse_date, date.today),
    FieldSpec("customer_name", ("CUSTOMER_NAME", "Customer")),
    FieldSpec("picker_name", ("PICKER_NAME", "Picked By")),
    FieldSpec("picking_remarks", ("PICKING_REMARKS", "Remarks")),
)


@dataclass(frozen=True)
class Enrichment:
    """Table whose stored attributes fill the gaps of an uploaded row."""

    model: type
    fields: Tuple[str, ...] = ENRICHED_FIELDS


@dataclass(frozen=True)
class PipelineDefinition:
    """
    One instantiation of the bulk ingestion pipeline.

    Attributes:
        name: URL segment and job tag, e.g. "inbound"
        model: Target table
        fields: Columns read from the upload
        batch_prefix: Prefix of generated batch ids
        chunk_size_setting: Settings attribute holding the chunk size
        natural_key: Business key with a unique constraint on the target table
        partition_column: Warehouse column, None for unpartitioned tables
        screen_duplicates: Classify rows against stored and already-seen keys
        enrichment: Source of attributes missing from the upload
    """

    name: str
    model: type
    fields: Tuple[FieldSpec, ...]
    batch_prefix: str
    chunk_size_setting: str
    natural_key: str = "wsn"
    partition_column: Optional[str] = "warehouse_id"
    screen_duplicates: bool = True
    enrichment: Optional[Enrichment] = None

    @cached_property
    def normalizer(self) -> RowNormalizer:
        return RowNormalizer(self.fields, self.natural_key)

    @property
    def is_partitioned(self) -> bool:
        return self.partition_column is not None

    def chunk_size(self, settings: Settings) -> int:
        return getattr(settings, self.chunk_size_setting)


PIPELINES: Dict[str, PipelineDefinition] = {
    "master-data": PipelineDefinition(
        name="master-data",
        model=MasterData,
        fields=PRODUCT_FIELDS,
        batch_prefix="BULK",
        chunk_size_setting="master_data_chunk_size",
        partition_column=None,
        screen_duplicates=False,
    ),
    "inbound": PipelineDefinition(
        name="inbound",
        model=InboundEntry,
        fields=INBOUND_FIELDS,
        batch_prefix="BULK",
        chunk_size_setting="inbound_chunk_size",
        enrichment=Enrichment(MasterData),
    ),
    "qc": PipelineDefinition(
        name="qc",
        model=QCEntry,
        fields=QC_FIELDS,
        batch_prefix="QC_BULK",
        chunk_size_setting="qc_chunk_size",
        enrichment=Enrichment(InboundEntry),
    ),
    "picking": PipelineDefinition(
        name="picking",
        model=PickingEntry,
        fields=PICKING_FIELDS,
        batch_prefix="PICK_BULK",
        chunk_size_setting="picking_chunk_size",
        enrichment=Enrichment(InboundEntry),
    ),
}


def get_pipeline(name: str) -> PipelineDefinition:
    """Look up a pipeline by name; raises KeyError for unknown names."""
    return PIPELINES[name]


def generate_batch_id(prefix: str) -> str:
    """Batch id such as BULK_1718000000000_K3F9QZ."""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"
