"""Column mixins shared by the goods-tracking tables."""
from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func


class ProductAttributesMixin:
    """Descriptive product columns keyed by the unit serial number (WSN)."""

    id = Column(Integer, primary_key=True, index=True)
    wsn = Column(String(255), nullable=False, unique=True)
    wid = Column(String(255), nullable=True)
    fsn = Column(String(255), nullable=True)
    order_id = Column(String(255), nullable=True)
    fkqc_remark = Column(Text, nullable=True)
    fk_grade = Column(String(100), nullable=True)
    product_title = Column(Text, nullable=True)
    hsn_sac = Column(String(100), nullable=True)
    igst_rate = Column(String(50), nullable=True)
    fsp = Column(String(50), nullable=True)
    mrp = Column(String(50), nullable=True)
    invoice_date = Column(String(50), nullable=True)
    fkt_link = Column(Text, nullable=True)
    wh_location = Column(String(255), nullable=True)
    brand = Column(String(255), nullable=True)
    cms_vertical = Column(String(255), nullable=True)
    vrp = Column(String(50), nullable=True)
    yield_value = Column(String(50), nullable=True)
    p_type = Column(String(100), nullable=True)
    p_size = Column(String(100), nullable=True)
    batch_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class WarehouseScopedMixin:
    """Columns stamped on rows that belong to one warehouse."""

    warehouse_id = Column(Integer, nullable=False, index=True)
    warehouse_name = Column(String(255), nullable=True)
    rack_no = Column(String(100), nullable=True)
    product_serial_number = Column(String(255), nullable=True)
    created_by = Column(Integer, nullable=True)
    created_user_name = Column(String(255), nullable=True)
    updated_at = Column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )
