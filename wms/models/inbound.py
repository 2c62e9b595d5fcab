"""Inbound model."""
from sqlalchemy import Column, Date, String, Text

from wms.database import Base
from wms.models.mixins import ProductAttributesMixin, WarehouseScopedMixin


class InboundEntry(ProductAttributesMixin, WarehouseScopedMixin, Base):
    """A unit received into a warehouse."""

    __tablename__ = "inbound"

    inbound_date = Column(Date, nullable=True)
    vehicle_no = Column(String(100), nullable=True)
    unload_remarks = Column(Text, nullable=True)

    def __repr__(self):
        return f"<InboundEntry(id={self.id}, wsn='{self.wsn}', warehouse_id={self.warehouse_id})>"
