"""Picking model."""
from sqlalchemy import Column, Date, String, Text

from wms.database import Base
from wms.models.mixins import ProductAttributesMixin, WarehouseScopedMixin


class PickingEntry(ProductAttributesMixin, WarehouseScopedMixin, Base):
    """A unit picked from a rack for an outgoing customer order."""

    __tablename__ = "picking"

    picking_date = Column(Date, nullable=True)
    customer_name = Column(String(255), nullable=True)
    picker_name = Column(String(255), nullable=True)
    picking_remarks = Column(Text, nullable=True)

    def __repr__(self):
        return f"<PickingEntry(id={self.id}, wsn='{self.wsn}', customer='{self.customer_name}')>"
