"""Quality-check model."""
from sqlalchemy import Column, Date, String, Text

from wms.database import Base
from wms.models.mixins import ProductAttributesMixin, WarehouseScopedMixin


class QCEntry(ProductAttributesMixin, WarehouseScopedMixin, Base):
    """Result of a quality check on a received unit."""

    __tablename__ = "qc"

    qc_date = Column(Date, nullable=True)
    qc_by = Column(String(255), nullable=True)
    qc_grade = Column(String(100), nullable=True)
    qc_remarks = Column(Text, nullable=True)

    def __repr__(self):
        return f"<QCEntry(id={self.id}, wsn='{self.wsn}', qc_grade='{self.qc_grade}')>"
