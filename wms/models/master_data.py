"""Master data model."""
from wms.database import Base
from wms.models.mixins import ProductAttributesMixin


class MasterData(ProductAttributesMixin, Base):
    """Product master record for one unit, uploaded in bulk from the catalogue export."""

    __tablename__ = "master_data"

    def __repr__(self):
        return f"<MasterData(id={self.id}, wsn='{self.wsn}', batch_id='{self.batch_id}')>"
