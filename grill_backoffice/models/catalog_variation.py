from sqlalchemy import Column, DateTime, String, func

from grill_backoffice.core.database import Base


class CatalogVariation(Base):
    __tablename__ = "catalog_variation"

    variation_id = Column(String(64), primary_key=True)
    item_name = Column(String(255), nullable=True)
    variation_name = Column(String(255), nullable=True)
    sku = Column(String(64), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
