"""
Product database model.

A vendor's listing. Catalog CRUD lives elsewhere; billing only reads
the bid and maintains the traffic counters.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, ForeignKey
from sqlalchemy.sql import func
from whatprice.app.db.session import Base


class Product(Base):
    """
    Product model.

    `master_product_id` links a comparative listing to its catalog entry.
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    vendor_id = Column(Integer, ForeignKey('vendors.id'), nullable=False, index=True)
    master_product_id = Column(Integer, nullable=True, index=True)

    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # PKR per 100 views; falls back to the vendor's default bid
    current_bid = Column(Numeric(14, 2), nullable=True)

    # Counters
    view_count = Column(Integer, default=0, nullable=False)
    qualified_views = Column(Integer, default=0, nullable=False)
    contact_clicks = Column(Integer, default=0, nullable=False)
    budget_spent = Column(Numeric(14, 2), default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', vendor_id={self.vendor_id})>"
