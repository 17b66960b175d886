"""
Product View database model.

One row per product page-view event, with fraud flags and billing outcome.
"""

from sqlalchemy import Column, Integer, String, Float, Numeric, DateTime, Boolean, Enum, ForeignKey, Index
from whatprice.app.db.session import Base
from whatprice.app.models.billing_enums import ViewType, DeviceType
from whatprice.app.utils.date_utils import utcnow


class ProductView(Base):
    """
    Product View model.

    Core fields are immutable after creation. `is_qualified_view`,
    `view_duration` and `scroll_depth` are written by qualification,
    `clicked_contact` by the click callback, and the CPV fields at most
    once by the charging service.
    Rows older than the retention window are purged after rollup.
    """
    __tablename__ = "product_views"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey('vendors.id'), nullable=False, index=True)
    master_product_id = Column(Integer, nullable=True, index=True)
    user_id = Column(Integer, nullable=True)
    session_id = Column(String(64), nullable=False)

    # View details
    view_type = Column(Enum(ViewType), default=ViewType.DIRECT, nullable=False)
    referrer = Column(String(512), nullable=True)
    search_query = Column(String(255), nullable=True)

    # Device
    user_agent = Column(String(512), nullable=True)
    ip_address = Column(String(64), nullable=True)
    device_type = Column(Enum(DeviceType), default=DeviceType.DESKTOP, nullable=False)

    # View quality
    view_duration = Column(Float, default=0, nullable=False)  # seconds
    is_qualified_view = Column(Boolean, default=False, nullable=False)
    scroll_depth = Column(Float, nullable=True)  # percentage
    clicked_contact = Column(Boolean, default=False, nullable=False)

    # CPV billing
    cpv_charged = Column(Boolean, default=False, nullable=False)
    cpv_amount = Column(Numeric(14, 2), default=0, nullable=False)
    vendor_bid_amount = Column(Numeric(14, 2), default=0, nullable=False)

    # Fraud prevention
    is_duplicate = Column(Boolean, default=False, nullable=False)
    is_bot = Column(Boolean, default=False, nullable=False)

    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_product_views_session_product', 'session_id', 'product_id', 'timestamp'),
        Index('ix_product_views_vendor_timestamp', 'vendor_id', 'timestamp'),
    )

    @property
    def is_billable(self) -> bool:
        return self.is_qualified_view and not self.is_duplicate and not self.is_bot

    def __repr__(self):
        return f"<ProductView(id={self.id}, product_id={self.product_id}, charged={self.cpv_charged})>"
