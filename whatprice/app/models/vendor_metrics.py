"""
Vendor Metrics database model.

Per-vendor-per-day rollup that outlives the raw view rows.
"""

from sqlalchemy import Column, Integer, Float, Numeric, Date, DateTime, String, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from whatprice.app.db.session import Base


class VendorMetrics(Base):
    """
    Vendor Metrics model.

    Written only by the metrics aggregator, never by the charging path.
    """
    __tablename__ = "vendor_metrics"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    vendor_id = Column(Integer, ForeignKey('vendors.id'), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)  # UTC day

    # View metrics (bots excluded)
    total_views = Column(Integer, default=0, nullable=False)
    qualified_views = Column(Integer, default=0, nullable=False)
    unique_visitors = Column(Integer, default=0, nullable=False)
    comparison_views = Column(Integer, default=0, nullable=False)
    direct_views = Column(Integer, default=0, nullable=False)
    search_views = Column(Integer, default=0, nullable=False)
    category_views = Column(Integer, default=0, nullable=False)
    mobile_views = Column(Integer, default=0, nullable=False)
    tablet_views = Column(Integer, default=0, nullable=False)
    desktop_views = Column(Integer, default=0, nullable=False)

    # CPV metrics
    views_charged = Column(Integer, default=0, nullable=False)
    credits_spent = Column(Numeric(14, 2), default=0, nullable=False)
    avg_cpv_bid = Column(Numeric(14, 2), default=0, nullable=False)

    # Engagement
    avg_view_duration = Column(Float, default=0, nullable=False)
    contact_clicks = Column(Integer, default=0, nullable=False)
    ctr = Column(Float, default=0, nullable=False)  # percentage

    # Credits
    credits_purchased = Column(Numeric(14, 2), default=0, nullable=False)

    graduation_tier = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('vendor_id', 'date', name='uq_vendor_metrics_vendor_date'),
    )

    def __repr__(self):
        return f"<VendorMetrics(vendor_id={self.vendor_id}, date={self.date}, views={self.total_views})>"
