"""
View Qualification Engine.

Records product views with their fraud flags, then decides from the
reported duration whether a view is qualified (billable). Duplicate and
bot views are stored for traffic analytics, never rejected.
"""

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from whatprice.app.core.config import settings
from whatprice.app.core.exceptions import InvalidViewRequestError, ResourceNotFoundError
from whatprice.app.db.session import Database
from whatprice.app.models.billing_enums import DeviceType, ViewType, VerificationStatus
from whatprice.app.models.product import Product
from whatprice.app.models.product_view import ProductView
from whatprice.app.models.vendor import Vendor
from whatprice.app.utils.date_utils import utcnow

logger = logging.getLogger("whatprice.views")

BOT_PATTERN = re.compile(r"bot|crawler|spider|scraper", re.IGNORECASE)
MOBILE_PATTERN = re.compile(r"mobile", re.IGNORECASE)
TABLET_PATTERN = re.compile(r"tablet|ipad", re.IGNORECASE)


def detect_device_type(user_agent: Optional[str]) -> DeviceType:
    if not user_agent:
        return DeviceType.DESKTOP
    if MOBILE_PATTERN.search(user_agent):
        return DeviceType.MOBILE
    if TABLET_PATTERN.search(user_agent):
        return DeviceType.TABLET
    return DeviceType.DESKTOP


def is_bot_user_agent(user_agent: Optional[str]) -> bool:
    return bool(user_agent and BOT_PATTERN.search(user_agent))


def is_qualifying_duration(duration: float) -> bool:
    return duration >= settings.min_qualified_view_seconds


@dataclass
class RecordedView:
    view_id: int
    session_id: str
    is_duplicate: bool
    is_bot: bool


class ViewQualificationEngine:
    """
    Owns view creation and the qualification/click callbacks.

    Each public operation runs in its own session from the injected Database.
    """

    def __init__(self, database: Database):
        self.database = database

    async def _is_duplicate(self, db: AsyncSession, session_id: str, product_id: int) -> bool:
        """Same session already viewed this product within the window."""
        since = utcnow() - timedelta(minutes=settings.duplicate_view_window_minutes)
        result = await db.execute(
            select(ProductView.id).where(
                ProductView.session_id == session_id,
                ProductView.product_id == product_id,
                ProductView.timestamp >= since,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _create_view(
        self,
        db: AsyncSession,
        *,
        product_id: int,
        vendor_id: int,
        session_id: str,
        view_type: ViewType,
        user_agent: Optional[str],
        ip_address: Optional[str],
        master_product_id: Optional[int],
        user_id: Optional[int],
        referrer: Optional[str],
        search_query: Optional[str],
        bid_amount,
    ) -> ProductView:
        if not session_id:
            raise InvalidViewRequestError("session_id is required")
        if not product_id:
            raise InvalidViewRequestError("product_id is required")

        now = utcnow()
        view = ProductView(
            product_id=product_id,
            vendor_id=vendor_id,
            master_product_id=master_product_id,
            user_id=user_id,
            session_id=session_id,
            view_type=ViewType(view_type),
            referrer=referrer,
            search_query=search_query,
            user_agent=user_agent,
            ip_address=ip_address,
            device_type=detect_device_type(user_agent),
            is_duplicate=await self._is_duplicate(db, session_id, product_id),
            is_bot=is_bot_user_agent(user_agent),
            view_duration=0,
            is_qualified_view=False,
            clicked_contact=False,
            cpv_charged=False,
            cpv_amount=0,
            vendor_bid_amount=bid_amount or 0,
            timestamp=now,
            created_at=now,
        )
        db.add(view)
        await db.flush()
        return view

    async def record_view(
        self,
        *,
        product_id: int,
        vendor_id: int,
        session_id: str,
        view_type: ViewType = ViewType.DIRECT,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        master_product_id: Optional[int] = None,
        user_id: Optional[int] = None,
        referrer: Optional[str] = None,
        search_query: Optional[str] = None,
    ) -> ProductView:
        """
        Persist a view with its duplicate/bot/device classification.

        Raises:
            InvalidViewRequestError: session_id or product_id missing
        """
        async with self.database.session() as db:
            view = await self._create_view(
                db,
                product_id=product_id,
                vendor_id=vendor_id,
                session_id=session_id,
                view_type=view_type,
                user_agent=user_agent,
                ip_address=ip_address,
                master_product_id=master_product_id,
                user_id=user_id,
                referrer=referrer,
                search_query=search_query,
                bid_amount=None,
            )
            await db.commit()
            return view

    async def record_product_view(
        self,
        *,
        product_id: int,
        session_id: str,
        view_type: ViewType = ViewType.DIRECT,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        master_product_id: Optional[int] = None,
        user_id: Optional[int] = None,
        referrer: Optional[str] = None,
        search_query: Optional[str] = None,
    ) -> RecordedView:
        """
        Record a view arriving from the storefront.

        Resolves vendor and catalog entry from the product and bumps the
        product/vendor traffic counters in the same transaction.

        Raises:
            InvalidViewRequestError: session_id or product_id missing
            ResourceNotFoundError: product inactive/unknown, vendor unverified/disabled
        """
        if not product_id:
            raise InvalidViewRequestError("product_id is required")

        async with self.database.session() as db:
            product = await db.get(Product, product_id)
            if not product or not product.is_active:
                raise ResourceNotFoundError("Product", product_id)

            vendor = await db.get(Vendor, product.vendor_id)
            if (
                not vendor
                or not vendor.is_active
                or vendor.verification_status != VerificationStatus.VERIFIED
            ):
                raise ResourceNotFoundError("Vendor", product.vendor_id)

            view = await self._create_view(
                db,
                product_id=product.id,
                vendor_id=vendor.id,
                session_id=session_id,
                view_type=view_type,
                user_agent=user_agent,
                ip_address=ip_address,
                master_product_id=master_product_id or product.master_product_id,
                user_id=user_id,
                referrer=referrer,
                search_query=search_query,
                bid_amount=product.current_bid or vendor.default_bid_amount,
            )

            await db.execute(
                update(Product)
                .where(Product.id == product.id)
                .values(view_count=Product.view_count + 1)
            )
            await db.execute(
                update(Vendor)
                .where(Vendor.id == vendor.id)
                .values(total_views=Vendor.total_views + 1)
            )
            await db.commit()

            logger.info(
                "View recorded",
                extra={
                    "view_id": view.id,
                    "product_id": product.id,
                    "vendor_id": vendor.id,
                    "is_duplicate": view.is_duplicate,
                    "is_bot": view.is_bot,
                }
            )

            return RecordedView(
                view_id=view.id,
                session_id=view.session_id,
                is_duplicate=view.is_duplicate,
                is_bot=view.is_bot,
            )

    async def qualify_view(
        self,
        view_id: int,
        duration: float,
        scroll_depth: Optional[float] = None,
    ) -> bool:
        """
        Store the reported duration and recompute qualification.

        Re-calling overwrites the previous duration. Returns False when
        the view does not exist (e.g. already purged).
        """
        async with self.database.session() as db:
            view = await db.get(ProductView, view_id)
            if not view:
                return False

            view.view_duration = duration
            view.is_qualified_view = is_qualifying_duration(duration)
            if scroll_depth is not None:
                view.scroll_depth = scroll_depth

            await db.commit()
            return True

    async def record_contact_click(self, view_id: int) -> bool:
        """
        Flag the view as having led to a contact click. Feeds CTR only.

        Counters move on the first click only.
        """
        async with self.database.session() as db:
            view = await db.get(ProductView, view_id)
            if not view:
                return False

            result = await db.execute(
                update(ProductView)
                .where(ProductView.id == view_id, ProductView.clicked_contact == False)  # noqa: E712
                .values(clicked_contact=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                await db.execute(
                    update(Product)
                    .where(Product.id == view.product_id)
                    .values(contact_clicks=Product.contact_clicks + 1)
                )
                await db.execute(
                    update(Vendor)
                    .where(Vendor.id == view.vendor_id)
                    .values(total_clicks=Vendor.total_clicks + 1)
                )
            await db.commit()
            return True
