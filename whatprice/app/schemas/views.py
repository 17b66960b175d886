"""
View tracking schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional

from whatprice.app.models.billing_enums import ViewType, ChargeRefusal


class ViewCreate(BaseModel):
    """Schema for recording a product page view."""
    product_id: int = Field(..., gt=0)
    session_id: Optional[str] = Field(None, max_length=64)
    view_type: ViewType = ViewType.DIRECT
    master_product_id: Optional[int] = None
    user_id: Optional[int] = None
    search_query: Optional[str] = Field(None, max_length=255)


class ViewCreateResponse(BaseModel):
    success: bool = True
    view_id: int
    session_id: str
    is_duplicate: bool
    is_bot: bool


class ViewQualifyRequest(BaseModel):
    """Client-reported time on page."""
    view_id: int
    duration: float = Field(..., ge=0)  # seconds
    scroll_depth: Optional[float] = Field(None, ge=0, le=100)
    clicked_contact: bool = False


class ViewQualifyResponse(BaseModel):
    success: bool
    charged: bool = False
    reason: Optional[ChargeRefusal] = None


class ViewClickRequest(BaseModel):
    view_id: int


class ViewClickResponse(BaseModel):
    success: bool
