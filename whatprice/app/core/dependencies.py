"""
Service dependencies for FastAPI.

Billing components are built per request around the application's
Database instance.
"""

from fastapi import Depends

from whatprice.app.db.session import Database, get_database
from whatprice.app.domain.billing.cpv_charging import CpvChargingService
from whatprice.app.domain.billing.view_qualification import ViewQualificationEngine


def get_view_engine(database: Database = Depends(get_database)) -> ViewQualificationEngine:
    return ViewQualificationEngine(database)


def get_charging_service(database: Database = Depends(get_database)) -> CpvChargingService:
    return CpvChargingService(database)
