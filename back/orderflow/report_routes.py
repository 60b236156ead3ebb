from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlmodel import Session

from . import reports
from .db import get_session
from .models import User
from .permissions import Permissions
from .security import PermissionChecker
from .sequence import business_day
from .settings import Settings, get_settings

router = APIRouter(prefix="/dashboard")


@router.get("")
def get_sales_dashboard(
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.REPORTS_READ))],
    session: Session = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    """Paid-order sales between two local dates (both inclusive, default today)."""
    today = business_day(tz=app_settings.business_timezone)
    dashboard = reports.sales_dashboard(
        session,
        start_date or today,
        end_date or today,
        app_settings.business_timezone,
    )
    return {"status": "success", "data": dashboard}


@router.get("/kds")
def get_station_dashboard(
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.REPORTS_READ))],
    session: Session = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
    day: date | None = None,
):
    tz = app_settings.business_timezone
    return {"status": "success", "data": reports.station_dashboard(session, day or business_day(tz=tz), tz)}
