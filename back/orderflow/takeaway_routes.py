from typing import Annotated

from fastapi import APIRouter, Depends
from sqlmodel import Session

from . import billing
from .db import get_session
from .events import EventPublisher, get_publisher
from .models import TableNameRequest, User
from .permissions import Permissions
from .security import PermissionChecker
from .sequence import BAR_PREFIX, business_day, peek_next_number
from .settings import Settings, get_settings

router = APIRouter(prefix="/takeaway-orders")


@router.get("")
def list_takeaway_orders(
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.TABLES_BILLING))],
    session: Session = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> dict:
    return {
        "status": "success",
        "data": {"occupied_takeaways": billing.takeaway_overview(session, app_settings.tax_rate)},
    }


@router.post("/clear")
def clear_takeaway_order(
    table_request: TableNameRequest,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.TABLES_CLEAR))],
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> dict:
    order_ids = billing.clear_table(session, publisher, table_request.table_name, current_user)
    return {
        "status": "success",
        "message": f"Order {table_request.table_name} cleared successfully.",
        "order_ids": order_ids,
    }


@router.get("/next-bar-number")
def get_next_bar_number(
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.SEQUENCE_READ))],
    session: Session = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> dict:
    day = business_day(tz=app_settings.business_timezone)
    return {"status": "success", "next_number": peek_next_number(session, BAR_PREFIX, day)}
