from typing import Annotated

from fastapi import APIRouter, Depends
from sqlmodel import Session

from . import billing
from .db import get_session
from .errors import NotFound
from .events import EventPublisher, get_publisher
from .models import DiscountRequest, TableNameRequest, User
from .permissions import Permissions
from .security import PermissionChecker
from .settings import Settings, get_settings

router = APIRouter(prefix="/tables")


@router.get("")
def list_tables_with_bills(
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.TABLES_BILLING))],
    session: Session = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> dict:
    """Cashier view: all table names, and the open bill of each occupied table."""
    return {"status": "success", "data": billing.billing_overview(session, app_settings.tax_rate)}


@router.get("/status/{table_name}")
def get_table_status(table_name: str, session: Session = Depends(get_session)) -> dict:
    """Public endpoint - used by the customer menu."""
    return {"status": "success", "data": billing.table_status(session, table_name)}


@router.get("/bill/{table_name}")
def get_table_bill(
    table_name: str,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.TABLES_BILLING))],
    session: Session = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
) -> dict:
    bill = billing.table_bill(session, table_name, app_settings.tax_rate)
    if bill is None:
        raise NotFound(f"Table {table_name} has no open bill", {"table_name": table_name})
    return {"status": "success", "data": bill}


@router.post("/clear")
def clear_table(
    table_request: TableNameRequest,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.TABLES_CLEAR))],
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> dict:
    order_ids = billing.clear_table(session, publisher, table_request.table_name, current_user)
    return {
        "status": "success",
        "message": f"Table {table_request.table_name} cleared successfully.",
        "order_ids": order_ids,
    }


@router.post("/apply-discount")
def apply_discount(
    discount_request: DiscountRequest,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.TABLES_DISCOUNT))],
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> dict:
    billing.apply_discount(session, publisher, discount_request.table_name, discount_request.discount_percentage, current_user)
    return {
        "status": "success",
        "message": f"Discount of {discount_request.discount_percentage}% applied.",
    }


@router.post("/request-bill")
def request_bill(
    table_request: TableNameRequest,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.TABLES_REQUEST_BILL))],
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> dict:
    table = billing.request_bill(session, publisher, table_request.table_name)
    return {"status": "success", "table_name": table.name, "table_status": table.status.value}
