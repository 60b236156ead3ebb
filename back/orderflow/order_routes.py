"""
Order API Routes

- Order creation (customer menu, waiter tablet, bar POS, cashier)
- Kitchen / bar display feed
- Station completion and status changes
- Payment undo
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from . import billing, completion, orders
from .db import get_session
from .errors import Forbidden
from .events import EventPublisher, get_publisher
from .models import (
    OrderCreate,
    OrderRead,
    OrderStatus,
    OrderStatusUpdate,
    Role,
    Station,
    UndoPaymentRequest,
    User,
)
from .permissions import ROLE_STATIONS, PermissionService, Permissions
from .security import PermissionChecker, get_optional_user
from .settings import Settings, get_settings

router = APIRouter()


@router.post("/orders", status_code=201)
def create_order(
    order_in: OrderCreate,
    actor: Annotated[User | None, Depends(get_optional_user)],
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
    app_settings: Settings = Depends(get_settings),
) -> dict:
    """Create an order. Anonymous callers may order, but only staff may discount."""
    order = orders.create_order(session, publisher, order_in, actor, app_settings)
    return {"status": "success", "data": OrderRead.from_order(order)}


@router.get("/orders")
def list_orders(
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.KDS_READ))],
    station: Station | None = Query(None, description="kitchen or bar; defaults to the caller's own station"),
    include_completed: bool = Query(False, description="Keep orders this station already finished"),
    session: Session = Depends(get_session),
) -> dict:
    if station is None:
        station = ROLE_STATIONS.get(current_user.role)
    return {
        "status": "success",
        "data": orders.list_station_orders(session, station, include_completed),
    }


@router.post("/orders/update-status")
def update_order_status(
    status_update: OrderStatusUpdate,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.ORDERS_UPDATE_STATUS))],
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> dict:
    is_admin = current_user.role == Role.admin
    station = status_update.station
    own_station = ROLE_STATIONS.get(current_user.role)

    if not is_admin:
        if station is not None and station != own_station:
            raise Forbidden(f"A {current_user.role.value} user cannot report for the {station.value} station")
        if station is None and status_update.new_status == OrderStatus.serving:
            station = own_station

    if status_update.new_status == OrderStatus.paid and not PermissionService.has_permission(
        current_user, Permissions.TABLES_CLEAR
    ):
        raise Forbidden("Only the cashier can mark orders paid")

    result = completion.update_order_status(
        session,
        publisher,
        status_update.order_id,
        status_update.new_status,
        station=station,
        override=is_admin,
    )
    return {
        "status": "success",
        "changed": result.changed,
        "data": OrderRead.from_order(result.order),
    }


@router.post("/orders/undo-payment")
def undo_payment(
    undo_request: UndoPaymentRequest,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.ORDERS_UNDO_PAYMENT))],
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
    app_settings: Settings = Depends(get_settings),
) -> dict:
    order = billing.undo_payment(
        session,
        publisher,
        undo_request.order_id,
        window_minutes=app_settings.undo_payment_window_minutes,
    )
    return {"status": "success", "data": OrderRead.from_order(order)}
