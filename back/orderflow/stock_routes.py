from typing import Annotated

from fastapi import APIRouter, Depends
from sqlmodel import Session

from . import stock
from .db import get_session
from .events import EventPublisher, get_publisher
from .models import StockItemRead, StockUpdate, User
from .permissions import Permissions
from .security import PermissionChecker
from .settings import Settings, get_settings

router = APIRouter(prefix="/stock")


@router.get("", response_model=list[StockItemRead])
def list_stock_items(
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.STOCK_READ))],
    session: Session = Depends(get_session),
):
    """All stock-managed menu items."""
    return stock.list_stock_items(session)


@router.get("/alerts", response_model=list[StockItemRead])
def list_stock_alerts(
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.STOCK_READ))],
    session: Session = Depends(get_session),
    app_settings: Settings = Depends(get_settings),
):
    return stock.low_stock_items(session, app_settings.low_stock_threshold)


@router.put("/{item_id}", response_model=StockItemRead)
def update_item_stock(
    item_id: int,
    stock_update: StockUpdate,
    current_user: Annotated[User, Depends(PermissionChecker(Permissions.STOCK_MANAGE))],
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
):
    return stock.set_stock(session, publisher, item_id, stock_update.current_stock)
