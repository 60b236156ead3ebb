"""
Stock Ledger

The only writer of `MenuItem.current_stock` and `MenuItem.stock_status`:
- reservation during order creation (same transaction as the order insert)
- stock flag recomputation
- manual restock
- low stock alerts
"""

import logging

from sqlmodel import Session, select

from .db import transaction
from .errors import NotFound, OutOfStock
from .events import Event, EventPublisher, EventType
from .models import MenuItem, StockItemRead, StockStatus

logger = logging.getLogger(__name__)


def lock_items(session: Session, item_ids: list[int]) -> dict[int, MenuItem]:
    """
    Load menu items FOR UPDATE, always in ascending id order so two carts
    touching the same items queue up instead of deadlocking.
    """
    if not item_ids:
        return {}
    statement = (
        select(MenuItem)
        .where(MenuItem.id.in_(sorted(set(item_ids))))
        .order_by(MenuItem.id)
        .with_for_update()
    )
    return {item.id: item for item in session.exec(statement).all()}


def reserve(item: MenuItem, quantity: int, strict: bool = False) -> None:
    """
    Take `quantity` units of `item`.

    Out-of-stock items are refused. Stock-managed items are decremented with a
    floor at zero; with `strict`, asking for more than what is left is refused
    as well. Items without stock management are always available.
    """
    if item.stock_status == StockStatus.out_of_stock:
        raise OutOfStock(item.id, item.name, item.current_stock)
    if not item.manage_stock:
        return
    if strict and item.current_stock < quantity:
        raise OutOfStock(item.id, item.name, item.current_stock)
    item.current_stock = max(item.current_stock - quantity, 0)


def recompute_status(item: MenuItem) -> StockStatus:
    if item.manage_stock and item.current_stock <= 0:
        item.stock_status = StockStatus.out_of_stock
    else:
        item.stock_status = StockStatus.in_stock
    return item.stock_status


def stock_snapshot(items: list[MenuItem]) -> list[dict]:
    """Payload for `stockUpdate` events."""
    return [
        StockItemRead.model_validate(item, from_attributes=True).model_dump(mode="json")
        for item in items
        if item.manage_stock
    ]


def set_stock(
    session: Session,
    publisher: EventPublisher,
    item_id: int,
    quantity: int,
) -> MenuItem:
    """Manual restock / stock count correction."""
    with transaction(session):
        item = lock_items(session, [item_id]).get(item_id)
        if item is None:
            raise NotFound(f"Menu item {item_id} not found", {"item_id": item_id})
        item.current_stock = max(quantity, 0)
        recompute_status(item)
        session.add(item)

    session.refresh(item)
    logger.info(f"Stock for '{item.name}' set to {item.current_stock} ({item.stock_status.value})")
    publisher.publish(Event(type=EventType.stock_update, payload={"items": stock_snapshot([item])}))
    return item


def list_stock_items(session: Session) -> list[MenuItem]:
    statement = (
        select(MenuItem)
        .where(MenuItem.manage_stock == True)  # noqa: E712
        .order_by(MenuItem.name)
    )
    return list(session.exec(statement).all())


def low_stock_items(session: Session, threshold: int) -> list[MenuItem]:
    """Stock-managed items still on sale but running low, lowest first."""
    statement = (
        select(MenuItem)
        .where(MenuItem.manage_stock == True)  # noqa: E712
        .where(MenuItem.stock_status == StockStatus.in_stock)
        .where(MenuItem.current_stock < threshold)
        .order_by(MenuItem.current_stock.asc())
    )
    return list(session.exec(statement).all())
