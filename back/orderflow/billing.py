"""
Billing Aggregator

A table's bill is every open (not yet paid) order under its name, summed.
Discounts are stored per order, so applying one rewrites all open orders of
the table together.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlmodel import Session, or_, select

from .db import transaction
from .errors import Conflict, InvalidInput, NotFound
from .events import Event, EventPublisher, EventType
from .models import (
    BillingOverview,
    DiningTable,
    Order,
    OrderItemRead,
    OrderRead,
    OrderStatus,
    TableBill,
    TableStatus,
    TableStatusRead,
    User,
    money,
    percent,
    utcnow,
)
from .orders import discount_breakdown
from .sequence import BAR_PREFIX, TAKEAWAY_PREFIX

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _open_orders(session: Session, table_name: str, lock: bool = False) -> list[Order]:
    statement = (
        select(Order)
        .where(Order.table_name == table_name)
        .where(Order.status != OrderStatus.paid)
        .order_by(Order.created_at, Order.id)
    )
    if lock:
        statement = statement.with_for_update()
    return list(session.exec(statement).all())


def _locked_table(session: Session, table_name: str) -> DiningTable | None:
    return session.exec(
        select(DiningTable).where(DiningTable.name == table_name).with_for_update()
    ).first()


def compute_bill(
    table_name: str,
    orders: list[Order],
    tax_rate: Decimal,
    table_status: TableStatus | None = None,
) -> TableBill:
    """Sum open orders (oldest first) into one bill and add tax on the discounted total."""
    subtotal = sum((order.subtotal for order in orders), Decimal("0"))
    discount_amount = sum((order.discount_amount for order in orders), Decimal("0"))
    total = sum((order.total for order in orders), Decimal("0"))
    vat_amount = money(total * Decimal(tax_rate))

    return TableBill(
        table_name=table_name,
        status=table_status,
        order_ids=[order.id for order in orders],
        items=[
            OrderItemRead.model_validate(item, from_attributes=True)
            for order in orders
            for item in order.items
        ],
        subtotal=money(subtotal),
        discount_amount=money(discount_amount),
        total=money(total),
        discount_percentage=orders[0].discount_percentage if orders else Decimal("0"),
        tax_rate=Decimal(tax_rate),
        vat_amount=vat_amount,
        grand_total=money(total) + vat_amount,
    )


def table_bill(session: Session, table_name: str, tax_rate: Decimal) -> TableBill | None:
    orders = _open_orders(session, table_name)
    if not orders:
        return None
    table = session.exec(select(DiningTable).where(DiningTable.name == table_name)).first()
    return compute_bill(table_name, orders, tax_rate, table.status if table else None)


def _group_open_orders(orders: list[Order]) -> dict[str, list[Order]]:
    grouped: dict[str, list[Order]] = {}
    for order in orders:
        grouped.setdefault(order.table_name, []).append(order)
    return grouped


def billing_overview(session: Session, tax_rate: Decimal) -> BillingOverview:
    """Cashier view: every table name, plus a bill for each table with open orders."""
    tables = session.exec(
        select(DiningTable).order_by(DiningTable.sort_order, DiningTable.name)
    ).all()
    open_orders = session.exec(
        select(Order)
        .where(Order.status != OrderStatus.paid)
        .order_by(Order.created_at, Order.id)
    ).all()
    grouped = _group_open_orders(list(open_orders))

    occupied = {
        table.name: compute_bill(table.name, grouped[table.name], tax_rate, table.status)
        for table in tables
        if table.name in grouped
    }
    return BillingOverview(all_tables=[table.name for table in tables], occupied_tables=occupied)


def takeaway_overview(session: Session, tax_rate: Decimal) -> dict[str, TableBill]:
    """Open bills for the generated Takeaway-n and Bar-n destinations."""
    open_orders = session.exec(
        select(Order)
        .where(Order.status != OrderStatus.paid)
        .where(or_(
            Order.table_name.startswith(f"{TAKEAWAY_PREFIX}-"),
            Order.table_name.startswith(f"{BAR_PREFIX}-"),
        ))
        .order_by(Order.created_at, Order.id)
    ).all()
    grouped = _group_open_orders(list(open_orders))
    return {
        name: compute_bill(name, orders, tax_rate)
        for name, orders in sorted(grouped.items())
    }


def table_status(session: Session, table_name: str) -> TableStatusRead:
    table = session.exec(select(DiningTable).where(DiningTable.name == table_name)).first()
    if table is None:
        raise NotFound(f"Table {table_name} not found", {"table_name": table_name})
    return TableStatusRead(
        table_name=table.name,
        status=table.status,
        has_open_orders=bool(_open_orders(session, table_name)),
    )


def clear_table(
    session: Session,
    publisher: EventPublisher,
    table_name: str,
    actor: User | None = None,
) -> list[int]:
    """Mark every open order of the table paid and free the table. Returns the order ids."""
    with transaction(session):
        table = _locked_table(session, table_name)
        orders = _open_orders(session, table_name, lock=True)
        if table is None and not orders:
            raise NotFound(f"Table {table_name} not found", {"table_name": table_name})

        now = utcnow()
        for order in orders:
            order.status_before_payment = order.status
            order.status = OrderStatus.paid
            order.paid_at = now
            order.paid_by = actor.username if actor else None
            order.updated_at = now
            session.add(order)
        if table is not None:
            table.status = TableStatus.available
            session.add(table)
        order_ids = [order.id for order in orders]

    logger.info(f"Table {table_name} cleared, {len(order_ids)} order(s) paid")
    publisher.publish(Event(
        type=EventType.table_cleared,
        payload={"table_name": table_name, "order_ids": order_ids},
    ))
    return order_ids


def undo_payment(
    session: Session,
    publisher: EventPublisher,
    order_id: int,
    window_minutes: int = 0,
    now: datetime | None = None,
) -> Order:
    """
    Put a paid order back to where it was before payment.

    Only the status changes; stock and table occupancy stay as they are.
    With `window_minutes` > 0, only recent payments can be undone.
    """
    now = now or utcnow()
    with transaction(session):
        order = session.exec(select(Order).where(Order.id == order_id).with_for_update()).first()
        if order is None:
            raise NotFound(f"Order {order_id} not found", {"order_id": order_id})
        if order.status != OrderStatus.paid:
            raise Conflict(f"Order #{order_id} is not paid", {"order_id": order_id})
        if window_minutes > 0 and order.paid_at is not None:
            if _as_utc(now) - _as_utc(order.paid_at) > timedelta(minutes=window_minutes):
                raise Conflict(
                    f"Payment of order #{order_id} is older than {window_minutes} minutes",
                    {"order_id": order_id},
                )

        order.status = order.status_before_payment or OrderStatus.serving
        order.status_before_payment = None
        order.paid_at = None
        order.paid_by = None
        order.updated_at = now
        session.add(order)

    session.refresh(order)
    logger.info(f"Payment of order #{order.id} undone, back to {order.status.value}")
    publisher.publish(Event(
        type=EventType.order_status_update,
        payload={"order": OrderRead.from_order(order).model_dump(mode="json")},
    ))
    return order


def apply_discount(
    session: Session,
    publisher: EventPublisher,
    table_name: str,
    percentage: Decimal,
    actor: User,
) -> list[Order]:
    """Rewrite the discount on every open order of a table, each from its own subtotal."""
    percentage = percent(percentage)
    if percentage < 0 or percentage > 100:
        raise InvalidInput("Discount percentage must be between 0 and 100")

    with transaction(session):
        orders = _open_orders(session, table_name, lock=True)
        if not orders:
            raise NotFound(f"No active orders for table {table_name}", {"table_name": table_name})
        for order in orders:
            order.discount_amount, order.total = discount_breakdown(order.subtotal, percentage)
            order.discount_percentage = percentage
            order.discount_by = actor.username
            order.updated_at = utcnow()
            session.add(order)

    logger.info(f"Discount of {percentage}% applied to {table_name} by {actor.username}")
    publisher.publish(Event(
        type=EventType.discount_applied,
        payload={
            "table_name": table_name,
            "discount_percentage": str(percentage),
            "order_ids": [order.id for order in orders],
        },
    ))
    return orders


def request_bill(session: Session, publisher: EventPublisher, table_name: str) -> DiningTable:
    with transaction(session):
        table = _locked_table(session, table_name)
        if table is None:
            raise NotFound(f"Table {table_name} not found", {"table_name": table_name})
        if not _open_orders(session, table_name):
            raise Conflict(f"Table {table_name} has no open orders", {"table_name": table_name})
        table.status = TableStatus.billing
        session.add(table)

    session.refresh(table)
    publisher.publish(Event(
        type=EventType.table_status_update,
        payload={"table_name": table.name, "status": table.status.value},
    ))
    return table
