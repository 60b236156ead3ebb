"""
Order Creation Coordinator

Turns a submitted cart into a persisted order in a single transaction:
validate, name the destination, reserve stock, price with the server's own
menu prices, store a frozen copy of every line, then announce the order.
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlmodel import Session, select

from .db import transaction
from .errors import InvalidInput, ItemNotFound, Unauthorized
from .events import Event, EventPublisher, EventType
from .models import (
    OPEN_KDS_STATUSES,
    Category,
    DiningTable,
    MenuOption,
    Order,
    OrderCreate,
    OrderItem,
    OrderRead,
    OrderStatus,
    Station,
    TableStatus,
    User,
    money,
    percent,
    utcnow,
)
from .sequence import BAR_PREFIX, TAKEAWAY_PREFIX, business_day, next_display_name
from .settings import Settings
from .stock import lock_items, recompute_status, reserve, stock_snapshot

logger = logging.getLogger(__name__)

BAR_SOURCE = "bar"


def discount_breakdown(subtotal: Decimal, percentage: Decimal) -> tuple[Decimal, Decimal]:
    """Return (discount_amount, total) for a subtotal and a percentage rounded to two places."""
    subtotal = money(subtotal)
    discount_amount = money(subtotal * percent(percentage) / Decimal(100))
    return discount_amount, subtotal - discount_amount


def _validate(order_in: OrderCreate, actor: User | None) -> None:
    """Checks that need no database access; run before anything is touched."""
    if not order_in.cart:
        raise InvalidInput("Cart is empty")

    percentage = Decimal(order_in.discount_percentage)
    if percentage < 0 or percentage > 100:
        raise InvalidInput("Discount percentage must be between 0 and 100")
    if percentage > 0 and actor is None:
        raise Unauthorized("A login is required to apply discounts")

    is_bar = order_in.order_source == BAR_SOURCE
    if is_bar and order_in.table_name:
        raise InvalidInput("A bar order cannot also name a table")
    if not (order_in.table_name or is_bar or order_in.is_takeaway):
        raise InvalidInput("Table name or order type is required")


def _resolve_table_name(session: Session, order_in: OrderCreate, now: datetime | None, tz: str) -> str:
    if order_in.order_source == BAR_SOURCE:
        return next_display_name(session, BAR_PREFIX, business_day(now, tz))

    if order_in.table_name:
        table = session.exec(
            select(DiningTable)
            .where(DiningTable.name == order_in.table_name)
            .with_for_update()
        ).first()
        if table and table.status == TableStatus.available and not order_in.is_takeaway:
            table.status = TableStatus.occupied
            session.add(table)
        return order_in.table_name

    return next_display_name(session, TAKEAWAY_PREFIX, business_day(now, tz))


def _load_options(session: Session, order_in: OrderCreate) -> dict[int, MenuOption]:
    option_ids = {option_id for line in order_in.cart for option_id in line.selected_options}
    if not option_ids:
        return {}
    options = {
        option.id: option
        for option in session.exec(select(MenuOption).where(MenuOption.id.in_(option_ids))).all()
    }
    missing = sorted(option_ids - options.keys())
    if missing:
        raise InvalidInput(f"Unknown menu options: {missing}", {"option_ids": missing})
    return options


def create_order(
    session: Session,
    publisher: EventPublisher,
    order_in: OrderCreate,
    actor: User | None,
    app_settings: Settings,
    now: datetime | None = None,
) -> Order:
    _validate(order_in, actor)
    percentage = percent(order_in.discount_percentage)

    with transaction(session):
        table_name = _resolve_table_name(session, order_in, now, app_settings.business_timezone)

        menu_items = lock_items(session, [line.menu_item_id for line in order_in.cart])
        category_ids = {item.category_id for item in menu_items.values() if item.category_id is not None}
        categories: dict[int, Category] = {}
        if category_ids:
            categories = {
                category.id: category
                for category in session.exec(select(Category).where(Category.id.in_(category_ids))).all()
            }
        options = _load_options(session, order_in)

        subtotal = Decimal("0")
        lines: list[OrderItem] = []
        for line in order_in.cart:
            item = menu_items.get(line.menu_item_id)
            if item is None:
                raise ItemNotFound(line.menu_item_id)

            reserve(item, line.quantity, strict=app_settings.strict_stock_quantity)

            chosen = [options[option_id] for option_id in line.selected_options]
            unit_price = item.price + sum((option.price_add for option in chosen), Decimal("0"))

            # Price shown to the customer is never trusted
            if line.price is not None and money(line.price) != money(unit_price):
                logger.warning(
                    f"Submitted price {line.price} for item #{item.id} differs from menu price {unit_price}"
                )
            subtotal += unit_price * line.quantity

            category = categories.get(item.category_id)
            lines.append(
                OrderItem(
                    menu_item_id=item.id,
                    name=item.name,
                    category_id=item.category_id,
                    category_name=category.name if category else None,
                    station=category.station if category else None,
                    unit_price=unit_price,
                    quantity=line.quantity,
                    selected_options=list(line.selected_options),
                    selected_options_text=", ".join(option.label for option in chosen),
                    selected_options_text_en=", ".join(option.label_en for option in chosen if option.label_en),
                )
            )

        for item in menu_items.values():
            recompute_status(item)
            session.add(item)

        discount_amount, total = discount_breakdown(subtotal, percentage)
        order = Order(
            table_name=table_name,
            items=lines,
            subtotal=money(subtotal),
            discount_percentage=percentage,
            discount_amount=discount_amount,
            total=total,
            special_request=order_in.special_request or "",
            status=OrderStatus.pending,
            is_takeaway=order_in.is_takeaway,
            discount_by=actor.username if percentage > 0 and actor else None,
            completed_stations=0,
            created_at=now or utcnow(),
        )
        session.add(order)

    session.refresh(order)
    logger.info(f"Order #{order.id} created for {order.table_name} (total {order.total})")

    publisher.publish(Event(
        type=EventType.new_order,
        payload={"order": OrderRead.from_order(order).model_dump(mode="json")},
    ))
    stock_items = stock_snapshot(list(menu_items.values()))
    if stock_items:
        publisher.publish(Event(type=EventType.stock_update, payload={"items": stock_items}))

    return order


def list_station_orders(
    session: Session,
    station: Station | None,
    include_completed: bool = False,
) -> list[OrderRead]:
    """
    Open orders for a KDS screen, oldest first.

    Each order only carries the lines `station` prepares; orders with nothing
    for the station are left out, as are orders the station already finished
    unless `include_completed`. `station=None` returns every open order whole.
    """
    orders = session.exec(
        select(Order)
        .where(Order.status.in_(OPEN_KDS_STATUSES))
        .order_by(Order.created_at, Order.id)
    ).all()

    result = []
    for order in orders:
        if station is None:
            result.append(OrderRead.from_order(order))
            continue
        if not include_completed and order.completed.has(station):
            continue
        relevant = [item for item in order.items if item.station == station]
        if relevant:
            result.append(OrderRead.from_order(order, relevant))
    return result
