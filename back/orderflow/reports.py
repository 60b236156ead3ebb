"""
Sales reports for the admin dashboard.

Only paid orders count. Days and hours are the restaurant's local ones, and
per-station figures come from the frozen order lines, so renaming or
repricing the menu later does not rewrite past sales.
"""

import logging
from collections import Counter, defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlmodel import Session, select

from .errors import InvalidInput
from .models import (
    DiscountedOrder,
    ItemSales,
    Order,
    OrderStatus,
    SalesDashboard,
    SalesKpis,
    Station,
    StationDashboard,
    StationSales,
    money,
)

logger = logging.getLogger(__name__)

TOP_ITEMS_LIMIT = 5
UNCATEGORIZED = "Uncategorized"


def _local_time(value: datetime, tz: str) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(tz))


def paid_orders_between(session: Session, start_day: date, end_day: date, tz: str) -> list[Order]:
    """Paid orders whose local creation day falls in [start_day, end_day], oldest first."""
    orders = session.exec(
        select(Order)
        .where(Order.status == OrderStatus.paid)
        .order_by(Order.created_at, Order.id)
    ).all()
    return [
        order for order in orders
        if start_day <= _local_time(order.created_at, tz).date() <= end_day
    ]


def sales_dashboard(session: Session, start_day: date, end_day: date, tz: str) -> SalesDashboard:
    if start_day > end_day:
        raise InvalidInput(
            "Start date must not be after end date",
            {"start_date": start_day.isoformat(), "end_date": end_day.isoformat()},
        )

    orders = paid_orders_between(session, start_day, end_day, tz)

    total_sales = sum((order.subtotal for order in orders), Decimal("0"))
    total_discount = sum((order.discount_amount for order in orders), Decimal("0"))
    net_revenue = sum((order.total for order in orders), Decimal("0"))
    average = money(net_revenue / len(orders)) if orders else Decimal("0")

    sales_by_day: dict[date, Decimal] = {}
    sales_by_hour = [Decimal("0")] * 24
    quantities: dict[Station, Counter] = {station: Counter() for station in Station}
    category_sales: dict[Station, dict[str, Decimal]] = {station: defaultdict(Decimal) for station in Station}

    for order in orders:
        local = _local_time(order.created_at, tz)
        sales_by_day[local.date()] = sales_by_day.get(local.date(), Decimal("0")) + order.total
        sales_by_hour[local.hour] += order.total

        for item in order.items:
            if item.station is None:
                continue
            quantities[item.station][item.name] += item.quantity
            category_sales[item.station][item.category_name or UNCATEGORIZED] += item.unit_price * item.quantity

    logger.info(f"Sales dashboard {start_day}..{end_day}: {len(orders)} paid orders")
    return SalesDashboard(
        start_date=start_day,
        end_date=end_day,
        kpis=SalesKpis(
            total_sales=money(total_sales),
            net_revenue=money(net_revenue),
            average_order_value=average,
            total_orders=len(orders),
            total_discount=money(total_discount),
        ),
        sales_by_day={day: money(total) for day, total in sales_by_day.items()},
        sales_by_hour=[money(total) for total in sales_by_hour],
        top_selling_items={
            station: [
                ItemSales(name=name, quantity=quantity)
                # Ties go to the name that sorts first
                for name, quantity in sorted(counts.items(), key=lambda pair: (-pair[1], pair[0]))[:TOP_ITEMS_LIMIT]
            ]
            for station, counts in quantities.items()
        },
        sales_by_category={
            station: {
                name: money(total)
                for name, total in sorted(totals.items(), key=lambda pair: (-pair[1], pair[0]))
            }
            for station, totals in category_sales.items()
        },
    )


def station_dashboard(session: Session, day: date, tz: str) -> StationDashboard:
    """One day of paid orders split by the station that prepared them, plus every discounted order."""
    orders = paid_orders_between(session, day, day, tz)

    order_ids: dict[Station, set[int]] = {station: set() for station in Station}
    station_totals = {station: Decimal("0") for station in Station}
    for order in orders:
        for item in order.items:
            if item.station is None:
                continue
            order_ids[item.station].add(order.id)
            station_totals[item.station] += item.unit_price * item.quantity

    discounted = [order for order in reversed(orders) if order.discount_amount > 0]
    return StationDashboard(
        summary_date=day,
        total_orders=len(orders),
        net_revenue=money(sum((order.total for order in orders), Decimal("0"))),
        station_summary={
            station: StationSales(order_count=len(order_ids[station]), total_sales=money(station_totals[station]))
            for station in Station
        },
        discounted_orders=[
            DiscountedOrder(
                id=order.id,
                table_name=order.table_name,
                discount_percentage=order.discount_percentage,
                discount_amount=order.discount_amount,
                total=order.total,
                discount_by=order.discount_by,
            )
            for order in discounted
        ],
    )
