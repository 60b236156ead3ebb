"""Table bills, clearing, discounts, bill requests and payment undo."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlmodel import select

from orderflow import billing
from orderflow.completion import update_order_status
from orderflow.errors import Conflict, InvalidInput, NotFound
from orderflow.events import EventType
from orderflow.models import (
    CartLine,
    DiningTable,
    MenuItem,
    Order,
    OrderCreate,
    OrderStatus,
    Role,
    Station,
    TableStatus,
)
from orderflow.orders import create_order

TAX = Decimal("0.07")
T0 = datetime(2026, 3, 14, 5, 0, tzinfo=timezone.utc)


@pytest.fixture
def order_for(session, publisher, app_settings, menu):
    """order_for(table_name, [(item_id, qty), ...], minutes=0) places an order at T0 + minutes."""

    def make(table_name, cart, minutes=0, **fields):
        order_in = OrderCreate(
            cart=[CartLine(menu_item_id=item_id, quantity=qty) for item_id, qty in cart],
            table_name=table_name,
            **fields,
        )
        order = create_order(session, publisher, order_in, None, app_settings, now=T0 + timedelta(minutes=minutes))
        publisher.clear()
        return order

    return make


def table_named(session, name) -> DiningTable:
    return session.exec(select(DiningTable).where(DiningTable.name == name)).one()


def test_compute_bill_sums_open_orders(order_for, menu, session):
    first = order_for("A1", [(menu.burger, 2)])
    second = order_for("A1", [(menu.mojito, 1)], minutes=5)

    bill = billing.table_bill(session, "A1", TAX)

    assert bill.order_ids == [first.id, second.id]
    assert [item.name for item in bill.items] == ["Burger", "Mojito"]
    assert bill.subtotal == Decimal("220.00")
    assert bill.total == Decimal("220.00")
    assert bill.vat_amount == Decimal("15.40")
    assert bill.grand_total == Decimal("235.40")
    assert bill.status == TableStatus.occupied


def test_vat_rounds_half_up(order_for, menu, session):
    order_for("A1", [(menu.water, 1)])
    # 10 * 0.0725 = 0.725
    bill = billing.table_bill(session, "A1", Decimal("0.0725"))
    assert bill.vat_amount == Decimal("0.73")
    assert bill.grand_total == Decimal("10.73")


def test_no_bill_without_open_orders(session, menu):
    assert billing.table_bill(session, "A1", TAX) is None


def test_overview_lists_every_table(order_for, menu, session):
    order_for("A2", [(menu.burger, 1)])
    order_for("Garden", [(menu.burger, 1)])

    overview = billing.billing_overview(session, TAX)

    # sort_order first, then name
    assert overview.all_tables == ["A1", "B1", "A2"]
    assert list(overview.occupied_tables) == ["A2"]
    assert overview.occupied_tables["A2"].total == Decimal("50.00")


def test_takeaway_overview(order_for, menu, session, publisher, app_settings):
    create_order(session, publisher, OrderCreate(cart=[CartLine(menu_item_id=menu.beer, quantity=1)], order_source="bar"),
                 None, app_settings, now=T0)
    create_order(session, publisher, OrderCreate(cart=[CartLine(menu_item_id=menu.burger, quantity=1)], is_takeaway=True),
                 None, app_settings, now=T0)
    order_for("A1", [(menu.burger, 1)])

    overview = billing.takeaway_overview(session, TAX)

    assert sorted(overview) == ["Bar-1", "Takeaway-1"]
    assert overview["Bar-1"].total == Decimal("80.00")


def test_clear_table_pays_every_open_order(order_for, menu, session, publisher, users):
    first = order_for("A1", [(menu.burger, 1)])
    second = order_for("A1", [(menu.beer, 1)], minutes=1)
    other = order_for("A2", [(menu.burger, 1)])
    update_order_status(session, publisher, first.id, OrderStatus.cooking)
    publisher.clear()

    order_ids = billing.clear_table(session, publisher, "A1", users[Role.cashier])

    assert order_ids == [first.id, second.id]
    for order_id, before in ((first.id, OrderStatus.cooking), (second.id, OrderStatus.pending)):
        order = session.get(Order, order_id)
        assert order.status == OrderStatus.paid
        assert order.status_before_payment == before
        assert order.paid_by == "cashier-user"
        assert order.paid_at is not None
    assert session.get(Order, other.id).status == OrderStatus.pending

    assert table_named(session, "A1").status == TableStatus.available
    overview = billing.billing_overview(session, TAX)
    assert "A1" not in overview.occupied_tables
    assert "A2" in overview.occupied_tables

    [event] = publisher.events
    assert event.type == EventType.table_cleared
    assert event.payload == {"table_name": "A1", "order_ids": [first.id, second.id]}


def test_clear_table_without_orders_frees_it(session, menu, publisher):
    table = table_named(session, "B1")
    table.status = TableStatus.billing
    session.add(table)
    session.commit()

    assert billing.clear_table(session, publisher, "B1") == []
    assert table_named(session, "B1").status == TableStatus.available


def test_clear_unknown_table(session, menu, publisher):
    with pytest.raises(NotFound):
        billing.clear_table(session, publisher, "Nowhere")
    assert publisher.events == []


def test_clear_takeaway_destination(session, menu, publisher, app_settings):
    create_order(session, publisher, OrderCreate(cart=[CartLine(menu_item_id=menu.beer, quantity=1)], order_source="bar"),
                 None, app_settings, now=T0)
    assert len(billing.clear_table(session, publisher, "Bar-1")) == 1
    assert billing.takeaway_overview(session, TAX) == {}


def test_apply_discount_rewrites_every_open_order(order_for, menu, session, publisher, users):
    first = order_for("A1", [(menu.steak, 1)])
    second = order_for("A1", [(menu.burger, 1)], minutes=1)

    billing.apply_discount(session, publisher, "A1", Decimal("10"), users[Role.cashier])

    first, second = session.get(Order, first.id), session.get(Order, second.id)
    assert (first.discount_amount, first.total) == (Decimal("20.00"), Decimal("180.00"))
    assert (second.discount_amount, second.total) == (Decimal("5.00"), Decimal("45.00"))
    assert first.discount_by == second.discount_by == "cashier-user"

    bill = billing.table_bill(session, "A1", TAX)
    assert bill.discount_percentage == Decimal("10")
    assert bill.total == Decimal("225.00")
    assert bill.grand_total == Decimal("240.75")

    [event] = publisher.events
    assert event.type == EventType.discount_applied
    assert event.payload["discount_percentage"] == "10"


def test_discount_scenario(order_for, menu, session, publisher, users):
    order = order_for("A1", [(menu.burger, 4)])
    billing.apply_discount(session, publisher, "A1", Decimal("10"), users[Role.admin])
    order = session.get(Order, order.id)
    assert (order.subtotal, order.discount_amount, order.total) == (Decimal("200.00"), Decimal("20.00"), Decimal("180.00"))


def test_discount_amount_matches_the_stored_percentage(order_for, menu, session, publisher, users):
    order = order_for("A1", [(menu.steak, 1)])
    billing.apply_discount(session, publisher, "A1", Decimal("33.335"), users[Role.cashier])

    order = session.get(Order, order.id)
    assert order.discount_percentage == Decimal("33.34")
    assert (order.discount_amount, order.total) == (Decimal("66.68"), Decimal("133.32"))
    assert publisher.events[-1].payload["discount_percentage"] == "33.34"


def test_discount_replaces_previous_discount(order_for, menu, session, publisher, users):
    order = order_for("A1", [(menu.burger, 4)])
    billing.apply_discount(session, publisher, "A1", Decimal("10"), users[Role.cashier])
    billing.apply_discount(session, publisher, "A1", Decimal("0"), users[Role.cashier])
    assert session.get(Order, order.id).total == Decimal("200.00")


def test_discount_validation(order_for, menu, session, publisher, users):
    with pytest.raises(NotFound):
        billing.apply_discount(session, publisher, "A1", Decimal("10"), users[Role.cashier])
    order_for("A1", [(menu.burger, 1)])
    with pytest.raises(InvalidInput):
        billing.apply_discount(session, publisher, "A1", Decimal("101"), users[Role.cashier])
    assert publisher.events == []


def test_discount_skips_paid_orders(order_for, menu, session, publisher, users):
    paid = order_for("A1", [(menu.burger, 1)])
    billing.clear_table(session, publisher, "A1")
    fresh = order_for("A1", [(menu.burger, 2)])

    billing.apply_discount(session, publisher, "A1", Decimal("50"), users[Role.cashier])

    assert session.get(Order, paid.id).discount_amount == Decimal("0")
    assert session.get(Order, fresh.id).total == Decimal("50.00")


def test_request_bill(order_for, menu, session, publisher):
    order_for("A1", [(menu.burger, 1)])

    table = billing.request_bill(session, publisher, "A1")

    assert table.status == TableStatus.billing
    [event] = publisher.events
    assert event.payload == {"table_name": "A1", "status": "Billing"}


def test_request_bill_needs_a_table_with_orders(session, menu, publisher):
    with pytest.raises(NotFound):
        billing.request_bill(session, publisher, "Nowhere")
    with pytest.raises(Conflict):
        billing.request_bill(session, publisher, "A1")


def test_table_status(order_for, menu, session):
    assert billing.table_status(session, "A1").has_open_orders is False
    order_for("A1", [(menu.burger, 1)])

    status = billing.table_status(session, "A1")
    assert status.status == TableStatus.occupied
    assert status.has_open_orders is True

    with pytest.raises(NotFound):
        billing.table_status(session, "Nowhere")


def test_undo_payment_restores_previous_status(order_for, menu, session, publisher):
    order = order_for("A1", [(menu.burger, 1), (menu.beer, 1)])
    update_order_status(session, publisher, order.id, OrderStatus.serving, station=Station.kitchen)
    billing.clear_table(session, publisher, "A1")
    publisher.clear()

    restored = billing.undo_payment(session, publisher, order.id)

    assert restored.status == OrderStatus.pending
    assert restored.paid_at is None
    assert restored.paid_by is None
    assert restored.status_before_payment is None
    [event] = publisher.events
    assert event.type == EventType.order_status_update


def test_undo_payment_is_status_only(order_for, menu, session, publisher):
    order = order_for("A1", [(menu.beer, 2)])
    billing.clear_table(session, publisher, "A1")

    billing.undo_payment(session, publisher, order.id)

    assert session.get(MenuItem, menu.beer).current_stock == 3
    assert table_named(session, "A1").status == TableStatus.available
    assert billing.table_bill(session, "A1", TAX).order_ids == [order.id]


def test_undo_payment_window(order_for, menu, session, publisher):
    order = order_for("A1", [(menu.burger, 1)])
    billing.clear_table(session, publisher, "A1")
    paid_at = session.get(Order, order.id).paid_at

    with pytest.raises(Conflict):
        billing.undo_payment(session, publisher, order.id, window_minutes=2, now=paid_at + timedelta(minutes=3))

    restored = billing.undo_payment(session, publisher, order.id, window_minutes=2, now=paid_at + timedelta(minutes=1))
    assert restored.status == OrderStatus.pending


def test_undo_payment_needs_a_paid_order(order_for, menu, session, publisher):
    order = order_for("A1", [(menu.burger, 1)])
    with pytest.raises(Conflict):
        billing.undo_payment(session, publisher, order.id)
    with pytest.raises(NotFound):
        billing.undo_payment(session, publisher, 404)
