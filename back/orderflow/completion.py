"""
Station Completion Tracker

An order is servable only once every station owning at least one of its lines
has reported done. Each report is a read-modify-write on the locked order
row, so simultaneous kitchen and bar reports cannot lose each other.
"""

import logging
from typing import NamedTuple

from sqlmodel import Session, select

from .db import transaction
from .errors import Conflict, InvalidInput, NotFound
from .events import Event, EventPublisher, EventType
from .models import (
    STATUS_RANK,
    Order,
    OrderRead,
    OrderStatus,
    Station,
    StationSet,
    utcnow,
)

logger = logging.getLogger(__name__)


class StatusChange(NamedTuple):
    order: Order
    changed: bool


def _set_status(order: Order, new_status: OrderStatus, override: bool) -> None:
    if not override and STATUS_RANK[new_status] < STATUS_RANK[order.status]:
        raise Conflict(
            f"Order #{order.id} cannot go back from {order.status.value} to {new_status.value}",
            {"order_id": order.id, "status": order.status.value},
        )
    if new_status == OrderStatus.paid:
        order.status_before_payment = order.status
        order.paid_at = utcnow()
    order.status = new_status


def _report_station(order: Order, station: Station) -> bool:
    """Add `station` to the completion set. Returns False when it was already there."""
    required = order.required_stations()
    if not required.has(station):
        raise Conflict(
            f"Order #{order.id} has nothing for the {station.value} station",
            {"order_id": order.id, "station": station.value},
        )

    completed = order.completed
    if completed.has(station):
        return False

    completed |= StationSet.of(station)
    order.completed_stations = int(completed)
    if required.issubset(completed):
        order.status = OrderStatus.serving
        logger.info(f"Order #{order.id} complete at all stations, now serving")
    return True


def update_order_status(
    session: Session,
    publisher: EventPublisher,
    order_id: int,
    new_status: OrderStatus,
    station: Station | None = None,
    override: bool = False,
) -> StatusChange:
    """
    Drive an order's status.

    `Serving` with a station is a completion report for that station; the
    order only moves to `Serving` when every required station has reported.
    Reporting twice is a no-op and publishes nothing. Any other status is a
    direct transition, forward only unless `override`.
    """
    with transaction(session):
        order = session.exec(select(Order).where(Order.id == order_id).with_for_update()).first()
        if order is None:
            raise NotFound(f"Order {order_id} not found", {"order_id": order_id})
        if order.status == OrderStatus.paid:
            raise Conflict(f"Order #{order_id} is already paid", {"order_id": order_id})

        if new_status == OrderStatus.serving and station is not None:
            changed = _report_station(order, station)
        elif new_status == OrderStatus.serving and not (override or order.required_stations() == StationSet.NONE):
            raise InvalidInput("A station is required to report completion")
        else:
            _set_status(order, new_status, override)
            changed = True

        if changed:
            order.updated_at = utcnow()
            session.add(order)

    if changed:
        session.refresh(order)
        publisher.publish(Event(
            type=EventType.order_status_update,
            payload={"order": OrderRead.from_order(order).model_dump(mode="json")},
        ))
    return StatusChange(order, changed)
