"""
Sequential display names for orders without a physical table: "Bar-1",
"Takeaway-3", ... restarting at 1 every business day.
"""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .errors import Conflict
from .models import SequenceCounter

BAR_PREFIX = "Bar"
TAKEAWAY_PREFIX = "Takeaway"


def business_day(now: datetime | None = None, tz: str = "Asia/Bangkok") -> date:
    """Calendar date in the restaurant's time zone."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz)).date()


def _locked_counter(session: Session, prefix: str, day: date) -> SequenceCounter | None:
    statement = (
        select(SequenceCounter)
        .where(SequenceCounter.prefix == prefix)
        .where(SequenceCounter.business_day == day)
        .with_for_update()
    )
    return session.exec(statement).first()


def next_display_name(session: Session, prefix: str, day: date) -> str:
    """
    Claim the next name for `prefix` on `day`.

    Must run inside the transaction that inserts the order: the counter row
    stays locked until commit, and a rollback hands the number back.
    """
    counter = _locked_counter(session, prefix, day)
    if counter is None:
        counter = SequenceCounter(prefix=prefix, business_day=day, last_value=0)
        session.add(counter)
        try:
            session.flush()
        except IntegrityError as e:
            # Another transaction created today's counter first
            raise Conflict(
                f"Concurrent {prefix} numbering, please retry",
                {"prefix": prefix, "business_day": day.isoformat()},
            ) from e

    counter.last_value += 1
    session.add(counter)
    return f"{prefix}-{counter.last_value}"


def peek_next_number(session: Session, prefix: str, day: date) -> int:
    """Number the next `next_display_name` call would hand out. Consumes nothing."""
    counter = session.get(SequenceCounter, (prefix, day))
    return (counter.last_value if counter else 0) + 1
