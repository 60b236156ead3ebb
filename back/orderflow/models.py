from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum, IntFlag

from sqlalchemy import JSON, Numeric
from sqlmodel import Field, Relationship, SQLModel


CENTS = Decimal("0.01")


def money(value: Decimal | int | str) -> Decimal:
    """Round to cents, half up."""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def percent(value: Decimal | int | str) -> Decimal:
    """Percentages are kept to two decimal places, like the column that stores them."""
    return money(value)


class Role(str, Enum):
    admin = "admin"
    cashier = "cashier"
    kitchen = "kitchen"
    bar = "bar"


class Station(str, Enum):
    kitchen = "kitchen"
    bar = "bar"


class StationSet(IntFlag):
    """Bitset over the preparation stations, persisted as a plain integer."""

    NONE = 0
    KITCHEN = 1
    BAR = 2

    @classmethod
    def of(cls, *stations: Station) -> "StationSet":
        result = cls.NONE
        for station in stations:
            result |= _STATION_BITS[station]
        return result

    def has(self, station: Station) -> bool:
        return bool(self & _STATION_BITS[station])

    def issubset(self, other: "StationSet") -> bool:
        return (self & ~other) == StationSet.NONE

    def stations(self) -> list[Station]:
        return [station for station in Station if self.has(station)]


_STATION_BITS = {
    Station.kitchen: StationSet.KITCHEN,
    Station.bar: StationSet.BAR,
}


class OrderStatus(str, Enum):
    pending = "Pending"
    cooking = "Cooking"
    preparing = "Preparing"
    serving = "Serving"
    paid = "Paid"


# Forward-only ordering of statuses; Cooking and Preparing are the same stage
# seen from the kitchen and the bar.
STATUS_RANK = {
    OrderStatus.pending: 0,
    OrderStatus.cooking: 1,
    OrderStatus.preparing: 1,
    OrderStatus.serving: 2,
    OrderStatus.paid: 3,
}

OPEN_KDS_STATUSES = (OrderStatus.pending, OrderStatus.cooking, OrderStatus.preparing)


class StockStatus(str, Enum):
    in_stock = "in_stock"
    out_of_stock = "out_of_stock"


class TableStatus(str, Enum):
    available = "Available"
    occupied = "Occupied"
    billing = "Billing"


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True)
    hashed_password: str
    full_name: str | None = None
    role: Role = Field(default=Role.cashier)


class Category(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    name_en: str | None = None
    station: Station | None = Field(default=None)  # Which KDS prepares items of this category
    sort_order: int = Field(default=99)


class MenuItem(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    price: Decimal = Field(sa_type=Numeric(12, 2))
    category_id: int | None = Field(default=None, foreign_key="category.id")
    manage_stock: bool = Field(default=False)
    current_stock: int = Field(default=0)
    stock_status: StockStatus = Field(default=StockStatus.in_stock)


class MenuOption(SQLModel, table=True):
    """A choice a guest can attach to a menu line ('Extra shot', 'No ice')."""

    id: int | None = Field(default=None, primary_key=True)
    label: str
    label_en: str | None = None
    price_add: Decimal = Field(default=Decimal("0"), sa_type=Numeric(12, 2))


class DiningTable(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)  # e.g. "A1"
    status: TableStatus = Field(default=TableStatus.available)
    sort_order: int = Field(default=99)


class SequenceCounter(SQLModel, table=True):
    """Last display number handed out per prefix and business day."""

    prefix: str = Field(primary_key=True)
    business_day: date = Field(primary_key=True)
    last_value: int = Field(default=0)


class Order(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    table_name: str = Field(index=True)
    subtotal: Decimal = Field(default=Decimal("0"), sa_type=Numeric(12, 2))
    discount_percentage: Decimal = Field(default=Decimal("0"), sa_type=Numeric(5, 2))
    discount_amount: Decimal = Field(default=Decimal("0"), sa_type=Numeric(12, 2))
    total: Decimal = Field(default=Decimal("0"), sa_type=Numeric(12, 2))
    special_request: str = Field(default="")
    status: OrderStatus = Field(default=OrderStatus.pending, index=True)
    is_takeaway: bool = Field(default=False)
    discount_by: str | None = None  # Username of whoever set the discount
    completed_stations: int = Field(default=0)  # StationSet bits

    # Payment tracking
    status_before_payment: OrderStatus | None = None
    paid_by: str | None = None
    paid_at: datetime | None = None

    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    items: list["OrderItem"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"order_by": "OrderItem.id", "cascade": "all, delete-orphan"},
    )

    @property
    def completed(self) -> StationSet:
        return StationSet(self.completed_stations)

    def required_stations(self) -> StationSet:
        return StationSet.of(*(item.station for item in self.items if item.station is not None))


class OrderItem(SQLModel, table=True):
    """Frozen copy of a menu line at order time."""

    id: int | None = Field(default=None, primary_key=True)
    order_id: int | None = Field(default=None, foreign_key="order.id", index=True)
    menu_item_id: int = Field(foreign_key="menuitem.id")
    name: str
    category_id: int | None = None
    category_name: str | None = None
    station: Station | None = None
    unit_price: Decimal = Field(sa_type=Numeric(12, 2))
    quantity: int
    # Chosen options, frozen like the rest of the line
    selected_options: list[int] = Field(default_factory=list, sa_type=JSON)
    selected_options_text: str = Field(default="")
    selected_options_text_en: str = Field(default="")

    order: Order | None = Relationship(back_populates="items")


# Request/Response Models
class CartLine(SQLModel):
    menu_item_id: int
    quantity: int = Field(gt=0)
    selected_options: list[int] = Field(default_factory=list)  # MenuOption ids
    price: Decimal | None = None  # As shown to the customer; informational only


class OrderCreate(SQLModel):
    cart: list[CartLine]
    table_name: str | None = None
    is_takeaway: bool = False
    order_source: str | None = None  # "bar" for walk-up bar orders
    special_request: str | None = None
    discount_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100, decimal_places=2)


class OrderStatusUpdate(SQLModel):
    order_id: int
    new_status: OrderStatus
    station: Station | None = None


class UndoPaymentRequest(SQLModel):
    order_id: int


class TableNameRequest(SQLModel):
    table_name: str = Field(min_length=1)


class DiscountRequest(SQLModel):
    table_name: str = Field(min_length=1)
    discount_percentage: Decimal = Field(ge=0, le=100, decimal_places=2)


class StockUpdate(SQLModel):
    current_stock: int = Field(ge=0)


class OrderItemRead(SQLModel):
    menu_item_id: int
    name: str
    category_id: int | None = None
    category_name: str | None = None
    station: Station | None = None
    unit_price: Decimal
    quantity: int
    selected_options: list[int] = []
    selected_options_text: str = ""
    selected_options_text_en: str = ""


class OrderRead(SQLModel):
    id: int
    table_name: str
    items: list[OrderItemRead]
    subtotal: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    total: Decimal
    special_request: str
    status: OrderStatus
    is_takeaway: bool
    discount_by: str | None = None
    completed_stations: list[Station]
    created_at: datetime
    paid_at: datetime | None = None

    @classmethod
    def from_order(cls, order: Order, items: list[OrderItem] | None = None) -> "OrderRead":
        lines = order.items if items is None else items
        return cls(
            id=order.id,
            table_name=order.table_name,
            items=[OrderItemRead.model_validate(item, from_attributes=True) for item in lines],
            subtotal=order.subtotal,
            discount_percentage=order.discount_percentage,
            discount_amount=order.discount_amount,
            total=order.total,
            special_request=order.special_request,
            status=order.status,
            is_takeaway=order.is_takeaway,
            discount_by=order.discount_by,
            completed_stations=order.completed.stations(),
            created_at=order.created_at,
            paid_at=order.paid_at,
        )


class TableBill(SQLModel):
    table_name: str
    status: TableStatus | None = None
    order_ids: list[int]
    items: list[OrderItemRead]
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal
    discount_percentage: Decimal
    tax_rate: Decimal
    vat_amount: Decimal
    grand_total: Decimal


class BillingOverview(SQLModel):
    all_tables: list[str]
    occupied_tables: dict[str, TableBill]


class TableStatusRead(SQLModel):
    table_name: str
    status: TableStatus
    has_open_orders: bool


class StockItemRead(SQLModel):
    id: int
    name: str
    current_stock: int
    stock_status: StockStatus


class UserRead(SQLModel):
    id: int
    username: str
    full_name: str | None = None
    role: Role


class SalesKpis(SQLModel):
    total_sales: Decimal
    net_revenue: Decimal
    average_order_value: Decimal
    total_orders: int
    total_discount: Decimal


class ItemSales(SQLModel):
    name: str
    quantity: int


class SalesDashboard(SQLModel):
    start_date: date
    end_date: date
    kpis: SalesKpis
    sales_by_day: dict[date, Decimal]
    # Index is the local hour, 0-23
    sales_by_hour: list[Decimal]
    top_selling_items: dict[Station, list[ItemSales]]
    sales_by_category: dict[Station, dict[str, Decimal]]


class StationSales(SQLModel):
    order_count: int
    total_sales: Decimal


class DiscountedOrder(SQLModel):
    id: int
    table_name: str
    discount_percentage: Decimal
    discount_amount: Decimal
    total: Decimal
    discount_by: str | None = None


class StationDashboard(SQLModel):
    summary_date: date
    total_orders: int
    net_revenue: Decimal
    station_summary: dict[Station, StationSales]
    discounted_orders: list[DiscountedOrder]
