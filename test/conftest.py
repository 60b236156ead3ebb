"""
Shared fixtures: an in-memory SQLite database, a recording event publisher
and a FastAPI TestClient wired to both.
"""

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from orderflow.db import create_db_and_tables
from orderflow.events import InMemoryEventPublisher
from orderflow.main import create_app
from orderflow.models import Category, DiningTable, MenuItem, MenuOption, Role, Station, User
from orderflow.security import create_access_token
from orderflow.settings import Settings


@dataclass
class Menu:
    burger: int  # kitchen, no stock management
    steak: int  # kitchen, 1 left
    beer: int  # bar, 5 left
    mojito: int  # bar, no stock management
    water: int  # no station
    cheese: int  # option, +15.00
    no_ice: int  # option, free


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def publisher():
    return InMemoryEventPublisher()


@pytest.fixture
def app_settings():
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        REDIS_URL="",
        SECRET_KEY="test-secret",
        TAX_RATE="0.07",
        BUSINESS_TIMEZONE="Asia/Bangkok",
        LOW_STOCK_THRESHOLD=10,
        STRICT_STOCK_QUANTITY=False,
        UNDO_PAYMENT_WINDOW_MINUTES=2,
    )


@pytest.fixture
def menu(session) -> Menu:
    food = Category(name="Food", station=Station.kitchen, sort_order=1)
    drinks = Category(name="Drinks", station=Station.bar, sort_order=2)
    misc = Category(name="Misc", station=None, sort_order=3)
    session.add_all([food, drinks, misc])
    session.flush()

    items = {
        "burger": MenuItem(name="Burger", price=Decimal("50.00"), category_id=food.id),
        "steak": MenuItem(
            name="Steak", price=Decimal("200.00"), category_id=food.id,
            manage_stock=True, current_stock=1,
        ),
        "beer": MenuItem(
            name="Beer", price=Decimal("80.00"), category_id=drinks.id,
            manage_stock=True, current_stock=5,
        ),
        "mojito": MenuItem(name="Mojito", price=Decimal("120.00"), category_id=drinks.id),
        "water": MenuItem(name="Water", price=Decimal("10.00"), category_id=misc.id),
    }
    session.add_all(items.values())
    session.add_all([
        DiningTable(name="A1", sort_order=1),
        DiningTable(name="A2", sort_order=2),
        DiningTable(name="B1", sort_order=1),
    ])
    cheese = MenuOption(label="ชีสเพิ่ม", label_en="Extra cheese", price_add=Decimal("15.00"))
    no_ice = MenuOption(label="ไม่ใส่น้ำแข็ง", label_en="No ice")
    session.add_all([cheese, no_ice])
    session.commit()
    return Menu(
        **{key: item.id for key, item in items.items()},
        cheese=cheese.id,
        no_ice=no_ice.id,
    )


@pytest.fixture
def users(session) -> dict[Role, User]:
    created = {}
    for role in Role:
        user = User(username=f"{role.value}-user", hashed_password="not-a-hash", role=role)
        session.add(user)
        created[role] = user
    session.commit()
    for user in created.values():
        session.refresh(user)
    return created


def token_for(user: User, app_settings: Settings) -> str:
    return create_access_token(
        data={"sub": user.username, "role": user.role.value},
        app_settings=app_settings,
        expires_delta=timedelta(minutes=5),
    )


@pytest.fixture
def auth(users, app_settings):
    """auth(Role.cashier) -> request headers carrying a token for that role."""

    def headers(role: Role) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_for(users[role], app_settings)}"}

    return headers


@pytest.fixture
def client(engine, publisher, app_settings):
    app = create_app(app_settings)
    app.state.engine = engine
    app.state.publisher = publisher
    with TestClient(app) as client:
        yield client
