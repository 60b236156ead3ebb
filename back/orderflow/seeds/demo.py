"""
Seed a small demo restaurant: categories for the kitchen and the bar, menu
items (some with stock management), menu options, dining tables and one
user per role.

Safe to run more than once; existing rows (matched by name) are left alone.

Usage:
    python -m orderflow.seeds.demo
"""

from decimal import Decimal

from sqlmodel import Session, select

from ..db import create_db_and_tables, create_db_engine
from ..models import Category, DiningTable, MenuItem, MenuOption, Role, Station, User
from ..security import get_password_hash
from ..settings import settings

DEMO_PASSWORD = "changeme"

DEMO_CATEGORIES = [
    # (name, name_en, station, sort_order)
    ("อาหารจานหลัก", "Main Course", Station.kitchen, 1),
    ("ของหวาน", "Desserts", Station.kitchen, 2),
    ("ค็อกเทล", "Cocktails", Station.bar, 3),
    ("เบียร์", "Beer", Station.bar, 4),
]

DEMO_ITEMS = {
    "Main Course": [
        # (name, price, manage_stock, current_stock)
        ("Pad Thai", "120.00", False, 0),
        ("Green Curry", "150.00", False, 0),
        ("Grilled Sea Bass", "380.00", True, 8),
    ],
    "Desserts": [
        ("Mango Sticky Rice", "90.00", True, 15),
    ],
    "Cocktails": [
        ("Mojito", "180.00", False, 0),
        ("Negroni", "220.00", False, 0),
    ],
    "Beer": [
        ("Singha", "90.00", True, 48),
        ("Chang", "85.00", True, 5),
    ],
}

DEMO_OPTIONS = [
    # (label, label_en, price_add)
    ("เผ็ดน้อย", "Mild", "0.00"),
    ("เผ็ดมาก", "Extra spicy", "0.00"),
    ("ไข่ดาว", "Fried egg", "15.00"),
    ("ไม่ใส่น้ำแข็ง", "No ice", "0.00"),
    ("เพิ่มช็อต", "Extra shot", "60.00"),
]

DEMO_TABLES = ["A1", "A2", "A3", "B1", "B2", "Terrace"]


def seed_demo(session: Session) -> dict[str, int]:
    """
    Create the demo rows that do not exist yet.

    Returns:
        dict with counts of created rows per kind
    """
    created = {"categories": 0, "items": 0, "options": 0, "tables": 0, "users": 0}

    categories: dict[str, Category] = {}
    for name, name_en, station, sort_order in DEMO_CATEGORIES:
        category = session.exec(select(Category).where(Category.name_en == name_en)).first()
        if not category:
            category = Category(name=name, name_en=name_en, station=station, sort_order=sort_order)
            session.add(category)
            session.flush()
            created["categories"] += 1
        categories[name_en] = category

    for category_name, items in DEMO_ITEMS.items():
        category = categories[category_name]
        for name, price, manage_stock, current_stock in items:
            if session.exec(select(MenuItem).where(MenuItem.name == name)).first():
                continue
            session.add(MenuItem(
                name=name,
                price=Decimal(price),
                category_id=category.id,
                manage_stock=manage_stock,
                current_stock=current_stock,
            ))
            created["items"] += 1

    for label, label_en, price_add in DEMO_OPTIONS:
        if session.exec(select(MenuOption).where(MenuOption.label_en == label_en)).first():
            continue
        session.add(MenuOption(label=label, label_en=label_en, price_add=Decimal(price_add)))
        created["options"] += 1

    for sort_order, table_name in enumerate(DEMO_TABLES, start=1):
        if session.exec(select(DiningTable).where(DiningTable.name == table_name)).first():
            continue
        session.add(DiningTable(name=table_name, sort_order=sort_order))
        created["tables"] += 1

    for role in Role:
        if session.exec(select(User).where(User.username == role.value)).first():
            continue
        session.add(User(
            username=role.value,
            hashed_password=get_password_hash(DEMO_PASSWORD),
            full_name=f"Demo {role.value.title()}",
            role=role,
        ))
        created["users"] += 1

    session.commit()
    return created


def main():
    engine = create_db_engine(settings)
    create_db_and_tables(engine)
    with Session(engine) as session:
        created = seed_demo(session)
    engine.dispose()

    print("✅ Demo data seeded:")
    for kind, count in created.items():
        print(f"   {kind}: {count} created")
    print(f"   Users log in with their role name and password '{DEMO_PASSWORD}'")


if __name__ == "__main__":
    main()
