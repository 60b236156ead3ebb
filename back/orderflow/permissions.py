from enum import Enum

from .models import Role, Station, User


class Permissions(str, Enum):
    # Kitchen / bar display
    KDS_READ = "kds:read"
    ORDERS_UPDATE_STATUS = "orders:update_status"
    ORDERS_UNDO_PAYMENT = "orders:undo_payment"

    # Cashier
    TABLES_BILLING = "tables:billing"
    TABLES_CLEAR = "tables:clear"
    TABLES_DISCOUNT = "tables:discount"
    TABLES_REQUEST_BILL = "tables:request_bill"

    # Bar walk-up numbering
    SEQUENCE_READ = "sequence:read"

    # Stock
    STOCK_READ = "stock:read"
    STOCK_MANAGE = "stock:manage"

    # Sales dashboard
    REPORTS_READ = "reports:read"


ROLE_PERMISSIONS: dict[Role, frozenset[Permissions]] = {
    Role.admin: frozenset(Permissions),
    Role.cashier: frozenset({
        Permissions.TABLES_BILLING,
        Permissions.TABLES_CLEAR,
        Permissions.TABLES_DISCOUNT,
        Permissions.TABLES_REQUEST_BILL,
        Permissions.STOCK_READ,
    }),
    Role.kitchen: frozenset({
        Permissions.KDS_READ,
        Permissions.ORDERS_UPDATE_STATUS,
        Permissions.STOCK_READ,
    }),
    Role.bar: frozenset({
        Permissions.KDS_READ,
        Permissions.ORDERS_UPDATE_STATUS,
        Permissions.SEQUENCE_READ,
        Permissions.STOCK_READ,
    }),
}


class PermissionService:
    @staticmethod
    def get_user_permissions(user: User) -> frozenset[Permissions]:
        """Get all permissions for a user based on their role."""
        return ROLE_PERMISSIONS.get(user.role, frozenset())

    @staticmethod
    def has_permission(user: User, required_permission: Permissions) -> bool:
        return required_permission in PermissionService.get_user_permissions(user)


# Stations a non-admin role is allowed to report completion for
ROLE_STATIONS: dict[Role, Station] = {
    Role.kitchen: Station.kitchen,
    Role.bar: Station.bar,
}
