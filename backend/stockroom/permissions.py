"""
Permission codes and role mappings.

Codes follow "{resource}.{read|write|delete}". Roles are fixed (admin,
manager, staff); admin holds every permission.
"""

RESOURCES = (
    "products",
    "categories",
    "inventory",
    "locations",
    "suppliers",
    "customers",
    "purchases",
    "sales",
    "settings",
    "maintenance",
    "users",
)

ACTIONS = ("read", "write", "delete")

ALL_PERMISSIONS = frozenset(f"{resource}.{action}" for resource in RESOURCES for action in ACTIONS)


def _grant(*codes: str) -> frozenset:
    unknown = set(codes) - ALL_PERMISSIONS
    if unknown:
        raise ValueError(f"Unknown permission codes: {sorted(unknown)}")
    return frozenset(codes)


ROLE_PERMISSIONS = {
    "admin": ALL_PERMISSIONS,
    "manager": _grant(
        "products.read", "products.write", "products.delete",
        "categories.read", "categories.write", "categories.delete",
        "inventory.read", "inventory.write",
        "locations.read", "locations.write", "locations.delete",
        "suppliers.read", "suppliers.write",
        "customers.read", "customers.write",
        "purchases.read", "purchases.write", "purchases.delete",
        "sales.read", "sales.write", "sales.delete",
        "settings.read",
        "maintenance.read", "maintenance.write",
    ),
    # Staff sell and receive; catalog, partners and settings are read-only
    "staff": _grant(
        "products.read",
        "categories.read",
        "inventory.read",
        "locations.read",
        "suppliers.read",
        "customers.read", "customers.write",
        "purchases.read",
        "sales.read", "sales.write",
        "settings.read",
    ),
}


def permissions_for_role(role: str) -> frozenset:
    return ROLE_PERMISSIONS.get(role, frozenset())
