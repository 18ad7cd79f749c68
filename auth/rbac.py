"""
auth/rbac.py -- Role hierarchy and static permission table.

Roles form a closed, ordered enumeration (viewer < editor < admin < superadmin).
Every {resource, action} pair maps to the minimum role that may perform it.
A handful of pairs also carry an explicit allow-set for grants that do not
follow the hierarchy cut-off (an admin may read the audit trail and the admin
roster, but only a superadmin may change either).

can() is a pure function over two dict lookups -- no database access, no
string comparisons at call sites.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum, IntEnum


class Role(IntEnum):
    """Admin roles. Integer order is the hierarchy order."""

    VIEWER = 1
    EDITOR = 2
    ADMIN = 3
    SUPERADMIN = 4

    @classmethod
    def parse(cls, value: str) -> "Role":
        """Map a stored role string ("editor") to its Role. Raises ValueError if unknown."""
        try:
            return cls[value.strip().upper()]
        except KeyError as exc:
            raise ValueError(f"Unknown role: {value!r}") from exc

    @property
    def label(self) -> str:
        return self.name.lower()


class Resource(str, Enum):
    PRODUCT = "product"
    QUOTE = "quote"
    CATEGORY = "category"
    BRAND = "brand"
    ADMIN = "admin"
    AUDIT = "audit"


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"  # every action on the resource


_CRUD = (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE)


def _build_table() -> dict[tuple[Resource, Action], Role]:
    r = Role
    minimum: dict[Resource, dict[Action, Role]] = {
        # Editors maintain the catalog but cannot remove products.
        Resource.PRODUCT: {Action.CREATE: r.EDITOR, Action.READ: r.VIEWER, Action.UPDATE: r.EDITOR, Action.DELETE: r.ADMIN},
        # Editors may read/update quotes; creating and deleting is admin work.
        Resource.QUOTE: {Action.CREATE: r.ADMIN, Action.READ: r.VIEWER, Action.UPDATE: r.EDITOR, Action.DELETE: r.ADMIN},
        Resource.CATEGORY: {Action.CREATE: r.ADMIN, Action.READ: r.VIEWER, Action.UPDATE: r.ADMIN, Action.DELETE: r.ADMIN},
        Resource.BRAND: {Action.CREATE: r.ADMIN, Action.READ: r.VIEWER, Action.UPDATE: r.ADMIN, Action.DELETE: r.ADMIN},
        Resource.ADMIN: {a: r.SUPERADMIN for a in _CRUD},
        Resource.AUDIT: {a: r.SUPERADMIN for a in _CRUD},
    }
    table: dict[tuple[Resource, Action], Role] = {}
    for resource, actions in minimum.items():
        for action, role in actions.items():
            table[(resource, action)] = role
        table[(resource, Action.MANAGE)] = max(actions.values())
    return table


# {resource, action} -> minimum role. Computed once at import.
_MIN_ROLE: dict[tuple[Resource, Action], Role] = _build_table()

# {resource, action} -> roles granted regardless of the minimum.
_ALLOW: dict[tuple[Resource, Action], frozenset[Role]] = {
    (Resource.ADMIN, Action.READ): frozenset({Role.ADMIN}),
    (Resource.AUDIT, Action.READ): frozenset({Role.ADMIN}),
}


def can(role: Role, resource: Resource | str, action: Action | str) -> bool:
    """Return True if role may perform action on resource.

    Unknown resources or actions are denied for every role except superadmin.
    """
    if role is Role.SUPERADMIN:
        return True
    try:
        key = (Resource(resource), Action(action))
    except ValueError:
        return False
    minimum = _MIN_ROLE.get(key)
    if minimum is not None and role >= minimum:
        return True
    return role in _ALLOW.get(key, frozenset())


def permissions_for(role: Role) -> list[tuple[Resource, Action]]:
    """Return every {resource, action} pair the role is granted, in table order."""
    return [key for key in _MIN_ROLE if can(role, key[0], key[1])]
