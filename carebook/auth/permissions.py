"""Static role -> permission policy.

Permissions are ``resource:action`` strings. The table is built once at import
by asking ``_grants_for`` about every ``Role`` member, so a new role that is not
handled there fails loudly at startup instead of silently getting nothing.
"""
from typing import Dict, FrozenSet, Iterable, Optional, Protocol

from ..models import Role

# User management
USER_CREATE = "user:create"
USER_READ = "user:read"
USER_UPDATE = "user:update"
USER_DELETE = "user:delete"

# Booking management
BOOKING_CREATE = "booking:create"
BOOKING_READ = "booking:read"
BOOKING_UPDATE = "booking:update"
BOOKING_DELETE = "booking:delete"

# Nursing home management
NURSING_HOME_CREATE = "nursing_home:create"
NURSING_HOME_READ = "nursing_home:read"
NURSING_HOME_UPDATE = "nursing_home:update"
NURSING_HOME_DELETE = "nursing_home:delete"

# Supplier management
SUPPLIER_CREATE = "supplier:create"
SUPPLIER_READ = "supplier:read"
SUPPLIER_UPDATE = "supplier:update"
SUPPLIER_DELETE = "supplier:delete"

# Money movement
PAYMENT_CREATE = "payment:create"
PAYMENT_READ = "payment:read"
PAYMENT_UPDATE = "payment:update"
REFUND_CREATE = "refund:create"
PAYOUT_READ = "payout:read"
PAYOUT_MANAGE = "payout:manage"

# Analytics and reports
ANALYTICS_READ = "analytics:read"
ANALYTICS_EXPORT = "analytics:export"

# System administration
SYSTEM_CONFIG = "system:config"
SYSTEM_MONITOR = "system:monitor"

ALL_PERMISSIONS: FrozenSet[str] = frozenset(
    {
        USER_CREATE, USER_READ, USER_UPDATE, USER_DELETE,
        BOOKING_CREATE, BOOKING_READ, BOOKING_UPDATE, BOOKING_DELETE,
        NURSING_HOME_CREATE, NURSING_HOME_READ, NURSING_HOME_UPDATE, NURSING_HOME_DELETE,
        SUPPLIER_CREATE, SUPPLIER_READ, SUPPLIER_UPDATE, SUPPLIER_DELETE,
        PAYMENT_CREATE, PAYMENT_READ, PAYMENT_UPDATE, REFUND_CREATE,
        PAYOUT_READ, PAYOUT_MANAGE,
        ANALYTICS_READ, ANALYTICS_EXPORT,
        SYSTEM_CONFIG, SYSTEM_MONITOR,
    }
)


class HasRole(Protocol):
    id: str
    role: Role


def _grants_for(role: Role) -> FrozenSet[str]:
    if role is Role.CUSTOMER:
        return frozenset(
            {
                USER_READ,
                USER_UPDATE,
                BOOKING_CREATE,
                BOOKING_READ,
                BOOKING_UPDATE,
                NURSING_HOME_READ,
                PAYMENT_CREATE,
                PAYMENT_READ,
            }
        )
    if role is Role.SUPPLIER:
        return frozenset(
            {
                USER_READ,
                USER_UPDATE,
                SUPPLIER_CREATE,
                SUPPLIER_READ,
                SUPPLIER_UPDATE,
                NURSING_HOME_CREATE,
                NURSING_HOME_READ,
                NURSING_HOME_UPDATE,
                BOOKING_READ,
                BOOKING_UPDATE,
                PAYMENT_READ,
                PAYOUT_READ,
                ANALYTICS_READ,
            }
        )
    if role is Role.ADMIN:
        return ALL_PERMISSIONS
    raise ValueError(f"no permission policy for role {role!r}")


ROLE_PERMISSIONS: Dict[Role, FrozenSet[str]] = {role: _grants_for(role) for role in Role}


def _as_role(value) -> Optional[Role]:
    try:
        return Role(value)
    except ValueError:
        return None


def _role_of(user: HasRole) -> Optional[Role]:
    return _as_role(user.role)


def get_user_permissions(user: HasRole) -> FrozenSet[str]:
    role = _role_of(user)
    return ROLE_PERMISSIONS[role] if role is not None else frozenset()


def has_permission(user: HasRole, permission: str) -> bool:
    return permission in get_user_permissions(user)


def has_any_permission(user: HasRole, permissions: Iterable[str]) -> bool:
    granted = get_user_permissions(user)
    return any(p in granted for p in permissions)


def has_all_permissions(user: HasRole, permissions: Iterable[str]) -> bool:
    granted = get_user_permissions(user)
    return all(p in granted for p in permissions)


def has_role(user: HasRole, role: Role) -> bool:
    current = _role_of(user)
    return current is not None and current is _as_role(role)


def has_any_role(user: HasRole, roles: Iterable[Role]) -> bool:
    current = _role_of(user)
    return current is not None and current in {_as_role(r) for r in roles}


def can_access_resource(user: HasRole, resource: str, action: str) -> bool:
    return has_permission(user, f"{resource}:{action}")


def can_access_own_resource(user: HasRole, resource_owner_id: str) -> bool:
    """Owners reach their own resources; admins reach everything."""
    return user.id == resource_owner_id or _role_of(user) is Role.ADMIN


def can_access_booking(
    user: HasRole,
    booking_user_id: str,
    booking_supplier_id: str,
    owned_supplier_id: Optional[str] = None,
) -> bool:
    role = _role_of(user)
    if role is Role.ADMIN:
        return True
    if role is Role.CUSTOMER:
        return user.id == booking_user_id
    if role is Role.SUPPLIER:
        return owned_supplier_id is not None and owned_supplier_id == booking_supplier_id
    return False
