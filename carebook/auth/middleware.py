"""Request gates: authentication, role membership and ownership.

Routes declare ``Depends(require_auth)`` ahead of a role gate, e.g.
``dependencies=[Depends(require_auth), Depends(require_admin)]``; the role gate
only reads the identity ``require_auth`` left on ``request.state``.
"""
from typing import Iterable, List, Optional, Sequence, Union

from fastapi import Request

from .. import metrics
from ..api.errors import ErrorCode, forbidden, unauthorized
from ..models import Role
from ..utils.logging_utils import setup_logger
from .permissions import can_access_own_resource
from .sessions import AuthUser

logger = setup_logger(__name__)

OWNERSHIP_DENIED = "Access denied. You do not own this resource."


def _reject_unauthenticated():
    metrics.auth_rejections.labels(code=ErrorCode.UNAUTHORIZED.value).inc()
    return unauthorized()


def _reject_forbidden(message: str):
    metrics.auth_rejections.labels(code=ErrorCode.FORBIDDEN.value).inc()
    return forbidden(message)


def role_denied_message(roles: Iterable[Role]) -> str:
    return f"Access denied. Required role(s): {', '.join(Role(r).value for r in roles)}"


async def require_auth(request: Request) -> AuthUser:
    resolver = request.app.state.session_resolver
    result = await resolver.get_session(request.headers)
    if result is None or result.user is None:
        logger.info("Unauthenticated request to %s", request.url.path)
        raise _reject_unauthenticated()
    request.state.user = result.user
    request.state.session_id = result.session_id
    return result.user


def current_user(request: Request) -> Optional[AuthUser]:
    return getattr(request.state, "user", None)


def require_role(allowed_roles: Union[Role, Sequence[Role]]):
    roles: List[Role] = (
        [Role(allowed_roles)] if isinstance(allowed_roles, (Role, str)) else [Role(r) for r in allowed_roles]
    )
    if not roles:
        raise ValueError("require_role needs at least one role")
    message = role_denied_message(roles)

    async def checker(request: Request) -> AuthUser:
        user = current_user(request)
        if user is None:
            raise _reject_unauthenticated()
        if user.role not in roles:
            logger.info("User %s (%s) denied on %s", user.id, user.role.value, request.url.path)
            raise _reject_forbidden(message)
        return user

    return checker


require_admin = require_role(Role.ADMIN)
require_supplier = require_role(Role.SUPPLIER)
require_customer = require_role(Role.CUSTOMER)
require_supplier_or_admin = require_role([Role.SUPPLIER, Role.ADMIN])
require_customer_or_admin = require_role([Role.CUSTOMER, Role.ADMIN])


def ensure_ownership(
    user: Optional[AuthUser],
    resource_owner_id: Optional[str],
    allowed_roles: Optional[Sequence[Role]] = None,
) -> AuthUser:
    """Ownership gate with the owner id passed in explicitly.

    Admins skip the ownership comparison. A ``None`` owner id means the
    resource has no owner to compare against and is allowed through.
    """
    if user is None:
        raise _reject_unauthenticated()
    if allowed_roles and user.role not in [Role(r) for r in allowed_roles]:
        raise _reject_forbidden(role_denied_message(allowed_roles))
    if resource_owner_id is None:
        return user
    if not can_access_own_resource(user, resource_owner_id):
        raise _reject_forbidden(OWNERSHIP_DENIED)
    return user
