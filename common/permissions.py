import logging

from rest_framework.permissions import BasePermission

from core.models import User

logger = logging.getLogger("security.authorization")

_EVERYONE = {User.Role.VIEWER, User.Role.OPERATOR, User.Role.MANAGER, User.Role.ADMIN}
_STAFF = {User.Role.OPERATOR, User.Role.MANAGER, User.Role.ADMIN}
_MANAGERS = {User.Role.MANAGER, User.Role.ADMIN}

ROLE_CAPABILITY_MATRIX = {
    "inventory.view": _EVERYONE,
    "stock.move": _STAFF,
    "orders.receive": _STAFF,
    "picking.perform": _STAFF,
    "picking.create": _MANAGERS,
    "audit.count": _STAFF,
    "audit.manage": _MANAGERS,
    "audit.approve": _MANAGERS,
    "bulk.import": _MANAGERS,
    "master.manage": _MANAGERS,
    "admin.records.manage": {User.Role.ADMIN},
}


def get_user_role(user):
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return User.Role.ADMIN
    role = getattr(user, "role", None)
    if role:
        return role
    if getattr(user, "is_staff", False):
        return User.Role.ADMIN
    return User.Role.VIEWER


def user_has_capability(user, capability):
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    allowed_roles = ROLE_CAPABILITY_MATRIX.get(capability)
    if not allowed_roles:
        return False
    return get_user_role(user) in allowed_roles


def performer_name(request, supplied=None):
    """Name recorded on ledger rows: an explicit value wins over the caller's username."""
    if supplied:
        return str(supplied)[:150]
    user = getattr(request, "user", None)
    if user is not None and user.is_authenticated:
        return user.get_username()
    return ""


class RoleCapabilityPermission(BasePermission):
    """Checks `view.permission_action_map[action]` against the role matrix and logs denials."""

    message = "You do not have permission to perform this action."

    def has_permission(self, request, view):
        capability_map = getattr(view, "permission_action_map", {})
        action_key = getattr(view, "action", None) or request.method.lower()
        capability = capability_map.get(action_key)
        if capability is None:
            return True

        allowed = user_has_capability(request.user, capability)
        if not allowed:
            logger.warning(
                "permission_denied capability=%s user=%s role=%s method=%s path=%s view=%s action=%s",
                capability,
                getattr(request.user, "username", "anonymous"),
                get_user_role(request.user),
                request.method,
                request.path,
                view.__class__.__name__,
                action_key,
            )
        return allowed
