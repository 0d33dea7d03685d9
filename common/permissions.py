import logging

from rest_framework.permissions import BasePermission

from core.models import User

logger = logging.getLogger("security.authorization")

USER_DEFAULT_CAPABILITIES = {
    "sales.view",
    "sales.manage",
    "inventory.view",
    "inventory.manage",
    "finance.view",
    "finance.manage",
    "reports.view",
    "company.view",
}

ADMIN_ONLY_CAPABILITIES = {
    "company.manage",
    "user.manage",
    "audit.view",
    "system.backup",
}


def capability_to_permission(capability):
    """`sales.manage` is granted by the `SALES_MANAGE` entry of a user's permissions list."""
    return capability.replace(".", "_").upper()


def get_user_role(user):
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return User.Role.ADMIN
    return getattr(user, "role", None) or User.Role.USER


def user_has_capability(user, capability):
    if not user or not user.is_authenticated:
        return False
    if get_user_role(user) == User.Role.ADMIN:
        return True
    if capability in USER_DEFAULT_CAPABILITIES:
        return True
    granted = {str(item).upper() for item in (getattr(user, "permissions", None) or [])}
    return capability_to_permission(capability) in granted


class RoleCapabilityPermission(BasePermission):
    """Permission class that validates role capability by action/method and logs denied attempts."""

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


def crud_action_map(view_capability, manage_capability, extra=None):
    action_map = {
        "list": view_capability,
        "retrieve": view_capability,
        "create": manage_capability,
        "update": manage_capability,
        "partial_update": manage_capability,
        "destroy": manage_capability,
    }
    action_map.update(extra or {})
    return action_map
