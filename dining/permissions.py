"""
permissions.py

Role-based API access control. Superusers pass every check.
"""

from rest_framework import permissions
from .models import CustomUser


def has_role(user, *roles):
    if not user or not user.is_authenticated:
        return False
    return user.is_superuser or user.role in roles


class IsStaffRole(permissions.BasePermission):
    """Front-of-house staff (reception, managers)."""

    def has_permission(self, request, view):
        return has_role(request.user, CustomUser.Roles.STAFF)


class IsKitchenOrStaff(permissions.BasePermission):
    def has_permission(self, request, view):
        return has_role(request.user, CustomUser.Roles.STAFF, CustomUser.Roles.KITCHEN)


class StaffWriteOrReadOnly(permissions.BasePermission):
    """
    Any authenticated user may read; only staff may create, change or delete.
    """

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if request.method in permissions.SAFE_METHODS:
            return True
        return has_role(user, CustomUser.Roles.STAFF)
