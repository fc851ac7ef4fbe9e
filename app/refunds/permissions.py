"""
Permission classes for the refund API.

Refunds move money, so every endpoint requires the ``refunds.manage_refunds``
model permission on top of authentication. Superusers hold every permission.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


MANAGE_REFUNDS_PERMISSION = "refunds.manage_refunds"


class CanManageRefunds(permissions.BasePermission):
    """Allows access only to users who may process and reconcile refunds."""

    message = "You do not have permission to manage refunds."

    def has_permission(self, request: Request, view: APIView) -> bool:
        user = request.user
        if not user or not user.is_authenticated:
            return False
        return user.has_perm(MANAGE_REFUNDS_PERMISSION)
