from __future__ import annotations

from rest_framework.permissions import BasePermission

from .models import ConsoleApiKey


class ApiKeyRequired(BasePermission):
    message = "Console API key required."

    def has_permission(self, request, view) -> bool:
        return isinstance(getattr(request, "auth", None), ConsoleApiKey)
