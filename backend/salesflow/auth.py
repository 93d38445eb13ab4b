# pyright: reportMissingImports=false
from __future__ import annotations

from django.contrib.auth.models import AnonymousUser  # type: ignore[reportMissingImports]
from rest_framework import authentication, exceptions  # type: ignore[reportMissingImports]

from .models import ConsoleApiKey


class ConsoleApiKeyAuthentication(authentication.BaseAuthentication):
    header_name = "X-Console-Api-Key"

    def authenticate(self, request):
        raw_key = request.headers.get(self.header_name)
        if raw_key is None:
            return None
        if not raw_key.strip():
            raise exceptions.AuthenticationFailed("Invalid console API key.")

        console_api_key = ConsoleApiKey.authenticate(raw_key.strip())
        if console_api_key is None:
            raise exceptions.AuthenticationFailed("Invalid console API key.")

        request.console_api_key = console_api_key
        return AnonymousUser(), console_api_key

    def authenticate_header(self, request) -> str:
        return self.header_name
