from __future__ import annotations

from django.apps import AppConfig


class SalesflowConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "salesflow"
    verbose_name = "Sales workflow orchestration"
