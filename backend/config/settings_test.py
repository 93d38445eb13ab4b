from __future__ import annotations

from .settings import *  # noqa: F403


# Tests should be self-contained and not require external services.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "salesflow-tests",
    }
}

AI_INSIGHT_WEBHOOK_URL = (
    "https://automation.example.com/webhook/ai-insight/{phone_number}"
)
WORKFLOW_NOTIFICATION_ASYNC = False
LOG_LEVEL = "WARNING"
LOGGING["loggers"]["salesflow"]["level"] = LOG_LEVEL  # noqa: F405
