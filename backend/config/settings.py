from __future__ import annotations

import os
from pathlib import Path


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = _env("DJANGO_SECRET_KEY", "dev-only-insecure-secret-key")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [
    host.strip()
    for host in _env("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")
    if host.strip()
]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "salesflow",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

if _env("SALESFLOW_DB_NAME"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": _env("SALESFLOW_DB_NAME"),
            "USER": _env("SALESFLOW_DB_USER", "postgres"),
            "PASSWORD": _env("SALESFLOW_DB_PASSWORD"),
            "HOST": _env("SALESFLOW_DB_HOST", "localhost"),
            "PORT": _env("SALESFLOW_DB_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "salesflow-reference",
    }
}

USE_TZ = True
TIME_ZONE = "UTC"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "salesflow.auth.ConsoleApiKeyAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "salesflow.permissions.ApiKeyRequired",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "UNAUTHENTICATED_USER": None,
}

# Automation platform webhooks.
AI_INSIGHT_WEBHOOK_URL = _env("AI_INSIGHT_WEBHOOK_URL")
AI_INSIGHT_DEBOUNCE_SECONDS = int(_env("AI_INSIGHT_DEBOUNCE_SECONDS", "30"))
AI_INSIGHT_TIMEOUT_SECONDS = int(_env("AI_INSIGHT_TIMEOUT_SECONDS", "60"))
WORKFLOW_NOTIFICATION_TIMEOUT_SECONDS = int(
    _env("WORKFLOW_NOTIFICATION_TIMEOUT_SECONDS", "10")
)
WORKFLOW_NOTIFICATION_ASYNC = _env_bool("WORKFLOW_NOTIFICATION_ASYNC", True)

MANUAL_TRANSITION_DEFAULT_SLA_HOURS = int(
    _env("MANUAL_TRANSITION_DEFAULT_SLA_HOURS", "24")
)
CATALOG_CACHE_TTL_SECONDS = int(_env("CATALOG_CACHE_TTL_SECONDS", "60"))

LOG_LEVEL = _env("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "salesflow": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}
