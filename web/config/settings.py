"""Django settings for the marketplace orders service.

Everything environment-specific is read from env vars so the same module
serves local development (SQLite, in-process stubs) and production
(Postgres, HTTP adapters behind gunicorn).
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-change-me")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "apps.orders.apps.OrdersConfig",
    "apps.monitoring.apps.MonitoringConfig",
]

MIDDLEWARE = [
    "gateway.middleware.RequestIdMiddleware",
    "gateway.middleware.ApiSizeLimitMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

if os.getenv("DB_ENGINE", "sqlite") == "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("DB_NAME", "orders"),
            "USER": os.getenv("DB_USER", "orders"),
            "PASSWORD": os.getenv("DB_PASSWORD", ""),
            "HOST": os.getenv("DB_HOST", "localhost"),
            "PORT": os.getenv("DB_PORT", "5432"),
            "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("DB_NAME", str(BASE_DIR / "db.sqlite3")),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "UTC"

CACHES = {
    "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
}

REST_FRAMEWORK = {
    # identity comes from gateway headers, see apps.orders.views
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [],
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_THROTTLE_RATES": {
        "orders_list": os.getenv("THROTTLE_ORDERS_LIST", "600/min"),
        "orders_create": os.getenv("THROTTLE_ORDERS_CREATE", "120/min"),
        "orders_detail": os.getenv("THROTTLE_ORDERS_DETAIL", "600/min"),
        "orders_transition": os.getenv("THROTTLE_ORDERS_TRANSITION", "300/min"),
    },
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "gateway.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_id"],
        },
    },
    "root": {"handlers": ["console"], "level": os.getenv("LOG_LEVEL", "INFO")},
    "loggers": {
        "django.db.backends": {"level": "WARNING"},
    },
}

# Collaborators: HTTP clients in production, in-process stubs otherwise
USE_HTTP_ADAPTERS = _env_bool("USE_HTTP_ADAPTERS", False)
EMAIL_SERVICE_BASE_URL = os.getenv("EMAIL_SERVICE_BASE_URL", "http://email:8000")
MEDIA_SERVICE_BASE_URL = os.getenv("MEDIA_SERVICE_BASE_URL", "http://media:8000")
CONTACTS_SERVICE_BASE_URL = os.getenv("CONTACTS_SERVICE_BASE_URL", "http://accounts:8000")

HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "5.0"))
HTTP_RETRY_MAX = int(os.getenv("HTTP_RETRY_MAX", "3"))
HTTP_RETRY_BACKOFF_BASE = float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15"))
HTTP_RETRY_MAX_SLEEP = float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5"))
HTTP_CIRCUIT_FAIL_THRESHOLD = int(os.getenv("HTTP_CIRCUIT_FAIL_THRESHOLD", "5"))
HTTP_CIRCUIT_RESET_TIMEOUT = float(os.getenv("HTTP_CIRCUIT_RESET_TIMEOUT", "30.0"))

# Order lifecycle
ORDERS_PAYMENT_UPLOAD_DEADLINE_HOURS = int(os.getenv("ORDERS_PAYMENT_UPLOAD_DEADLINE_HOURS", "24"))
ORDERS_DELIVERED_CONFIRM_DEADLINE_HOURS = int(os.getenv("ORDERS_DELIVERED_CONFIRM_DEADLINE_HOURS", "48"))

ORDERS_EXPIRY_JOB = {
    "SCAN_INTERVAL_SECONDS": int(os.getenv("ORDERS_EXPIRY_SCAN_INTERVAL_SECONDS", "60")),
    "BATCH_SIZE": int(os.getenv("ORDERS_EXPIRY_BATCH_SIZE", "100")),
    "SEND_EMAILS": _env_bool("ORDERS_EXPIRY_SEND_EMAILS", True),
}
ORDERS_AUTO_COMPLETE_JOB = {
    "SCAN_INTERVAL_SECONDS": int(os.getenv("ORDERS_AUTO_COMPLETE_SCAN_INTERVAL_SECONDS", "60")),
    "BATCH_SIZE": int(os.getenv("ORDERS_AUTO_COMPLETE_BATCH_SIZE", "100")),
    "SEND_EMAILS": _env_bool("ORDERS_AUTO_COMPLETE_SEND_EMAILS", True),
}
