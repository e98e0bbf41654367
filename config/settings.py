"""
PolicyOS – Django Settings (Infrastructure Only)
=================================================
Django serves as the HTTP container for PolicyOS.
The engine holds no Django models; state lives in the in-memory stores
wired by adapters.django_api.wiring.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("MQ_DJANGO_SECRET_KEY", "policyos-dev-key-replace-before-deployment")

DEBUG = os.environ.get("MQ_DJANGO_DEBUG", "1").strip().lower() in {"1", "true", "yes", "on"}

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"

DATABASES = {}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "loggers": {
        "policyos": {
            "handlers": ["console"],
            "level": os.environ.get("MQ_LOG_LEVEL", "INFO"),
        },
    },
}
