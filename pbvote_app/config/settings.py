"""Django settings for the pbvote voting service.

Deployment-specific values come from the environment. Per-election behaviour
(workflow, rules, remote voting switches) lives in ``Election.config``.
"""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import urlparse

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


DEBUG: bool = _env_bool("DEBUG")

# The security checks on SECRET_KEY are done as part of `manage.py check --deploy`.
SECRET_KEY: str = os.getenv("SECRET_KEY", "pbvote-insecure-development-key-change-me")

ALLOWED_HOSTS: list[str] = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "post_office",
    "voting",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {"context_processors": ["django.template.context_processors.request"]},
    },
]


DATABASES: dict[str, dict[str, object]] = {}

if os.getenv("DATABASE_URL"):
    database_url: str = os.environ["DATABASE_URL"]
    parsed = urlparse(database_url)

    if parsed.scheme in {"postgres", "postgresql"}:
        DATABASES["default"] = {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": parsed.path.lstrip("/"),
            "USER": parsed.username,
            "PASSWORD": parsed.password,
            "HOST": parsed.hostname,
            "PORT": parsed.port or "5432",
        }
    else:
        raise ValueError(f"For DATABASE_URL, only postgres is supported, not {parsed.scheme!r}.")
else:
    # sqlite fallback: useful for development and tests.
    DATABASES["default"] = {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("DATABASE_PATH", str(BASE_DIR / "db.sqlite3")),
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en"
TIME_ZONE: str = os.getenv("TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

SESSION_ENGINE = "django.contrib.sessions.backends.db"


# Email is queued through django-post-office; the real transport sits behind it.
EMAIL_BACKEND = "post_office.EmailBackend"
DEFAULT_FROM_EMAIL: str = os.getenv("DEFAULT_FROM_EMAIL", "noreply@pbvote.invalid")

if os.getenv("EMAIL_HOST"):
    _email_transport = "django.core.mail.backends.smtp.EmailBackend"
    EMAIL_HOST = os.getenv("EMAIL_HOST")
    EMAIL_HOST_USER = os.getenv("EMAIL_HOST_USER", "")
    EMAIL_HOST_PASSWORD = os.getenv("EMAIL_HOST_PASSWORD", "")
    EMAIL_PORT = int(os.getenv("EMAIL_PORT", 587))
    email_use_ssl = _env_bool("EMAIL_USE_SSL")
    EMAIL_USE_SSL = email_use_ssl
    EMAIL_USE_TLS = _env_bool("EMAIL_USE_TLS", str(not email_use_ssl))
else:
    _email_transport = "django.core.mail.backends.console.EmailBackend"

POST_OFFICE = {
    "BACKENDS": {"default": _email_transport},
    "DEFAULT_PRIORITY": "medium",
}


# SMS delivery. Backends follow the same dotted-path convention as email backends.
TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_PHONE_NUMBER: str = os.getenv("TWILIO_PHONE_NUMBER", "")
TWILIO_API_BASE_URL: str = os.getenv("TWILIO_API_BASE_URL", "https://api.twilio.com/2010-04-01")
SMS_REQUEST_TIMEOUT_SECONDS: int = int(os.getenv("SMS_REQUEST_TIMEOUT_SECONDS", 10))

SMS_BACKEND: str = os.getenv(
    "SMS_BACKEND",
    "voting.sms.TwilioSmsBackend" if TWILIO_ACCOUNT_SID else "voting.sms.ConsoleSmsBackend",
)


# Signup throttling over the activity log (sliding window).
VOTING_RATE_LIMIT_WINDOW_SECONDS: int = 60
VOTING_SMS_CONFIRM_FAILURE_LIMIT: int = 8
VOTING_REMOTE_SIGNUP_FAILURE_LIMIT: int = 5
VOTING_SMS_CONFIRMATION_CODE_TTL_SECONDS: int = 10 * 60


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "error": {
            "format": "[{asctime}] {levelname} {name}: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "stderr": {
            "class": "logging.StreamHandler",
            "formatter": "error",
        },
    },
    "loggers": {
        "voting": {
            "handlers": ["stderr"],
            "level": os.getenv("VOTING_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["stderr"],
        "level": "WARNING",
    },
}


SENTRY_DSN: str | None = os.getenv("SENTRY_DSN")
if SENTRY_DSN:
    import logging

    import sentry_sdk
    from sentry_sdk.integrations.django import DjangoIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[
            DjangoIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0")),
        send_default_pii=False,
    )
