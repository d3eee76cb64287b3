from __future__ import annotations

import os

chdir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "pbvote_app")
wsgi_app = "config.wsgi:application"

bind = os.getenv("PBVOTE_BIND", "0.0.0.0:8000")
workers = int(os.getenv("PBVOTE_WORKERS", "3"))
timeout = int(os.getenv("PBVOTE_TIMEOUT_SECONDS", "30"))

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("PBVOTE_LOG_LEVEL", "info")
forwarded_allow_ips = os.getenv("PBVOTE_FORWARDED_ALLOW_IPS", "127.0.0.1")
access_log_format = '%(h)s %(t)s "%(r)s" %(s)s %(b)s %(M)sms "%(a)s"'

logconfig_dict = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "access": {"format": "%(message)s"},
        "error": {
            "format": "[{asctime}] {levelname} {name}: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "stdout": {"class": "logging.StreamHandler", "formatter": "access", "stream": "ext://sys.stdout"},
        "stderr": {"class": "logging.StreamHandler", "formatter": "error"},
    },
    "loggers": {
        "gunicorn.error": {"handlers": ["stderr"], "level": "INFO", "propagate": False},
        "gunicorn.access": {"handlers": ["stdout"], "level": "INFO", "propagate": False},
    },
    "root": {"handlers": ["stderr"], "level": "WARNING"},
}
