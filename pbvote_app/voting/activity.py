"""Activity log and the sliding-window signup throttles built on it.

Throttling is advisory: the count is read without locking, so concurrent
attempts may slip slightly past the limit.
"""

from __future__ import annotations

import datetime
import hashlib
import hmac
import logging

from django.conf import settings
from django.utils import timezone

from voting.exceptions import RateLimitExceeded
from voting.models import ActivityLog, Election

logger = logging.getLogger(__name__)


def log_activity(activity: str, *, election: Election | None = None, note: object = "", ip_address: str = "") -> ActivityLog:
    return ActivityLog.objects.create(
        election=election,
        activity=activity,
        note=str(note)[:255],
        ip_address=str(ip_address or "")[:64],
    )


def count_activity(
    activity: str,
    *,
    since: datetime.datetime,
    note: object | None = None,
    ip_address: str | None = None,
) -> int:
    qs = ActivityLog.objects.filter(activity=activity, created_at__gte=since)
    if note is not None:
        qs = qs.filter(note=str(note))
    if ip_address is not None:
        qs = qs.filter(ip_address=ip_address)
    return qs.count()


def _hash_for_log(value: str) -> str:
    secret = str(settings.SECRET_KEY).encode("utf-8")
    return hmac.new(key=secret, msg=value.lower().encode("utf-8"), digestmod=hashlib.sha256).hexdigest()


def _emit_rate_limit_denial_log(*, activity: str, limit: int, window_seconds: int, ip_address: str, subject: str) -> None:
    log_payload: dict[str, str | int | bool] = {
        "event": "pbvote.security.rate_limit.denied",
        "component": "signup",
        "outcome": "denied",
        "activity": activity,
        "limit": limit,
        "window_seconds": window_seconds,
    }
    if ip_address:
        log_payload["ip_hash"] = _hash_for_log(ip_address)
    else:
        log_payload["ip_present"] = False
    if subject:
        log_payload["subject_hash"] = _hash_for_log(subject)

    logger.warning("Rate limit denied", extra=log_payload)


def ensure_below_failure_limit(
    activity: str,
    *,
    limit: int,
    ip_address: str,
    note: object | None = None,
) -> None:
    """Raise RateLimitExceeded when ``limit`` failures were logged in the window.

    Failures are counted per client IP and, when ``note`` is given, per note
    (e.g. the voter id) as well.
    """
    window_seconds = int(settings.VOTING_RATE_LIMIT_WINDOW_SECONDS)
    since = timezone.now() - datetime.timedelta(seconds=window_seconds)

    exceeded = count_activity(activity, since=since, ip_address=ip_address) >= limit
    if not exceeded and note is not None:
        exceeded = count_activity(activity, since=since, note=note) >= limit

    if exceeded:
        _emit_rate_limit_denial_log(
            activity=activity,
            limit=limit,
            window_seconds=window_seconds,
            ip_address=ip_address,
            subject="" if note is None else str(note),
        )
        raise RateLimitExceeded("Too many failed attempts. Please wait one minute and try again.")
