"""SMS backends, selected with ``settings.SMS_BACKEND`` like Django email backends."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import override

import requests
from django.conf import settings
from django.utils.module_loading import import_string

from voting.exceptions import SmsDeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmsMessage:
    to: str
    body: str


class BaseSmsBackend:
    def send(self, message: SmsMessage) -> None:
        raise NotImplementedError


class TwilioSmsBackend(BaseSmsBackend):
    """Send through the Twilio Messages REST endpoint."""

    @override
    def send(self, message: SmsMessage) -> None:
        account_sid = settings.TWILIO_ACCOUNT_SID
        url = f"{settings.TWILIO_API_BASE_URL.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        try:
            response = requests.post(
                url,
                data={
                    "From": settings.TWILIO_PHONE_NUMBER,
                    "To": message.to,
                    "Body": message.body,
                },
                auth=(account_sid, settings.TWILIO_AUTH_TOKEN),
                timeout=settings.SMS_REQUEST_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Twilio SMS delivery failed: %s", exc)
            raise SmsDeliveryError(str(exc)) from exc


class ConsoleSmsBackend(BaseSmsBackend):
    """Log messages instead of sending them (development)."""

    @override
    def send(self, message: SmsMessage) -> None:
        logger.info("SMS to=%s body=%r", message.to, message.body)


class LocmemSmsBackend(BaseSmsBackend):
    """Keep messages in ``LocmemSmsBackend.outbox`` (tests)."""

    outbox: list[SmsMessage] = []

    @override
    def send(self, message: SmsMessage) -> None:
        type(self).outbox.append(message)


def get_sms_backend() -> BaseSmsBackend:
    return import_string(settings.SMS_BACKEND)()


def send_sms(*, to: str, body: str) -> None:
    get_sms_backend().send(SmsMessage(to=to, body=body))
