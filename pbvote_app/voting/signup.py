"""Voter sign-in and sign-up: access codes, account numbers and SMS confirmation.

Every flow resolves (or creates) the ``Voter`` for the election; storing it in
the session is left to the views.
"""

from __future__ import annotations

import datetime
import hmac
import logging
import re
import secrets
from collections.abc import Mapping

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from voting.activity import ensure_below_failure_limit, log_activity
from voting.exceptions import (
    CodeAlreadyUsed,
    ConfigurationDisabled,
    ConfirmationExpired,
    InvalidCode,
    SmsDeliveryError,
    VoidCode,
)
from voting.models import Code, Election, Voter, VoterRegistrationRecord
from voting.sms import send_sms
from voting.workflow import DONE, HOME, next_stage

logger = logging.getLogger(__name__)

TEST_CODE = "_test"
REGISTRATION_STEP = "registration"

_REMOTE_MODES = {
    "sms": "remote_voting_sms_verification",
    "code": "remote_voting_code_verification",
    "other": "remote_voting_other_verification",
}


def normalize_access_code(raw: object) -> str:
    return re.sub(r"\s+", "", str(raw or "")).lower()


def sanitize_code(raw: object) -> str:
    """Lower-case, keep [0-9a-z_] and strip leading zeros."""
    cleaned = re.sub(r"[^0-9a-z_]", "", str(raw or "").lower())
    return re.sub(r"^0+", "", cleaned)


def sanitize_phone_number(raw: object) -> str:
    """Collapse formatting so one phone number cannot register twice.

    "123-456-7890" and "1234567890" are the same number, as are
    "+12223334444" and "2223334444".
    """
    digits = re.sub(r"[^0-9+]", "", str(raw or ""))
    return re.sub(r"^\+?1", "", digits)


def ensure_remote_signup_allowed(election: Election, mode: str) -> None:
    conf = election.conf
    flag = _REMOTE_MODES[mode]
    if not (conf.allow_remote_voting and getattr(conf, flag) and not conf.stop_accepting_votes):
        raise ConfigurationDisabled(f"{mode.capitalize()} signup is not allowed")


def first_step_after_signup(election: Election, voter: Voter | None = None) -> str:
    if election.conf.voter_registration:
        return REGISTRATION_STEP
    return next_stage(election, HOME, voter=voter)


def _get_or_create_voter(
    *,
    election: Election,
    method: str,
    authentication_id: str,
    ip_address: str = "",
    user_agent: str = "",
    location_id: int | None = None,
    is_test: bool = False,
) -> tuple[Voter, bool]:
    lookup = {
        "election": election,
        "authentication_method": method,
        "authentication_id": authentication_id,
    }
    voter = Voter.objects.filter(**lookup).first()
    if voter is not None:
        return voter, False

    try:
        with transaction.atomic():
            voter = Voter.objects.create(
                **lookup,
                ip_address=ip_address or None,
                user_agent=user_agent,
                location_id=location_id,
                is_test=is_test,
            )
    except IntegrityError:
        # Another request created the voter concurrently.
        return Voter.objects.get(**lookup), False

    logger.info(
        "Created voter election=%s method=%s voter_id=%s test=%s",
        election.slug,
        method,
        voter.pk,
        is_test,
    )
    return voter, True


def _check_code_voter(voter: Voter) -> None:
    if voter.stage == DONE and not voter.is_test:
        raise CodeAlreadyUsed("This code has already been used to vote.")


def authenticate_code(
    *,
    election: Election,
    raw_code: object,
    ip_address: str = "",
    user_agent: str = "",
    location_id: int | None = None,
) -> Voter:
    """Voting-machine sign-in with a printed access code."""
    value = normalize_access_code(raw_code)
    if value == TEST_CODE:
        voter, _ = _get_or_create_voter(
            election=election,
            method=Voter.AuthenticationMethod.code,
            authentication_id=TEST_CODE,
            ip_address=ip_address,
            user_agent=user_agent,
            location_id=location_id,
            is_test=True,
        )
        return voter

    code = Code.objects.filter(election=election, code=value).first() if value else None
    if code is None:
        raise InvalidCode("Wrong code")
    if code.status == Code.Status.void:
        raise VoidCode("Void code")

    voter = Voter.objects.filter(
        election=election,
        authentication_method=Voter.AuthenticationMethod.code,
        authentication_id=code.code,
    ).first()
    if voter is not None:
        _check_code_voter(voter)
        return voter

    voter, _ = _get_or_create_voter(
        election=election,
        method=Voter.AuthenticationMethod.code,
        authentication_id=code.code,
        ip_address=ip_address,
        user_agent=user_agent,
        location_id=location_id,
    )
    return voter


def _remote_code_voter(*, election: Election, code: Code, ip_address: str, user_agent: str) -> Voter:
    if code.status == Code.Status.void:
        raise VoidCode("Void code")

    voter, created = _get_or_create_voter(
        election=election,
        method=Voter.AuthenticationMethod.remote_code,
        authentication_id=code.code,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    if not created:
        _check_code_voter(voter)
    return voter


def code_signup(*, election: Election, raw_code: object, ip_address: str = "", user_agent: str = "") -> Voter:
    """Remote voting sign-in with an access code."""
    ensure_remote_signup_allowed(election, "code")
    ensure_below_failure_limit(
        "remote_voting_signup_failure",
        limit=settings.VOTING_REMOTE_SIGNUP_FAILURE_LIMIT,
        ip_address=ip_address,
    )

    value = normalize_access_code(raw_code)
    code = Code.objects.filter(election=election, code=value).first() if value else None
    if code is None:
        log_activity("remote_voting_signup_failure", election=election, note=value, ip_address=ip_address)
        raise InvalidCode("Wrong access code")
    return _remote_code_voter(election=election, code=code, ip_address=ip_address, user_agent=user_agent)


def other_signup(
    *,
    election: Election,
    account_number: object,
    zipcode: object = "",
    ip_address: str = "",
    user_agent: str = "",
) -> Voter:
    """Remote voting sign-in with an account number, optionally qualified by zip code."""
    ensure_remote_signup_allowed(election, "other")
    ensure_below_failure_limit(
        "remote_voting_signup_failure",
        limit=settings.VOTING_REMOTE_SIGNUP_FAILURE_LIMIT,
        ip_address=ip_address,
    )

    value = sanitize_code(account_number)
    code = Code.objects.filter(election=election, code=value).first() if value else None
    zip_raw = str(zipcode or "").strip()
    if code is None and zip_raw:
        value = f"{value}&{sanitize_code(zip_raw)}"
        code = Code.objects.filter(election=election, code=value).first()

    if code is None:
        log_activity("remote_voting_signup_failure", election=election, note=value, ip_address=ip_address)
        raise InvalidCode("Wrong account number")

    voter = _remote_code_voter(election=election, code=code, ip_address=ip_address, user_agent=user_agent)
    if zip_raw:
        voter.update_data(zip_code=zip_raw)
    return voter


def sms_signup(*, election: Election, phone_number: object, ip_address: str = "", user_agent: str = "") -> Voter:
    """Send a confirmation code by SMS; the voter is confirmed by ``confirm_sms_signup``.

    Delivery failures are raised to the caller so the voter can retry.
    """
    ensure_remote_signup_allowed(election, "sms")

    raw_number = str(phone_number or "").strip()
    sanitized = sanitize_phone_number(raw_number)
    if not sanitized:
        raise InvalidCode("Please enter a phone number.")

    voter = Voter.objects.filter(
        election=election,
        authentication_method=Voter.AuthenticationMethod.phone,
        authentication_id=sanitized,
    ).first()
    if voter is not None and voter.stage == DONE:
        raise CodeAlreadyUsed(f"This number ({raw_number}) has already been used to vote.")

    confirmation_code = str(100000 + secrets.randbelow(900000))
    try:
        send_sms(to=raw_number, body=f"Confirmation code for voting: {confirmation_code}")
    except SmsDeliveryError:
        log_activity("sms_signup_failure", election=election, note=raw_number, ip_address=ip_address)
        raise

    if voter is None:
        voter, _ = _get_or_create_voter(
            election=election,
            method=Voter.AuthenticationMethod.phone,
            authentication_id=sanitized,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    voter.confirmation_code = confirmation_code
    voter.confirmation_code_created_at = timezone.now()
    voter.save(update_fields=["confirmation_code", "confirmation_code_created_at"])

    log_activity("sms_signup_success", election=election, note=raw_number, ip_address=ip_address)
    return voter


def confirm_sms_signup(*, election: Election, voter: Voter, confirmation_code: object, ip_address: str = "") -> Voter:
    ensure_remote_signup_allowed(election, "sms")
    ensure_below_failure_limit(
        "sms_signup_confirm_failure",
        limit=settings.VOTING_SMS_CONFIRM_FAILURE_LIMIT,
        ip_address=ip_address,
        note=voter.pk,
    )

    created_at = voter.confirmation_code_created_at
    ttl = datetime.timedelta(seconds=settings.VOTING_SMS_CONFIRMATION_CODE_TTL_SECONDS)
    if created_at is None or timezone.now() - created_at > ttl:
        raise ConfirmationExpired("The confirmation code has expired. Please enter your phone number again.")

    submitted = re.sub(r"\s+", "", str(confirmation_code or ""))
    if not voter.confirmation_code or not hmac.compare_digest(voter.confirmation_code, submitted):
        log_activity("sms_signup_confirm_failure", election=election, note=voter.pk, ip_address=ip_address)
        raise InvalidCode("Wrong confirmation code")

    log_activity("sms_signup_confirm_success", election=election, note=voter.pk, ip_address=ip_address)
    return voter


def register_voter(*, election: Election, voter: Voter, answers: Mapping[str, object]) -> VoterRegistrationRecord:
    conf = election.conf
    if not conf.voter_registration:
        raise ConfigurationDisabled("Voter registration is not enabled")

    allowed = [q for q in conf.voter_registration_questions if q != "age_verify"]
    cleaned = {q: str(answers.get(q) or "").strip() for q in allowed if q in answers}

    record, _ = VoterRegistrationRecord.objects.update_or_create(
        voter=voter,
        defaults={
            "election": election,
            "phone_number": cleaned.get("phone_number", ""),
            "answers": cleaned,
        },
    )
    log_activity("voter_registration_success", election=election, note=voter.pk)
    return record
