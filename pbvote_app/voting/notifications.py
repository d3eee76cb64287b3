from __future__ import annotations

import logging

import post_office.mail
from django.conf import settings

from voting.activity import log_activity
from voting.exceptions import SmsDeliveryError
from voting.models import Election, VoteApproval, Voter, VoterRegistrationRecord
from voting.sms import send_sms

logger = logging.getLogger(__name__)

THANKS_APPROVAL_SMS_BODY = "Thank you! Your vote has been successfully recorded."


def send_thanks_approval_sms(*, election: Election, voter: Voter) -> bool:
    """Best-effort vote confirmation SMS; failures are logged and never raised.

    Sent at most once per registered phone number, so reloading the thanks
    page does not send it again.
    """
    record = VoterRegistrationRecord.objects.filter(voter=voter).only("phone_number").first()
    phone_number = record.phone_number.strip() if record is not None else ""
    if not phone_number:
        log_activity("no_phone_number", election=election, note=voter.pk)
        return False
    if (voter.data or {}).get("thanks_sms_sent_to") == phone_number:
        return False

    try:
        send_sms(to=phone_number, body=THANKS_APPROVAL_SMS_BODY)
    except SmsDeliveryError as exc:
        logger.warning("Vote confirmation SMS failed voter_id=%s: %s", voter.pk, exc)
        log_activity("sms_failure", election=election, note=phone_number)
        return False
    voter.update_data(thanks_sms_sent_to=phone_number)
    return True


def send_vote_email(*, voter: Voter, email: str) -> None:
    """Queue an email listing the projects the voter approved."""
    titles = list(
        VoteApproval.objects.filter(voter=voter)
        .exclude(cost=0, project__adjustable_cost=True)
        .order_by("project_id")
        .values_list("project__title", flat=True)
    )
    lines = "\n".join(f"- {title}" for title in titles)

    post_office.mail.send(
        recipients=[email],
        sender=settings.DEFAULT_FROM_EMAIL,
        subject=f"Your vote in {voter.election.name}",
        message=f"Thank you for voting. You selected:\n\n{lines}\n",
        commit=True,
    )
    logger.info("Queued vote summary email voter_id=%s projects=%d", voter.pk, len(titles))
