"""Per-voter workflow state machine.

Stages only move forward: once a voter has reached a stage, asking for an
earlier one redirects back to the recorded stage. ``thanks`` and ``done`` sit
after every workflow stage when the workflow does not list them. Alternatives
of a ``OneOf`` slot are exclusive: a voter only ever enters the one recorded
in ``data["workflow_choices"]``.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import transaction

from voting.election_config import OneOf, WorkflowSlot
from voting.models import Election, Voter

if TYPE_CHECKING:
    from voting.context import VotingContext

logger = logging.getLogger(__name__)

HOME = "home"
THANKS = "thanks"
DONE = "done"


@dataclass(frozen=True)
class StageDecision:
    allowed: bool
    redirect_stage: str | None = None


def stage_index(workflow: Sequence[WorkflowSlot], stage: str | None) -> int | None:
    """Index of ``stage`` within the flattened workflow, or None when absent."""
    if not stage:
        return None
    flat = [name for slot in workflow for name in slot.names()]
    try:
        return flat.index(str(stage))
    except ValueError:
        return None


def _progress_index(workflow: Sequence[WorkflowSlot], stage: str | None) -> int | None:
    """Like ``stage_index`` but places the unlisted terminal stages after the workflow."""
    idx = stage_index(workflow, stage)
    if idx is not None:
        return idx
    flat_len = sum(len(slot.names()) for slot in workflow)
    if stage == THANKS:
        return flat_len
    if stage == DONE:
        return flat_len + 1
    return None


def _slot_index(workflow: Sequence[WorkflowSlot], stage: str) -> int | None:
    for idx, slot in enumerate(workflow):
        if stage in slot.names():
            return idx
    return None


def resolve_slot(slot: WorkflowSlot, *, slot_index: int, voter: Voter | None = None) -> str:
    """Pick the stage for a slot; alternatives are drawn once per voter and remembered."""
    if not isinstance(slot, OneOf):
        return slot.name

    if voter is None or voter.pk is None:
        return random.choice(slot.choices)

    key = str(slot_index)
    with transaction.atomic():
        locked = Voter.objects.select_for_update().only("id", "data").get(pk=voter.pk)
        choices = dict((locked.data or {}).get("workflow_choices") or {})
        choice = choices.get(key)
        if choice not in slot.choices:
            choice = random.choice(slot.choices)
            locked.data = locked.merged_data(workflow_choices={key: choice})
            locked.save(update_fields=["data"])
            logger.info(
                "Resolved workflow alternative voter_id=%s slot=%s stage=%s",
                voter.pk,
                slot_index,
                choice,
            )
    voter.data = locked.data
    return choice


def next_stage(election: Election, current: str, *, voter: Voter | None = None) -> str:
    workflow = election.conf.workflow
    if current == HOME:
        idx = -1
    else:
        idx = _slot_index(workflow, current)
        if idx is None:
            return THANKS

    if idx + 1 >= len(workflow):
        return THANKS
    return resolve_slot(workflow[idx + 1], slot_index=idx + 1, voter=voter)


def advance(voter: Voter, target_stage: str) -> StageDecision:
    """Record ``target_stage`` for the voter unless it lies before the recorded stage.

    Entering an alternative of a ``OneOf`` slot fixes the voter's choice for
    that slot; the other alternatives then redirect to it.

    The recorded stage is re-read under a row lock so two concurrent requests
    cannot both pass the check against a stale value.
    """
    workflow = voter.election.conf.workflow

    with transaction.atomic():
        locked = Voter.objects.select_for_update().only("id", "stage", "data").get(pk=voter.pk)
        recorded = locked.stage
        if recorded:
            recorded_idx = _progress_index(workflow, recorded)
            target_idx = _progress_index(workflow, target_stage)
            if recorded_idx is not None and target_idx is not None and target_idx < recorded_idx:
                voter.stage = recorded
                return StageDecision(allowed=False, redirect_stage=recorded)

        values: dict[str, object] = {"timestamps": {target_stage: int(time.time())}}
        slot_idx = _slot_index(workflow, target_stage)
        slot = workflow[slot_idx] if slot_idx is not None else None
        if isinstance(slot, OneOf):
            key = str(slot_idx)
            choice = ((locked.data or {}).get("workflow_choices") or {}).get(key)
            if choice in slot.choices and choice != target_stage:
                voter.stage = recorded
                return StageDecision(allowed=False, redirect_stage=choice)
            if choice != target_stage:
                values["workflow_choices"] = {key: target_stage}

        locked.stage = target_stage
        locked.data = locked.merged_data(**values)
        locked.save(update_fields=["stage", "data"])

    voter.stage = locked.stage
    voter.data = locked.data
    return StageDecision(allowed=True)


def gate_stage(context: VotingContext, target_stage: str) -> StageDecision:
    """Apply ``advance`` for real voting sessions; test voters and demo mode are never gated."""
    voter = context.voter
    if not context.real_voting or voter is None or voter.is_test:
        return StageDecision(allowed=True)
    return advance(voter, target_stage)
