"""Atomic, duplicate-preventing persistence of vote records.

A ballot is one transaction: the voter row is locked, duplicates are checked
against committed rows, every record is inserted and the method's rules are
checked. Any failure rolls the whole ballot back. Test voters go through the
same path and are rolled back at the end.
"""

from __future__ import annotations

import enum
import itertools
import logging
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from django.db import IntegrityError, models, transaction

from voting.exceptions import ConstraintViolation, DuplicateSubmission
from voting.models import (
    ComparisonChallenge,
    Election,
    Project,
    VoteApproval,
    VoteComparison,
    Voter,
    VoteKnapsack,
)
from voting.voting_methods import (
    Ballot,
    BallotVotingMethod,
    ComparisonMethod,
    PairBallot,
    get_voting_method,
)

logger = logging.getLogger(__name__)


class CommitStatus(enum.StrEnum):
    committed = "committed"
    duplicate = "duplicate"
    capped = "capped"
    rejected = "rejected"
    validated = "validated"
    not_accepting = "not_accepting"


@dataclass(frozen=True)
class CommitResult:
    status: CommitStatus
    reason: str = ""
    records: int = 0

    @property
    def committed(self) -> bool:
        return self.status == CommitStatus.committed


class _TestVoterRollback(Exception):
    pass


def _run_in_ballot_transaction(voter: Voter, body: Callable[[Voter], int]) -> CommitResult:
    try:
        with transaction.atomic():
            locked = Voter.objects.select_for_update().only("id", "is_test").get(pk=voter.pk)
            written = body(locked)
            if locked.is_test:
                raise _TestVoterRollback
    except _TestVoterRollback:
        return CommitResult(CommitStatus.validated)
    except DuplicateSubmission as exc:
        logger.info("Ignored duplicate ballot voter_id=%s: %s", voter.pk, exc)
        return CommitResult(CommitStatus.duplicate, reason=str(exc))
    except IntegrityError as exc:
        # A concurrent submission won the race on the unique constraint.
        logger.info("Ignored duplicate ballot voter_id=%s (unique constraint): %s", voter.pk, exc)
        return CommitResult(CommitStatus.duplicate, reason="unique constraint")
    except ConstraintViolation as exc:
        logger.info("Discarded ballot voter_id=%s: %s", voter.pk, exc)
        return CommitResult(CommitStatus.rejected, reason=str(exc))
    return CommitResult(CommitStatus.committed, records=written)


def commit_batch(
    *,
    voter: Voter,
    records: Sequence[models.Model],
    validate: Callable[[], object],
    duplicate_scope: Callable[[], bool] | None = None,
) -> CommitResult:
    """Persist ``records`` and run ``validate`` in one transaction, or persist nothing.

    ``duplicate_scope`` reports whether the voter already voted in the ballot's
    scope; it is evaluated after the voter row is locked.
    """

    def body(_locked: Voter) -> int:
        if duplicate_scope is not None and duplicate_scope():
            raise DuplicateSubmission("voter already has a ballot in this scope")
        for record in records:
            model = type(record)
            if model._default_manager.filter(**record.duplicate_lookup()).exists():
                raise DuplicateSubmission(f"{model.__name__} already exists for {record.duplicate_lookup()}")
            record.save(force_insert=True)
        validate()
        return len(records)

    return _run_in_ballot_transaction(voter, body)


def _ballot_projects(election: Election, method: BallotVotingMethod, ballot: Ballot) -> list[Project]:
    if method.name == "knapsack":
        return list(election.projects.order_by("id"))
    return list(election.projects_for_page(ballot.page_group))


def _approval_records(voter: Voter, projects: Sequence[Project], ballot: Ballot, *, with_ranks: bool) -> list[VoteApproval]:
    records: list[VoteApproval] = []
    for project in projects:
        cost = ballot.cost_for(project.id)
        if cost != 0:
            records.append(
                VoteApproval(
                    voter=voter,
                    project=project,
                    cost=cost,
                    rank=ballot.rank_for(project.id) if with_ranks else None,
                )
            )
        elif project.adjustable_cost and project.cost_min == 0:
            # Explicit "chose nothing" fact for the results histogram.
            records.append(VoteApproval(voter=voter, project=project, cost=0))
    return records


def submit_ballot(*, election: Election, voter: Voter, method_name: str, ballot: Ballot) -> CommitResult:
    """Validate and commit an approval, ranking or knapsack ballot."""
    conf = election.conf
    if conf.stop_accepting_votes:
        return CommitResult(CommitStatus.not_accepting)

    method = get_voting_method(method_name)
    if not isinstance(method, BallotVotingMethod):
        raise ValueError(f"{method_name!r} does not take project ballots")

    rules = conf.rules_for(method_name)
    projects = _ballot_projects(election, method, ballot)
    project_ids = [p.id for p in projects]

    duplicate_scope: Callable[[], bool]
    records: list[models.Model]
    if method.name == "approval":
        records = list(_approval_records(voter, projects, ballot, with_ranks=rules.project_ranking))

        def duplicate_scope() -> bool:
            return VoteApproval.objects.filter(voter_id=voter.pk, project_id__in=project_ids).exists()

    elif method.name == "ranking":
        records = [
            VoteApproval(
                voter=voter,
                project=p,
                cost=ballot.cost_for(p.id) or p.cost,
                rank=ballot.rank_for(p.id),
            )
            for p in method.selected_projects(projects, ballot)
        ]

        def duplicate_scope() -> bool:
            return VoteApproval.objects.filter(voter_id=voter.pk, project_id__in=project_ids).exists()

    else:
        records = [
            VoteKnapsack(voter=voter, project=p, cost=ballot.cost_for(p.id))
            for p in method.selected_projects(projects, ballot)
        ]

        def duplicate_scope() -> bool:
            # One knapsack ballot per voter for the whole election.
            return VoteKnapsack.objects.filter(voter_id=voter.pk).exists()

    result = commit_batch(
        voter=voter,
        records=records,
        validate=lambda: method.validate(ballot, rules, projects=projects, budget=int(election.budget)),
        duplicate_scope=duplicate_scope,
    )

    logger.info(
        "Ballot %s election=%s method=%s voter_id=%s records=%d",
        result.status,
        election.slug,
        method.name,
        voter.pk,
        result.records,
        extra={
            "event": "pbvote.ballot.submit",
            "component": "vote_store",
            "outcome": str(result.status),
            "election": election.slug,
            "method": method.name,
        },
    )
    return result


def issue_comparison_challenges(
    *,
    election: Election,
    voter: Voter | None,
    rng: random.Random | None = None,
) -> list[ComparisonChallenge]:
    """Draw the project pairs shown on the comparison page.

    Pairs are stored per voter so that only issued pairs can be answered, and
    so that reloading the page shows the same pairs. Without a voter (demo
    mode) the pairs are returned unsaved.
    """
    rng = rng or random.Random()
    n_pairs = election.conf.comparison.n_pairs

    def draw() -> list[tuple[Project, Project]]:
        projects = list(election.projects.filter(adjustable_cost=False).order_by("id"))
        pairs = list(itertools.combinations(projects, 2))
        drawn = rng.sample(pairs, min(n_pairs, len(pairs)))
        return [tuple(rng.sample(pair, 2)) for pair in drawn]

    if voter is None or voter.pk is None:
        return [
            ComparisonChallenge(position=idx, first_project=first, second_project=second)
            for idx, (first, second) in enumerate(draw())
        ]

    with transaction.atomic():
        Voter.objects.select_for_update().only("id").get(pk=voter.pk)
        existing = list(ComparisonChallenge.objects.filter(voter_id=voter.pk).order_by("position"))
        if existing:
            return existing

        return [
            ComparisonChallenge.objects.create(
                voter=voter,
                position=idx,
                first_project=first,
                second_project=second,
            )
            for idx, (first, second) in enumerate(draw())
        ]


_FLIPPED_RESULT = {
    VoteComparison.Result.first: VoteComparison.Result.second,
    VoteComparison.Result.second: VoteComparison.Result.first,
    VoteComparison.Result.tie: VoteComparison.Result.tie,
}


def submit_comparison(*, election: Election, voter: Voter, ballot: PairBallot) -> CommitResult:
    """Record one pairwise comparison; over-cap submissions are silent no-ops."""
    conf = election.conf
    if conf.stop_accepting_votes:
        return CommitResult(CommitStatus.not_accepting)

    method = get_voting_method("comparison")
    assert isinstance(method, ComparisonMethod)
    rules = conf.comparison
    capped = False

    def body(_locked: Voter) -> int:
        nonlocal capped
        recorded = VoteComparison.objects.filter(voter_id=voter.pk).count()
        if method.at_capacity(rules, recorded):
            capped = True
            return 0

        challenges = list(
            ComparisonChallenge.objects.filter(voter_id=voter.pk).select_related("first_project", "second_project")
        )
        challenge, swapped = method.validate(ballot, rules, challenges=challenges)
        result = VoteComparison.Result(ballot.result)
        if swapped:
            result = _FLIPPED_RESULT[result]

        record = VoteComparison(
            voter=voter,
            challenge=challenge,
            first_project=challenge.first_project,
            first_project_cost=challenge.first_project.cost,
            second_project=challenge.second_project,
            second_project_cost=challenge.second_project.cost,
            result=result,
        )
        if VoteComparison.objects.filter(**record.duplicate_lookup()).exists():
            raise DuplicateSubmission(f"challenge {challenge.pk} already answered")
        record.save(force_insert=True)
        return 1

    result = _run_in_ballot_transaction(voter, body)
    if capped:
        return CommitResult(CommitStatus.capped, reason=f"{rules.n_pairs} comparisons already recorded")
    return result
