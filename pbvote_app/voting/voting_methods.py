"""Ballot rules for the four voting methods.

Every method validates a proposed ballot against the election's rules and
raises ``ConstraintViolation`` when it must be discarded. Validation here is
pure; duplicate detection and persistence live in ``voting.vote_store``.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from django.db import models

from voting.election_config import ComparisonRules, MethodRules
from voting.exceptions import ConstraintViolation
from voting.models import ComparisonChallenge, Project, VoteApproval, VoteComparison, VoteKnapsack

_PROJECT_FIELD_RE = re.compile(r"^(project|project_rank)\[(\d+)\]$")


def _to_int(value: object) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class Ballot:
    """One voter's submission for a stage: per-project cost (0 = not selected) and rank."""

    costs: Mapping[int, int] = field(default_factory=dict)
    ranks: Mapping[int, int] = field(default_factory=dict)
    page_group: str | None = None

    @classmethod
    def from_form_data(cls, data: Mapping[str, object], *, page_group: str | None = None) -> Ballot:
        """Read ``project[<id>]`` and ``project_rank[<id>]`` fields; unparsable values count as 0."""
        costs: dict[int, int] = {}
        ranks: dict[int, int] = {}
        for key in data.keys():
            match = _PROJECT_FIELD_RE.match(str(key))
            if match is None:
                continue
            target = costs if match.group(1) == "project" else ranks
            target[int(match.group(2))] = _to_int(data.get(key))
        return cls(costs=costs, ranks=ranks, page_group=page_group)

    def cost_for(self, project_id: int) -> int:
        return int(self.costs.get(project_id, 0))

    def rank_for(self, project_id: int) -> int:
        return int(self.ranks.get(project_id, 0))


@dataclass(frozen=True)
class BallotTotals:
    total_cost: int
    n_projects: int
    ranks: tuple[int, ...] = ()


@dataclass(frozen=True)
class PairBallot:
    first_project_id: int
    second_project_id: int
    result: str


def ranks_are_contiguous(ranks: Iterable[int]) -> bool:
    """True when the ranks are exactly 1..k: unique, gap-free and 1-based."""
    ordered = sorted(ranks)
    return ordered == list(range(1, len(ordered) + 1))


def _check_cost(project: Project, cost: int) -> None:
    if cost < 0 or not project.allows_cost(cost):
        raise ConstraintViolation(f"Cost {cost} is not available for project {project.id}")


def _check_n_projects(rules: MethodRules, n_projects: int) -> None:
    if rules.has_n_project_limit and not rules.n_projects_allowed(n_projects):
        raise ConstraintViolation(
            f"Selected {n_projects} projects, allowed {rules.min_n_projects}..{rules.max_n_projects}"
        )


def _check_budget(rules: MethodRules, total_cost: int, budget: int) -> None:
    if rules.has_budget_limit and total_cost > budget:
        raise ConstraintViolation(f"Total cost {total_cost} exceeds budget {budget}")


class VotingMethod(ABC):
    name: str = ""
    record_model: type[models.Model]

    @abstractmethod
    def validate(self, ballot, rules, /, **context) -> object:
        """Check a ballot against the rules; raise ConstraintViolation to discard it."""


class BallotVotingMethod(VotingMethod):
    """Methods whose ballot covers a list of projects at once."""

    @abstractmethod
    def is_selected(self, project: Project, ballot: Ballot) -> bool: ...

    def selected_projects(self, projects: Sequence[Project], ballot: Ballot) -> list[Project]:
        return [p for p in projects if self.is_selected(p, ballot)]

    @abstractmethod
    def validate(self, ballot: Ballot, rules: MethodRules, /, *, projects: Sequence[Project], budget: int) -> BallotTotals: ...


class ApprovalMethod(BallotVotingMethod):
    name = "approval"
    record_model = VoteApproval

    def is_selected(self, project: Project, ballot: Ballot) -> bool:
        return ballot.cost_for(project.id) != 0

    def validate(self, ballot: Ballot, rules: MethodRules, /, *, projects: Sequence[Project], budget: int) -> BallotTotals:
        total_cost = 0
        n_projects = 0
        ranks: list[int] = []
        for project in self.selected_projects(projects, ballot):
            cost = ballot.cost_for(project.id)
            _check_cost(project, cost)
            total_cost += cost
            if not project.mandatory:
                n_projects += 1
            if rules.project_ranking:
                ranks.append(ballot.rank_for(project.id))

        _check_budget(rules, total_cost, budget)
        _check_n_projects(rules, n_projects)
        if rules.project_ranking and not ranks_are_contiguous(ranks):
            raise ConstraintViolation(f"Ranks {sorted(ranks)} are not 1..{len(ranks)}")
        return BallotTotals(total_cost=total_cost, n_projects=n_projects, ranks=tuple(ranks))


class RankingMethod(BallotVotingMethod):
    name = "ranking"
    record_model = VoteApproval

    def is_selected(self, project: Project, ballot: Ballot) -> bool:
        return ballot.rank_for(project.id) > 0

    def validate(self, ballot: Ballot, rules: MethodRules, /, *, projects: Sequence[Project], budget: int) -> BallotTotals:
        selected = self.selected_projects(projects, ballot)
        ranks = [ballot.rank_for(p.id) for p in selected]
        # Cost is kept on the record but plays no part in ranking rules.
        total_cost = sum(ballot.cost_for(p.id) for p in selected)

        _check_n_projects(rules, len(selected))
        if not ranks_are_contiguous(ranks):
            raise ConstraintViolation(f"Ranks {sorted(ranks)} are not 1..{len(ranks)}")
        return BallotTotals(total_cost=total_cost, n_projects=len(selected), ranks=tuple(ranks))


class KnapsackMethod(BallotVotingMethod):
    name = "knapsack"
    record_model = VoteKnapsack

    def is_selected(self, project: Project, ballot: Ballot) -> bool:
        return ballot.cost_for(project.id) != 0

    def validate(self, ballot: Ballot, rules: MethodRules, /, *, projects: Sequence[Project], budget: int) -> BallotTotals:
        total_cost = 0
        selected = self.selected_projects(projects, ballot)
        for project in selected:
            cost = ballot.cost_for(project.id)
            _check_cost(project, cost)
            total_cost += cost

        _check_budget(rules, total_cost, budget)
        _check_n_projects(rules, len(selected))
        return BallotTotals(total_cost=total_cost, n_projects=len(selected))


class ComparisonMethod(VotingMethod):
    name = "comparison"
    record_model = VoteComparison

    def at_capacity(self, rules: ComparisonRules, recorded: int) -> bool:
        return recorded >= rules.n_pairs

    def validate(
        self,
        ballot: PairBallot,
        rules: ComparisonRules,
        /,
        *,
        challenges: Sequence[ComparisonChallenge],
    ) -> tuple[ComparisonChallenge, bool]:
        """Match the submitted pair against the pairs issued to the voter.

        Returns the challenge and whether the voter submitted it in reverse order.
        """
        if ballot.result not in VoteComparison.Result.values:
            raise ConstraintViolation(f"Unknown comparison result {ballot.result!r}")
        if ballot.first_project_id == ballot.second_project_id:
            raise ConstraintViolation("A project cannot be compared with itself")

        for challenge in challenges:
            pair = (challenge.first_project_id, challenge.second_project_id)
            if pair == (ballot.first_project_id, ballot.second_project_id):
                return challenge, False
            if pair == (ballot.second_project_id, ballot.first_project_id):
                return challenge, True
        raise ConstraintViolation("Submitted pair was not issued to this voter")


VOTING_METHODS: dict[str, VotingMethod] = {
    method.name: method
    for method in (ApprovalMethod(), RankingMethod(), KnapsackMethod(), ComparisonMethod())
}


def get_voting_method(name: str) -> VotingMethod:
    try:
        return VOTING_METHODS[name]
    except KeyError as exc:
        raise ValueError(f"Unknown voting method {name!r}") from exc
