from __future__ import annotations

from django.http import QueryDict
from django.test import SimpleTestCase

from voting.election_config import ComparisonRules, MethodRules
from voting.exceptions import ConstraintViolation
from voting.models import ComparisonChallenge, Project
from voting.voting_methods import (
    ApprovalMethod,
    Ballot,
    ComparisonMethod,
    KnapsackMethod,
    PairBallot,
    RankingMethod,
    get_voting_method,
    ranks_are_contiguous,
)


def _project(pk: int, cost: int, **kwargs) -> Project:
    return Project(id=pk, title=f"Project {pk}", cost=cost, **kwargs)


class BallotParsingTests(SimpleTestCase):
    def test_from_form_data(self) -> None:
        data = QueryDict("project[1]=40&project[2]=abc&project_rank[1]=2&csrfmiddlewaretoken=x&project[x]=5")

        ballot = Ballot.from_form_data(data, page_group="city")

        self.assertEqual(ballot.costs, {1: 40, 2: 0})
        self.assertEqual(ballot.ranks, {1: 2})
        self.assertEqual(ballot.page_group, "city")
        self.assertEqual(ballot.cost_for(3), 0)

    def test_ranks_are_contiguous(self) -> None:
        self.assertTrue(ranks_are_contiguous([2, 1, 3]))
        self.assertTrue(ranks_are_contiguous([]))
        self.assertFalse(ranks_are_contiguous([1, 1]))
        self.assertFalse(ranks_are_contiguous([1, 3]))
        self.assertFalse(ranks_are_contiguous([0, 1]))

    def test_unknown_method(self) -> None:
        with self.assertRaises(ValueError):
            get_voting_method("borda")


class RankingMethodTests(SimpleTestCase):
    def setUp(self) -> None:
        self.method = RankingMethod()
        self.projects = [_project(1, 10), _project(2, 20), _project(3, 30)]

    def _validate(self, ranks: dict[int, int], rules: MethodRules | None = None):
        return self.method.validate(Ballot(ranks=ranks), rules or MethodRules(), projects=self.projects, budget=0)

    def test_contiguous_ranks_pass(self) -> None:
        totals = self._validate({1: 2, 2: 1, 3: 3})

        self.assertEqual(totals.n_projects, 3)

    def test_duplicate_rank_fails(self) -> None:
        with self.assertRaises(ConstraintViolation):
            self._validate({1: 1, 2: 1})

    def test_gap_in_ranks_fails(self) -> None:
        with self.assertRaises(ConstraintViolation):
            self._validate({1: 1, 2: 3})

    def test_count_limit(self) -> None:
        rules = MethodRules(has_n_project_limit=True, max_n_projects=2)

        with self.assertRaises(ConstraintViolation):
            self._validate({1: 1, 2: 2, 3: 3}, rules)
        self._validate({1: 1, 2: 2}, rules)

    def test_budget_is_ignored(self) -> None:
        rules = MethodRules(has_budget_limit=True)

        totals = self.method.validate(
            Ballot(costs={1: 10, 2: 20}, ranks={1: 1, 2: 2}),
            rules,
            projects=self.projects,
            budget=5,
        )

        self.assertEqual(totals.total_cost, 30)


class KnapsackMethodTests(SimpleTestCase):
    def setUp(self) -> None:
        self.method = KnapsackMethod()
        self.projects = [_project(1, 40), _project(2, 60), _project(3, 70)]
        self.rules = MethodRules(has_budget_limit=True)

    def test_over_budget_fails(self) -> None:
        with self.assertRaises(ConstraintViolation):
            self.method.validate(Ballot(costs={1: 40, 3: 70}), self.rules, projects=self.projects, budget=100)

    def test_exact_budget_passes(self) -> None:
        totals = self.method.validate(Ballot(costs={1: 40, 2: 60}), self.rules, projects=self.projects, budget=100)

        self.assertEqual(totals.total_cost, 100)
        self.assertEqual(totals.n_projects, 2)

    def test_cost_must_be_offered(self) -> None:
        with self.assertRaises(ConstraintViolation):
            self.method.validate(Ballot(costs={1: 1}), self.rules, projects=self.projects, budget=100)

    def test_count_limit(self) -> None:
        rules = MethodRules(has_n_project_limit=True, min_n_projects=2, max_n_projects=3)

        with self.assertRaises(ConstraintViolation):
            self.method.validate(Ballot(costs={1: 40}), rules, projects=self.projects, budget=0)


class ApprovalMethodTests(SimpleTestCase):
    def setUp(self) -> None:
        self.method = ApprovalMethod()
        self.projects = [
            _project(1, 40),
            _project(2, 60, mandatory=True),
            _project(3, 50, adjustable_cost=True, cost_min=0, cost_step=10),
        ]

    def test_mandatory_projects_do_not_count(self) -> None:
        rules = MethodRules(has_n_project_limit=True, max_n_projects=1)

        totals = self.method.validate(Ballot(costs={1: 40, 2: 60}), rules, projects=self.projects, budget=0)

        self.assertEqual(totals.n_projects, 1)
        self.assertEqual(totals.total_cost, 100)

    def test_budget_limit(self) -> None:
        rules = MethodRules(has_budget_limit=True)

        with self.assertRaises(ConstraintViolation):
            self.method.validate(Ballot(costs={1: 40, 2: 60}), rules, projects=self.projects, budget=99)

    def test_adjustable_cost_must_be_on_the_grid(self) -> None:
        rules = MethodRules()

        self.method.validate(Ballot(costs={3: 30}), rules, projects=self.projects, budget=0)
        with self.assertRaises(ConstraintViolation):
            self.method.validate(Ballot(costs={3: 35}), rules, projects=self.projects, budget=0)
        with self.assertRaises(ConstraintViolation):
            self.method.validate(Ballot(costs={3: 60}), rules, projects=self.projects, budget=0)

    def test_negative_cost_fails(self) -> None:
        with self.assertRaises(ConstraintViolation):
            self.method.validate(Ballot(costs={3: -10}), MethodRules(), projects=self.projects, budget=0)

    def test_project_ranking(self) -> None:
        rules = MethodRules(project_ranking=True)

        self.method.validate(Ballot(costs={1: 40, 2: 60}, ranks={1: 2, 2: 1}), rules, projects=self.projects, budget=0)
        with self.assertRaises(ConstraintViolation):
            self.method.validate(Ballot(costs={1: 40, 2: 60}, ranks={1: 1}), rules, projects=self.projects, budget=0)


class ComparisonMethodTests(SimpleTestCase):
    def setUp(self) -> None:
        self.method = ComparisonMethod()
        self.rules = ComparisonRules(n_pairs=2)
        self.challenges = [
            ComparisonChallenge(id=10, position=0, first_project_id=1, second_project_id=2),
            ComparisonChallenge(id=11, position=1, first_project_id=3, second_project_id=1),
        ]

    def test_matches_issued_pair_in_either_orientation(self) -> None:
        challenge, swapped = self.method.validate(PairBallot(1, 2, "first"), self.rules, challenges=self.challenges)
        self.assertEqual(challenge.id, 10)
        self.assertFalse(swapped)

        challenge, swapped = self.method.validate(PairBallot(1, 3, "tie"), self.rules, challenges=self.challenges)
        self.assertEqual(challenge.id, 11)
        self.assertTrue(swapped)

    def test_rejects_pairs_that_were_not_issued(self) -> None:
        with self.assertRaises(ConstraintViolation):
            self.method.validate(PairBallot(2, 3, "first"), self.rules, challenges=self.challenges)

    def test_rejects_unknown_result(self) -> None:
        with self.assertRaises(ConstraintViolation):
            self.method.validate(PairBallot(1, 2, "both"), self.rules, challenges=self.challenges)

    def test_capacity(self) -> None:
        self.assertFalse(self.method.at_capacity(self.rules, 1))
        self.assertTrue(self.method.at_capacity(self.rules, 2))
