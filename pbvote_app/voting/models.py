from __future__ import annotations

import random
from functools import cached_property

from django.db import models
from django.db.models import Q

from voting.election_config import ElectionConfig


class Election(models.Model):
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=64, unique=True)
    budget = models.PositiveBigIntegerField(default=0)

    # Workflow, per-method rules and voting switches. See voting.election_config.
    config = models.JSONField(blank=True, default=dict)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("slug",)

    def __str__(self) -> str:
        return self.slug

    @cached_property
    def conf(self) -> ElectionConfig:
        return ElectionConfig.from_dict(self.config)

    def ordered_categories(self, category_group: str | None, shuffled: bool = False) -> list[Category]:
        categories = self.categories.all()
        if category_group is not None:
            categories = categories.filter(category_group=category_group)
        ordered = list(categories.order_by("sort_order", "id"))
        if shuffled:
            random.shuffle(ordered)
        return ordered

    def projects_for_page(self, category_group: str | None) -> models.QuerySet[Project]:
        projects = self.projects.all()
        if category_group is not None:
            projects = projects.filter(category__category_group=category_group)
        return projects.order_by("id")


class Category(models.Model):
    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="categories")
    name = models.CharField(max_length=255)
    # Approval pages are built from category groups, one sub-ballot per group.
    category_group = models.CharField(max_length=64, blank=True, default="")
    sort_order = models.IntegerField(default=0)

    class Meta:
        ordering = ("election", "sort_order", "id")
        verbose_name_plural = "Categories"

    def __str__(self) -> str:
        return f"{self.election_id}:{self.name}"


class Project(models.Model):
    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="projects")
    category = models.ForeignKey(
        Category,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="projects",
    )
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")

    # For adjustable-cost projects this is the maximum cost the voter can choose.
    cost = models.PositiveBigIntegerField(default=0)
    adjustable_cost = models.BooleanField(default=False)
    cost_min = models.PositiveBigIntegerField(default=0)
    cost_step = models.PositiveBigIntegerField(default=0)
    uses_slider = models.BooleanField(default=False)

    mandatory = models.BooleanField(default=False)
    external_vote_count = models.IntegerField(blank=True, null=True)
    data = models.JSONField(blank=True, default=dict)

    class Meta:
        ordering = ("election", "id")

    def __str__(self) -> str:
        return self.title

    @property
    def cost_max(self) -> int:
        return int(self.cost)

    def cost_options(self) -> list[int]:
        """Every cost a voter can pick for an adjustable-cost project, ascending."""
        if not self.adjustable_cost:
            return [int(self.cost)]
        if self.cost_step <= 0:
            return sorted({int(self.cost_min), self.cost_max})
        return list(range(int(self.cost_min), self.cost_max + 1, int(self.cost_step)))

    def allows_cost(self, cost: int) -> bool:
        if not self.adjustable_cost:
            return cost == self.cost
        if cost < self.cost_min or cost > self.cost_max:
            return False
        if self.cost_step <= 0:
            return True
        return (cost - self.cost_min) % self.cost_step == 0

    def as_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "cost": self.cost,
            "cost_min": self.cost_min,
            "cost_step": self.cost_step,
            "adjustable_cost": self.adjustable_cost,
            "uses_slider": self.uses_slider,
            "mandatory": self.mandatory,
            "category_id": self.category_id,
            "data": self.data,
        }


class Code(models.Model):
    class Status(models.TextChoices):
        active = "active", "Active"
        void = "void", "Void"

    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="codes")
    code = models.CharField(max_length=128)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.active)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["election", "code"], name="uniq_code_election_code"),
        ]

    def __str__(self) -> str:
        return f"{self.election_id}:{self.code}"


class Voter(models.Model):
    class AuthenticationMethod(models.TextChoices):
        code = "code", "Voting machine code"
        remote_code = "remote_code", "Remote access code"
        phone = "phone", "Phone confirmation"

    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="voters")
    authentication_method = models.CharField(max_length=32, choices=AuthenticationMethod.choices)
    authentication_id = models.CharField(max_length=255)

    # Current workflow stage; NULL until the voter enters the first stage.
    stage = models.CharField(max_length=64, blank=True, null=True)

    is_test = models.BooleanField(default=False)
    void = models.BooleanField(default=False)

    ip_address = models.GenericIPAddressField(blank=True, null=True)
    user_agent = models.TextField(blank=True, default="")
    location_id = models.IntegerField(blank=True, null=True)

    confirmation_code = models.CharField(max_length=16, blank=True, default="")
    confirmation_code_created_at = models.DateTimeField(blank=True, null=True)

    # Locale, stage timestamps, shuffle flag, workflow choices, free-form fields.
    data = models.JSONField(blank=True, default=dict)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["election", "authentication_method", "authentication_id"],
                name="uniq_voter_election_authentication",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.election_id}:{self.authentication_method}:{self.pk}"

    def merged_data(self, **values: object) -> dict[str, object]:
        data = dict(self.data or {})
        for key, value in values.items():
            current = data.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                data[key] = {**current, **value}
            else:
                data[key] = value
        return data

    def update_data(self, **values: object) -> None:
        """Merge values into ``data``; nested dicts (e.g. timestamps) are merged one level deep."""
        self.data = self.merged_data(**values)
        self.save(update_fields=["data"])


class VoterRegistrationRecord(models.Model):
    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="registration_records")
    voter = models.OneToOneField(Voter, on_delete=models.CASCADE, related_name="registration_record")
    phone_number = models.CharField(max_length=64, blank=True, default="")
    answers = models.JSONField(blank=True, default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"registration:{self.voter_id}"


class VoteApproval(models.Model):
    """One project on an approval or ranking ballot.

    Adjustable-cost projects left at zero are stored with ``cost=0`` so the
    results never have to infer how many voters declined them.
    """

    voter = models.ForeignKey(Voter, on_delete=models.CASCADE, related_name="vote_approvals")
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="vote_approvals")
    cost = models.BigIntegerField(default=0)
    rank = models.PositiveIntegerField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["voter", "project"], name="uniq_vote_approval_voter_project"),
        ]

    def __str__(self) -> str:
        return f"approval:{self.voter_id}:{self.project_id}"

    def duplicate_lookup(self) -> dict[str, object]:
        return {"voter_id": self.voter_id, "project_id": self.project_id}


class VoteKnapsack(models.Model):
    voter = models.ForeignKey(Voter, on_delete=models.CASCADE, related_name="vote_knapsacks")
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="vote_knapsacks")
    cost = models.BigIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["voter", "project"], name="uniq_vote_knapsack_voter_project"),
        ]

    def __str__(self) -> str:
        return f"knapsack:{self.voter_id}:{self.project_id}"

    def duplicate_lookup(self) -> dict[str, object]:
        return {"voter_id": self.voter_id, "project_id": self.project_id}


class ComparisonChallenge(models.Model):
    """A project pair issued to a voter on the comparison page."""

    voter = models.ForeignKey(Voter, on_delete=models.CASCADE, related_name="comparison_challenges")
    position = models.PositiveIntegerField()
    first_project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="+")
    second_project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("voter", "position")
        constraints = [
            models.UniqueConstraint(fields=["voter", "position"], name="uniq_comparison_challenge_voter_position"),
        ]

    def __str__(self) -> str:
        return f"challenge:{self.voter_id}:{self.position}"

    def as_payload(self) -> dict[str, object]:
        return {
            "position": self.position,
            "first_project_id": self.first_project_id,
            "second_project_id": self.second_project_id,
        }


class VoteComparison(models.Model):
    class Result(models.TextChoices):
        first = "first", "First project preferred"
        second = "second", "Second project preferred"
        tie = "tie", "No preference"

    voter = models.ForeignKey(Voter, on_delete=models.CASCADE, related_name="vote_comparisons")
    challenge = models.OneToOneField(
        ComparisonChallenge,
        on_delete=models.CASCADE,
        related_name="vote",
    )
    first_project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="+")
    first_project_cost = models.BigIntegerField(default=0)
    second_project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="+")
    second_project_cost = models.BigIntegerField(default=0)
    result = models.CharField(max_length=8, choices=Result.choices)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"comparison:{self.voter_id}:{self.challenge_id}"

    def duplicate_lookup(self) -> dict[str, object]:
        return {"challenge_id": self.challenge_id}


class ActivityLog(models.Model):
    election = models.ForeignKey(
        Election,
        on_delete=models.CASCADE,
        blank=True,
        null=True,
        related_name="activity_log",
    )
    activity = models.CharField(max_length=64)
    note = models.CharField(max_length=255, blank=True, default="")
    ip_address = models.CharField(max_length=64, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        verbose_name_plural = "Activity log entries"
        ordering = ("created_at", "id")
        indexes = [
            models.Index(fields=["activity", "created_at"], name="activity_act_at"),
        ]

    def __str__(self) -> str:
        return f"{self.activity}:{self.note}"


def counted_voters(election: Election) -> models.QuerySet[Voter]:
    """Voters whose ballots count toward public results."""
    return Voter.objects.filter(election=election, void=False, is_test=False)


def counted_voter_q(prefix: str = "voter") -> Q:
    return Q(**{f"{prefix}__void": False, f"{prefix}__is_test": False})
