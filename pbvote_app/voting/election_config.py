"""Parsed, immutable view of ``Election.config``.

The raw JSON stored on an election looks like::

    {
        "workflow": ["approval", ["knapsack", "ranking"], "survey", "thanks"],
        "default_locale": "en",
        "allow_remote_voting": true,
        "approval": {"pages": ["city", "district"], "has_budget_limit": true},
        "comparison": {"n_pairs": 5},
        "show_public_results": true
    }

A list inside ``workflow`` is a slot with alternatives; one of them is chosen
at random per voter.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from django.core.exceptions import ImproperlyConfigured

BALLOT_METHODS = ("approval", "ranking", "knapsack")


class ElectionConfigError(ImproperlyConfigured):
    pass


@dataclass(frozen=True)
class Stage:
    name: str

    def names(self) -> tuple[str, ...]:
        return (self.name,)


@dataclass(frozen=True)
class OneOf:
    choices: tuple[str, ...]

    def names(self) -> tuple[str, ...]:
        return self.choices


type WorkflowSlot = Stage | OneOf


@dataclass(frozen=True)
class MethodRules:
    pages: tuple[str | None, ...] = (None,)
    has_budget_limit: bool = False
    has_n_project_limit: bool = False
    min_n_projects: int = 0
    max_n_projects: int | None = None
    project_ranking: bool = False
    shuffle_projects: bool = False
    shuffle_probability: float = 0.0

    def n_projects_allowed(self, n_projects: int) -> bool:
        if n_projects < self.min_n_projects:
            return False
        return self.max_n_projects is None or n_projects <= self.max_n_projects


@dataclass(frozen=True)
class ComparisonRules:
    n_pairs: int = 0


@dataclass(frozen=True)
class ElectionConfig:
    workflow: tuple[WorkflowSlot, ...] = ()
    default_locale: str = "en"
    locales: tuple[str, ...] = ("en",)
    allow_remote_voting: bool = False
    remote_voting_sms_verification: bool = False
    remote_voting_code_verification: bool = False
    remote_voting_other_verification: bool = False
    stop_accepting_votes: bool = False
    voter_registration: bool = False
    voter_registration_questions: tuple[str, ...] = ()
    send_vote_sms: bool = False
    show_public_results: bool = False
    external_redirect_url: str = ""
    survey_url: str = ""
    approval: MethodRules = field(default_factory=MethodRules)
    ranking: MethodRules = field(default_factory=MethodRules)
    knapsack: MethodRules = field(default_factory=MethodRules)
    comparison: ComparisonRules = field(default_factory=ComparisonRules)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> ElectionConfig:
        data = dict(raw or {})
        locales = tuple(str(x) for x in (data.get("locales") or ()))
        default_locale = str(data.get("default_locale") or (locales[0] if locales else "en"))

        return cls(
            workflow=_parse_workflow(data.get("workflow") or ()),
            default_locale=default_locale,
            locales=locales or (default_locale,),
            allow_remote_voting=bool(data.get("allow_remote_voting", False)),
            remote_voting_sms_verification=bool(data.get("remote_voting_sms_verification", False)),
            remote_voting_code_verification=bool(data.get("remote_voting_code_verification", False)),
            remote_voting_other_verification=bool(data.get("remote_voting_other_verification", False)),
            stop_accepting_votes=bool(data.get("stop_accepting_votes", False)),
            voter_registration=bool(data.get("voter_registration", False)),
            voter_registration_questions=tuple(str(q) for q in (data.get("voter_registration_questions") or ())),
            send_vote_sms=bool(data.get("send_vote_sms", False)),
            show_public_results=bool(data.get("show_public_results", False)),
            external_redirect_url=str(data.get("external_redirect_url") or ""),
            survey_url=str(data.get("survey_url") or ""),
            approval=_parse_method_rules("approval", data.get("approval")),
            ranking=_parse_method_rules("ranking", data.get("ranking")),
            knapsack=_parse_method_rules("knapsack", data.get("knapsack")),
            comparison=ComparisonRules(n_pairs=_non_negative_int("comparison.n_pairs", (data.get("comparison") or {}).get("n_pairs", 0))),
        )

    def rules_for(self, method: str) -> MethodRules:
        if method not in BALLOT_METHODS:
            raise ElectionConfigError(f"No ballot rules for voting method {method!r}")
        return getattr(self, method)

    def flat_workflow(self) -> list[str]:
        return [name for slot in self.workflow for name in slot.names()]

    def first_stage_slot(self) -> WorkflowSlot | None:
        return self.workflow[0] if self.workflow else None


def _parse_workflow(raw: object) -> tuple[WorkflowSlot, ...]:
    if not isinstance(raw, list | tuple):
        raise ElectionConfigError("workflow must be a list")

    slots: list[WorkflowSlot] = []
    for item in raw:
        if isinstance(item, str) and item:
            slots.append(Stage(item))
        elif isinstance(item, list | tuple):
            choices = tuple(str(x) for x in item if str(x))
            if not choices:
                raise ElectionConfigError("workflow alternatives must not be empty")
            slots.append(OneOf(choices))
        else:
            raise ElectionConfigError(f"Invalid workflow slot: {item!r}")
    return tuple(slots)


def _non_negative_int(name: str, value: object) -> int:
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ElectionConfigError(f"{name} must be an integer") from exc
    if parsed < 0:
        raise ElectionConfigError(f"{name} must not be negative")
    return parsed


def _parse_method_rules(method: str, raw: object) -> MethodRules:
    if raw is None:
        return MethodRules()
    if not isinstance(raw, Mapping):
        raise ElectionConfigError(f"{method} rules must be an object")

    pages_raw = raw.get("pages")
    if pages_raw is None:
        pages: tuple[str | None, ...] = (None,)
    elif isinstance(pages_raw, list | tuple) and pages_raw:
        pages = tuple(None if p is None else str(p) for p in pages_raw)
    else:
        raise ElectionConfigError(f"{method}.pages must be a non-empty list")

    max_raw = raw.get("max_n_projects")
    return MethodRules(
        pages=pages,
        has_budget_limit=bool(raw.get("has_budget_limit", False)),
        has_n_project_limit=bool(raw.get("has_n_project_limit", False)),
        min_n_projects=_non_negative_int(f"{method}.min_n_projects", raw.get("min_n_projects", 0)),
        max_n_projects=None if max_raw is None else _non_negative_int(f"{method}.max_n_projects", max_raw),
        project_ranking=bool(raw.get("project_ranking", False)),
        shuffle_projects=bool(raw.get("shuffle_projects", False)),
        shuffle_probability=float(raw.get("shuffle_probability", 0.0)),
    )
