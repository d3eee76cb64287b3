"""Public results: per-project tallies and cost histograms.

Only committed records of voters that are neither void nor test voters are
read. Nothing here touches the submission path.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping

from django.db.models import Count

from voting.models import Election, Project, VoteApproval, VoteKnapsack, counted_voter_q, counted_voters


def eligible_voter_count(election: Election) -> int:
    """Voters who got past the approval stage; the population of the zero-cost bucket."""
    return counted_voters(election).filter(stage__isnull=False).exclude(stage="approval").count()


def weighted_average(histogram: Mapping[int, int]) -> float | None:
    total = sum(histogram.values())
    if total <= 0:
        return None
    return round(sum(cost * count for cost, count in histogram.items()) / total, 2)


def weighted_median(histogram: Mapping[int, int]) -> float | int | None:
    """Median of the expanded histogram; the mean of the two middle values for even counts."""
    total = sum(count for count in histogram.values() if count > 0)
    if total <= 0:
        return None

    lower_pos = (total - 1) // 2
    upper_pos = total // 2
    lower: int | None = None
    upper: int | None = None
    seen = 0
    for cost in sorted(histogram):
        count = histogram[cost]
        if count <= 0:
            continue
        seen += count
        if lower is None and seen > lower_pos:
            lower = cost
        if seen > upper_pos:
            upper = cost
            break

    assert lower is not None and upper is not None
    if lower == upper:
        return lower
    return (lower + upper) / 2


def _fixed_cost_results(election: Election) -> list[dict[str, object]]:
    projects = list(Project.objects.filter(election=election, adjustable_cost=False).order_by("id"))

    voters_by_project: dict[int, set[int]] = defaultdict(set)
    for model in (VoteApproval, VoteKnapsack):
        rows = (
            model.objects.filter(counted_voter_q(), project__election=election, project__adjustable_cost=False)
            .values_list("project_id", "voter_id")
        )
        for project_id, voter_id in rows:
            voters_by_project[project_id].add(voter_id)

    results = [
        {
            "id": p.id,
            "title": p.title,
            "cost": p.cost,
            "vote_count": len(voters_by_project[p.id]) + int(p.external_vote_count or 0),
        }
        for p in projects
    ]
    results.sort(key=lambda r: (-int(r["vote_count"]), int(r["id"])))
    return results


def cost_histogram(project: Project, *, eligible_voters: int) -> dict[int, int]:
    counts: dict[int, int] = {}
    rows = (
        VoteApproval.objects.filter(counted_voter_q(), project=project)
        .values("cost")
        .annotate(vote_count=Count("id"))
    )
    for row in rows:
        counts[int(row["cost"])] = int(row["vote_count"])

    if project.cost_min == 0:
        # Voters who reached a later stage without any record for this project
        # (ballots stored before zero-cost records existed) also chose nothing.
        recorded = sum(counts.values())
        counts[0] = counts.get(0, 0) + max(0, eligible_voters - recorded)
    else:
        counts.pop(0, None)

    if not project.uses_slider:
        for cost in project.cost_options():
            counts.setdefault(cost, 0)

    return dict(sorted(counts.items()))


def _adjustable_cost_results(election: Election, *, eligible_voters: int) -> list[dict[str, object]]:
    results: list[dict[str, object]] = []
    for project in Project.objects.filter(election=election, adjustable_cost=True).order_by("id"):
        histogram = cost_histogram(project, eligible_voters=eligible_voters)
        results.append(
            {
                "id": project.id,
                "title": project.title,
                "cost": project.cost,
                "vote_counts": histogram,
                "max_vote_count": max(histogram.values(), default=0),
                "average_cost": weighted_average(histogram),
                "median_cost": weighted_median(histogram),
            }
        )
    return results


def build_results(election: Election) -> dict[str, object]:
    projects = _fixed_cost_results(election)
    has_adjustable = Project.objects.filter(election=election, adjustable_cost=True).exists()

    eligible_voters = eligible_voter_count(election) if has_adjustable else 0
    return {
        "election": election.slug,
        "projects": projects,
        "max_approval_vote_count": max((int(p["vote_count"]) for p in projects), default=0),
        "has_adjustable_cost_projects": has_adjustable,
        "eligible_voter_count": eligible_voters,
        "adjustable_cost_projects": (
            _adjustable_cost_results(election, eligible_voters=eligible_voters) if has_adjustable else []
        ),
    }
