"""Voting pages, ballot submission and signup endpoints.

Pages answer with JSON; rendering them is left to the front end. Every view
receives a ``VotingContext`` carrying the election, the signed-in voter and
the locale resolved for this request.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from functools import wraps
from urllib.parse import urlencode

from django.core.exceptions import PermissionDenied, ValidationError
from django.core.validators import validate_email
from django.http import Http404, HttpRequest, HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404, redirect
from django.urls import reverse
from django.utils.cache import add_never_cache_headers
from django.utils.html import escapejs
from django.views.decorators.clickjacking import xframe_options_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from voting import notifications, signup
from voting.context import (
    TMP_VOTER_SESSION_KEY,
    VOTER_SESSION_KEY,
    VotingContext,
    build_voting_context,
)
from voting.exceptions import (
    ConfigurationDisabled,
    ConfirmationExpired,
    RateLimitExceeded,
    SignupError,
    SmsDeliveryError,
    StageViolation,
)
from voting.models import Election, Voter
from voting.results import build_results
from voting.vote_store import issue_comparison_challenges, submit_ballot, submit_comparison
from voting.voting_methods import Ballot, PairBallot
from voting.workflow import DONE, HOME, THANKS, gate_stage, next_stage

logger = logging.getLogger(__name__)

VOTING_MACHINE_LOCATION_SESSION_KEY = "voting_machine_location_id"

# Workflow stages that have a page of their own.
STAGE_PAGES = frozenset({"approval", "ranking", "knapsack", "comparison", "survey", "thanks_approval", THANKS, DONE})

type VotingView = Callable[..., HttpResponse]


def stage_url(election: Election, stage: str, **query: object) -> str:
    if stage not in STAGE_PAGES:
        logger.warning("Workflow stage %r of election %s has no page; sending voter to thanks", stage, election.slug)
        stage = THANKS
    url = reverse(f"vote-{stage.replace('_', '-')}", kwargs={"election_slug": election.slug})
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


def index_url(election: Election, **query: object) -> str:
    url = reverse("vote-index", kwargs={"election_slug": election.slug})
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


def _redirect_to_next(ctx: VotingContext, current: str) -> HttpResponse:
    return redirect(stage_url(ctx.election, next_stage(ctx.election, current, voter=ctx.voter)))


def _error(message: str, *, status: int) -> JsonResponse:
    return JsonResponse({"ok": False, "error": message}, status=status)


def voting_view(view: VotingView) -> VotingView:
    """Resolve the election and voting context, and translate voting errors to responses."""

    @wraps(view)
    def wrapper(request: HttpRequest, election_slug: str, *args: object, **kwargs: object) -> HttpResponse:
        election = get_object_or_404(Election, slug=election_slug)
        ctx = build_voting_context(request, election)
        try:
            response = view(request, ctx, *args, **kwargs)
        except StageViolation as exc:
            response = redirect(stage_url(election, exc.recorded_stage))
        except ConfigurationDisabled as exc:
            raise PermissionDenied(str(exc)) from exc
        except RateLimitExceeded as exc:
            response = _error(str(exc), status=429)
        except SignupError as exc:
            response = _error(str(exc), status=400)

        if ctx.real_voting:
            add_never_cache_headers(response)
        return response

    return wrapper


def voter_required(view: VotingView) -> VotingView:
    """Send real voting sessions without a signed-in voter back to the index page."""

    @wraps(view)
    def wrapper(request: HttpRequest, ctx: VotingContext, *args: object, **kwargs: object) -> HttpResponse:
        if ctx.real_voting and ctx.voter is None:
            return redirect(index_url(ctx.election))
        return view(request, ctx, *args, **kwargs)

    return wrapper


def _enter_stage(ctx: VotingContext, stage: str) -> None:
    decision = gate_stage(ctx, stage)
    if not decision.allowed:
        raise StageViolation(decision.redirect_stage or stage)


def _current_subpage(request: HttpRequest, pages: tuple[str | None, ...]) -> int:
    raw = request.POST.get("subpage") if request.method == "POST" else None
    raw = raw or request.GET.get("subpage") or 0
    try:
        subpage = int(raw)
    except (TypeError, ValueError) as exc:
        raise Http404("Unknown ballot page") from exc
    if not 0 <= subpage < len(pages):
        raise Http404("Unknown ballot page")
    return subpage


def _ballot_page(request: HttpRequest, ctx: VotingContext, method: str) -> HttpResponse:
    election = ctx.election
    rules = election.conf.rules_for(method)
    subpage = _current_subpage(request, rules.pages)
    page_group = rules.pages[subpage]

    shuffled = rules.shuffle_projects and random.random() < rules.shuffle_probability
    if ctx.voter is not None:
        ctx.voter.update_data(shuffled=shuffled)

    categories = election.ordered_categories(page_group, shuffled)
    projects = election.projects_for_page(page_group) if method != "knapsack" else election.projects.order_by("id")
    return JsonResponse(
        {
            "election": election.slug,
            "stage": method,
            "locale": ctx.locale,
            "subpage": subpage,
            "n_subpages": len(rules.pages),
            "budget": election.budget,
            "rules": {
                "has_budget_limit": rules.has_budget_limit,
                "has_n_project_limit": rules.has_n_project_limit,
                "min_n_projects": rules.min_n_projects,
                "max_n_projects": rules.max_n_projects,
                "project_ranking": rules.project_ranking,
            },
            "shuffled": shuffled,
            "categories": [{"id": c.id, "name": c.name, "category_group": c.category_group} for c in categories],
            "projects": [p.as_payload() for p in projects],
            "submit_url": f"{reverse(f'vote-submit-{method}', kwargs={'election_slug': election.slug})}?subpage={subpage}",
        }
    )


def _submit_ballot_page(request: HttpRequest, ctx: VotingContext, method: str) -> tuple[int, int]:
    """Commit the posted ballot; returns (subpage, page count)."""
    election = ctx.election
    rules = election.conf.rules_for(method)
    subpage = _current_subpage(request, rules.pages)

    voter = ctx.voter
    if ctx.real_voting and voter is not None and not voter.is_test and voter.stage != method:
        # Ballots are only taken for the page the voter is on.
        raise StageViolation(voter.stage or next_stage(election, HOME, voter=voter))

    if ctx.voter is not None:
        ballot = Ballot.from_form_data(request.POST, page_group=rules.pages[subpage])
        result = submit_ballot(election=election, voter=ctx.voter, method_name=method, ballot=ballot)
        if result.committed:
            ctx.voter.update_data(locale=ctx.locale)
    return subpage, len(rules.pages)


@require_GET
@voting_view
def index(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    conf = ctx.election.conf
    return JsonResponse(
        {
            "election": ctx.election.slug,
            "name": ctx.election.name,
            "locale": ctx.locale,
            "locales": list(conf.locales),
            "voting_machine": ctx.voting_machine,
            "signed_in": ctx.voter is not None,
            "accepting_votes": not conf.stop_accepting_votes,
            "remote_voting": {
                "enabled": conf.allow_remote_voting,
                "sms": conf.remote_voting_sms_verification,
                "code": conf.remote_voting_code_verification,
                "other": conf.remote_voting_other_verification,
            },
            "show_public_results": conf.show_public_results,
        }
    )


@require_GET
@voting_view
@voter_required
def approval(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    _enter_stage(ctx, "approval")
    return _ballot_page(request, ctx, "approval")


@require_POST
@voting_view
@voter_required
def submit_approval(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    subpage, n_pages = _submit_ballot_page(request, ctx, "approval")
    if subpage >= n_pages - 1:
        return _redirect_to_next(ctx, "approval")
    return redirect(stage_url(ctx.election, "approval", subpage=subpage + 1))


@require_GET
@voting_view
@voter_required
def ranking(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    _enter_stage(ctx, "ranking")
    return _ballot_page(request, ctx, "ranking")


@require_POST
@voting_view
@voter_required
def submit_ranking(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    _submit_ballot_page(request, ctx, "ranking")
    return _redirect_to_next(ctx, "ranking")


@require_GET
@voting_view
@voter_required
def knapsack(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    _enter_stage(ctx, "knapsack")
    return _ballot_page(request, ctx, "knapsack")


@require_POST
@voting_view
@voter_required
def submit_knapsack(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    _submit_ballot_page(request, ctx, "knapsack")
    return _redirect_to_next(ctx, "knapsack")


@require_GET
@voting_view
@voter_required
def comparison(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    _enter_stage(ctx, "comparison")
    election = ctx.election
    challenges = issue_comparison_challenges(election=election, voter=ctx.voter)
    projects = election.projects.filter(adjustable_cost=False).order_by("id")
    return JsonResponse(
        {
            "election": election.slug,
            "stage": "comparison",
            "locale": ctx.locale,
            "projects": [p.as_payload() for p in projects],
            "pairs": [c.as_payload() for c in challenges],
            "submit_url": reverse("vote-submit-comparison", kwargs={"election_slug": election.slug}),
            "done_url": reverse("vote-done-comparison", kwargs={"election_slug": election.slug}),
        }
    )


@require_POST
@voting_view
@voter_required
def submit_comparison_view(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    if ctx.voter is None:
        return JsonResponse({"ok": True, "status": "not_recorded"})

    try:
        ballot = PairBallot(
            first_project_id=int(request.POST.get("first_project_id") or ""),
            second_project_id=int(request.POST.get("second_project_id") or ""),
            result=str(request.POST.get("result") or "").strip(),
        )
    except ValueError:
        return _error("first_project_id and second_project_id are required", status=400)

    result = submit_comparison(election=ctx.election, voter=ctx.voter, ballot=ballot)
    return JsonResponse({"ok": True, "status": str(result.status)})


@require_GET
@voting_view
def done_comparison(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    return _redirect_to_next(ctx, "comparison")


@require_GET
@voting_view
@voter_required
def survey(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    _enter_stage(ctx, "survey")
    if not ctx.real_voting:
        # Demo sessions skip the external survey.
        return _redirect_to_next(ctx, "survey")
    return JsonResponse(
        {
            "election": ctx.election.slug,
            "stage": "survey",
            "locale": ctx.locale,
            "survey_url": ctx.election.conf.survey_url,
            "done_url": reverse("vote-done-survey", kwargs={"election_slug": ctx.election.slug}),
        }
    )


@require_GET
@xframe_options_exempt
@voting_view
@voter_required
def done_survey(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    # Loaded inside the survey iframe: move the whole window, not the frame.
    url = stage_url(ctx.election, next_stage(ctx.election, "survey", voter=ctx.voter))
    return HttpResponse(f'<html><script>window.top.location.href = "{escapejs(url)}";</script></html>')


@require_GET
@voting_view
@voter_required
def thanks_approval(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    _enter_stage(ctx, "thanks_approval")

    conf = ctx.election.conf
    sms_sent = False
    if ctx.voter is not None and conf.voter_registration and conf.send_vote_sms:
        sms_sent = notifications.send_thanks_approval_sms(election=ctx.election, voter=ctx.voter)

    return JsonResponse(
        {
            "election": ctx.election.slug,
            "stage": "thanks_approval",
            "locale": ctx.locale,
            "sms_sent": sms_sent,
            "next_url": stage_url(ctx.election, next_stage(ctx.election, "thanks_approval", voter=ctx.voter)),
        }
    )


@require_GET
@voting_view
@voter_required
def thanks(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    _enter_stage(ctx, THANKS)
    return JsonResponse(
        {
            "election": ctx.election.slug,
            "stage": THANKS,
            "locale": ctx.locale,
            "done_url": stage_url(ctx.election, DONE),
        }
    )


@require_GET
@voting_view
def done(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    _enter_stage(ctx, DONE)
    request.session.pop(VOTER_SESSION_KEY, None)

    conf = ctx.election.conf
    if conf.external_redirect_url:
        return redirect(conf.external_redirect_url)
    return redirect(index_url(ctx.election, locale=conf.default_locale))


@require_GET
@voting_view
def exit_voting(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    """Sign out without finishing; the voter can come back later."""
    request.session.pop(VOTER_SESSION_KEY, None)
    return redirect(index_url(ctx.election, locale=ctx.election.conf.default_locale))


@require_GET
@voting_view
def results(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    if not ctx.election.conf.show_public_results:
        raise Http404
    return JsonResponse(build_results(ctx.election))


@require_POST
@voting_view
def send_vote_email(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    email = str(request.POST.get("email") or "").strip()
    if ctx.voter is None:
        return JsonResponse({"message": "Sorry, a problem has occurred. The email could not be sent."}, status=400)
    try:
        validate_email(email)
    except ValidationError:
        return JsonResponse({"message": "Please enter a valid email address."}, status=400)

    notifications.send_vote_email(voter=ctx.voter, email=email)
    return JsonResponse({"message": "Email sent!"})


def _sign_in(request: HttpRequest, voter: Voter) -> None:
    request.session.pop(TMP_VOTER_SESSION_KEY, None)
    request.session[VOTER_SESSION_KEY] = voter.pk


def _after_sign_in(ctx: VotingContext, voter: Voter) -> HttpResponse:
    step = signup.first_step_after_signup(ctx.election, voter)
    if step == signup.REGISTRATION_STEP:
        return redirect(reverse("vote-registration", kwargs={"election_slug": ctx.election.slug}))
    return redirect(stage_url(ctx.election, step))


def _request_meta(request: HttpRequest, ctx: VotingContext) -> dict[str, str]:
    return {
        "ip_address": ctx.client_ip,
        "user_agent": str(request.META.get("HTTP_USER_AGENT") or ""),
    }


@require_POST
@voting_view
def authenticate_code(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    location_id = request.session.get(VOTING_MACHINE_LOCATION_SESSION_KEY)
    voter = signup.authenticate_code(
        election=ctx.election,
        raw_code=request.POST.get("code"),
        location_id=int(location_id) if location_id is not None else None,
        **_request_meta(request, ctx),
    )
    _sign_in(request, voter)
    return _after_sign_in(ctx, voter)


@require_http_methods(["GET", "POST"])
@voting_view
def code_signup(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    if request.method == "GET":
        signup.ensure_remote_signup_allowed(ctx.election, "code")
        return JsonResponse({"election": ctx.election.slug, "locale": ctx.locale, "mode": "code"})

    voter = signup.code_signup(
        election=ctx.election,
        raw_code=request.POST.get("code"),
        **_request_meta(request, ctx),
    )
    _sign_in(request, voter)
    return _after_sign_in(ctx, voter)


@require_http_methods(["GET", "POST"])
@voting_view
def other_signup(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    if request.method == "GET":
        signup.ensure_remote_signup_allowed(ctx.election, "other")
        return JsonResponse({"election": ctx.election.slug, "locale": ctx.locale, "mode": "other"})

    voter = signup.other_signup(
        election=ctx.election,
        account_number=request.POST.get("account_number"),
        zipcode=request.POST.get("zipcode"),
        **_request_meta(request, ctx),
    )
    _sign_in(request, voter)
    return _after_sign_in(ctx, voter)


@require_http_methods(["GET", "POST"])
@voting_view
def sms_signup(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    if request.method == "GET":
        signup.ensure_remote_signup_allowed(ctx.election, "sms")
        return JsonResponse({"election": ctx.election.slug, "locale": ctx.locale, "mode": "sms"})

    try:
        voter = signup.sms_signup(
            election=ctx.election,
            phone_number=request.POST.get("phone_number"),
            **_request_meta(request, ctx),
        )
    except SmsDeliveryError:
        return _error("We could not send the confirmation code. Please check the number and try again.", status=502)

    request.session[TMP_VOTER_SESSION_KEY] = voter.pk
    return redirect(reverse("vote-sms-signup-confirm", kwargs={"election_slug": ctx.election.slug}))


@require_http_methods(["GET", "POST"])
@voting_view
def sms_signup_confirm(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    signup_url = reverse("vote-sms-signup", kwargs={"election_slug": ctx.election.slug})
    voter_id = request.session.get(TMP_VOTER_SESSION_KEY)
    voter = Voter.objects.filter(pk=voter_id, election=ctx.election).first() if voter_id else None
    if voter is None:
        return redirect(signup_url)

    if request.method == "GET":
        signup.ensure_remote_signup_allowed(ctx.election, "sms")
        return JsonResponse({"election": ctx.election.slug, "locale": ctx.locale, "mode": "sms_confirm"})

    try:
        signup.confirm_sms_signup(
            election=ctx.election,
            voter=voter,
            confirmation_code=request.POST.get("confirmation_code"),
            ip_address=ctx.client_ip,
        )
    except ConfirmationExpired:
        request.session.pop(TMP_VOTER_SESSION_KEY, None)
        return redirect(signup_url)

    _sign_in(request, voter)
    return _after_sign_in(ctx, voter)


@require_http_methods(["GET", "POST"])
@voting_view
def registration(request: HttpRequest, ctx: VotingContext) -> HttpResponse:
    conf = ctx.election.conf
    if not conf.voter_registration:
        raise ConfigurationDisabled("Voter registration is not enabled")

    questions = [q for q in conf.voter_registration_questions if q != "age_verify"]
    if request.method == "GET":
        return JsonResponse({"election": ctx.election.slug, "locale": ctx.locale, "questions": questions})

    if ctx.voter is None:
        return redirect(index_url(ctx.election))

    signup.register_voter(election=ctx.election, voter=ctx.voter, answers=request.POST)
    return redirect(stage_url(ctx.election, next_stage(ctx.election, HOME, voter=ctx.voter)))
