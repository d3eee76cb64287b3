"""Per-request voting context: election, voter, locale and session kind.

The locale is resolved for each request and carried here rather than in any
process-wide state.
"""

from __future__ import annotations

from dataclasses import dataclass

from django.http import HttpRequest

from voting.models import Election, Voter

VOTER_SESSION_KEY = "voter_id"
TMP_VOTER_SESSION_KEY = "tmp_voter_id"
VOTING_MACHINE_SESSION_KEY = "voting_machine_election_id"
LOCALE_SESSION_KEY = "voting_locale"


@dataclass(frozen=True)
class VotingContext:
    election: Election
    voter: Voter | None
    locale: str
    voting_machine: bool
    client_ip: str = ""

    @property
    def real_voting(self) -> bool:
        """True for voting-machine sessions and remote voting with a signed-in voter."""
        return self.voting_machine or (self.election.conf.allow_remote_voting and self.voter is not None)


def _resolve_locale(request: HttpRequest, election: Election) -> str:
    conf = election.conf
    requested = str(request.GET.get("locale") or "").strip()
    if requested and requested in conf.locales:
        request.session[LOCALE_SESSION_KEY] = requested
        return requested

    remembered = str(request.session.get(LOCALE_SESSION_KEY) or "")
    if remembered in conf.locales:
        return remembered
    return conf.default_locale


def _current_voter(request: HttpRequest, election: Election) -> Voter | None:
    voter_id = request.session.get(VOTER_SESSION_KEY)
    if not voter_id:
        return None
    voter = Voter.objects.select_related("election").filter(pk=voter_id).first()
    if voter is None or voter.election_id != election.id:
        return None
    return voter


def client_ip(request: HttpRequest) -> str:
    return str(request.META.get("REMOTE_ADDR") or "").strip()


def build_voting_context(request: HttpRequest, election: Election) -> VotingContext:
    machine_election_id = request.session.get(VOTING_MACHINE_SESSION_KEY)
    try:
        voting_machine = machine_election_id is not None and int(machine_election_id) == election.id
    except (TypeError, ValueError):
        voting_machine = False

    return VotingContext(
        election=election,
        voter=_current_voter(request, election),
        locale=_resolve_locale(request, election),
        voting_machine=voting_machine,
        client_ip=client_ip(request),
    )
