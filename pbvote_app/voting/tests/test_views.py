from __future__ import annotations

from django.test import TestCase, override_settings
from django.urls import reverse

from voting.context import TMP_VOTER_SESSION_KEY, VOTER_SESSION_KEY, VOTING_MACHINE_SESSION_KEY
from voting.models import (
    ActivityLog,
    Category,
    Code,
    ComparisonChallenge,
    Election,
    Project,
    VoteApproval,
    VoteComparison,
    Voter,
    VoteKnapsack,
    VoterRegistrationRecord,
)
from voting.sms import LocmemSmsBackend


class VotingViewTestCase(TestCase):
    config: dict[str, object] = {
        "workflow": ["approval", "knapsack", "thanks"],
        "locales": ["en", "fr"],
        "approval": {"has_budget_limit": True},
        "knapsack": {"has_budget_limit": True},
    }

    def setUp(self) -> None:
        self.election = Election.objects.create(name="City", slug="city", budget=100, config=self.config)
        self.park = Project.objects.create(election=self.election, title="Park", cost=40)
        self.library = Project.objects.create(election=self.election, title="Library", cost=60)
        self.bridge = Project.objects.create(election=self.election, title="Bridge", cost=70)

    def _url(self, name: str) -> str:
        return reverse(name, kwargs={"election_slug": self.election.slug})

    def _voter(self, **kwargs) -> Voter:
        return Voter.objects.create(
            election=self.election,
            authentication_method=Voter.AuthenticationMethod.code,
            authentication_id=kwargs.pop("authentication_id", "abc"),
            **kwargs,
        )

    def _start_voting_machine_session(self, voter: Voter | None = None) -> None:
        session = self.client.session
        session[VOTING_MACHINE_SESSION_KEY] = self.election.id
        if voter is not None:
            session[VOTER_SESSION_KEY] = voter.pk
        session.save()


class VotingFlowTests(VotingViewTestCase):
    def test_unknown_election_is_404(self) -> None:
        resp = self.client.get(reverse("vote-index", kwargs={"election_slug": "missing"}))

        self.assertEqual(resp.status_code, 404)

    def test_index_resolves_and_remembers_locale(self) -> None:
        resp = self.client.get(self._url("vote-index"), {"locale": "fr"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["locale"], "fr")

        resp = self.client.get(self._url("vote-index"))
        self.assertEqual(resp.json()["locale"], "fr")

        resp = self.client.get(self._url("vote-index"), {"locale": "de"})
        self.assertEqual(resp.json()["locale"], "fr")

    def test_voting_machine_sign_in_goes_to_first_stage(self) -> None:
        Code.objects.create(election=self.election, code="abc123")
        self._start_voting_machine_session()

        resp = self.client.post(self._url("vote-authenticate-code"), {"code": "ABC123"})

        self.assertRedirects(resp, self._url("vote-approval"), fetch_redirect_response=False)
        voter = Voter.objects.get()
        self.assertEqual(self.client.session[VOTER_SESSION_KEY], voter.pk)

    def test_wrong_code_is_400(self) -> None:
        resp = self.client.post(self._url("vote-authenticate-code"), {"code": "nope"})

        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.json()["ok"])

    def test_real_session_without_voter_goes_to_index(self) -> None:
        self._start_voting_machine_session()

        resp = self.client.get(self._url("vote-approval"))

        self.assertRedirects(resp, self._url("vote-index"), fetch_redirect_response=False)

    def test_demo_mode_shows_pages_without_recording(self) -> None:
        resp = self.client.get(self._url("vote-approval"))

        self.assertEqual(resp.status_code, 200)
        payload = resp.json()
        self.assertEqual(payload["stage"], "approval")
        self.assertEqual([p["id"] for p in payload["projects"]], [self.park.id, self.library.id, self.bridge.id])

        resp = self.client.post(self._url("vote-submit-approval"), {f"project[{self.park.id}]": "40"})
        self.assertRedirects(resp, self._url("vote-knapsack"), fetch_redirect_response=False)
        self.assertFalse(VoteApproval.objects.exists())

    def test_approval_page_records_stage_and_never_caches(self) -> None:
        voter = self._voter()
        self._start_voting_machine_session(voter)

        resp = self.client.get(self._url("vote-approval"))

        self.assertEqual(resp.status_code, 200)
        self.assertIn("no-cache", resp["Cache-Control"])
        voter.refresh_from_db()
        self.assertEqual(voter.stage, "approval")
        self.assertIn("approval", voter.data["timestamps"])
        self.assertFalse(voter.data["shuffled"])

    def test_submit_approval_commits_and_moves_on(self) -> None:
        voter = self._voter(stage="approval")
        self._start_voting_machine_session(voter)

        resp = self.client.post(
            self._url("vote-submit-approval"),
            {f"project[{self.park.id}]": "40", f"project[{self.library.id}]": "60"},
        )

        self.assertRedirects(resp, self._url("vote-knapsack"), fetch_redirect_response=False)
        self.assertEqual(VoteApproval.objects.filter(voter=voter).count(), 2)
        voter.refresh_from_db()
        self.assertEqual(voter.data["locale"], "en")

    def test_constraint_failure_moves_on_silently(self) -> None:
        voter = self._voter(stage="knapsack")
        self._start_voting_machine_session(voter)

        resp = self.client.post(
            self._url("vote-submit-knapsack"),
            {f"project[{self.park.id}]": "40", f"project[{self.bridge.id}]": "70"},
        )

        self.assertRedirects(resp, self._url("vote-thanks"), fetch_redirect_response=False)
        self.assertFalse(VoteKnapsack.objects.exists())

    def test_going_back_redirects_to_recorded_stage(self) -> None:
        voter = self._voter(stage="knapsack")
        self._start_voting_machine_session(voter)

        resp = self.client.get(self._url("vote-approval"))

        self.assertRedirects(resp, self._url("vote-knapsack"), fetch_redirect_response=False)
        voter.refresh_from_db()
        self.assertEqual(voter.stage, "knapsack")

    def test_test_voter_is_never_gated(self) -> None:
        voter = self._voter(authentication_id="_test", is_test=True, stage="knapsack")
        self._start_voting_machine_session(voter)

        resp = self.client.get(self._url("vote-approval"))

        self.assertEqual(resp.status_code, 200)

    def test_done_signs_out_and_redirects(self) -> None:
        voter = self._voter(stage="thanks")
        self._start_voting_machine_session(voter)

        resp = self.client.get(self._url("vote-done"))

        self.assertRedirects(resp, f"{self._url('vote-index')}?locale=en", fetch_redirect_response=False)
        self.assertNotIn(VOTER_SESSION_KEY, self.client.session)
        voter.refresh_from_db()
        self.assertEqual(voter.stage, "done")

    def test_exit_keeps_stage(self) -> None:
        voter = self._voter(stage="knapsack")
        self._start_voting_machine_session(voter)

        self.client.get(self._url("vote-exit"))

        self.assertNotIn(VOTER_SESSION_KEY, self.client.session)
        voter.refresh_from_db()
        self.assertEqual(voter.stage, "knapsack")

    def test_send_vote_email(self) -> None:
        voter = self._voter(stage="thanks")
        self._start_voting_machine_session(voter)

        resp = self.client.post(self._url("vote-send-vote-email"), {"email": "not-an-email"})
        self.assertEqual(resp.status_code, 400)

        resp = self.client.post(self._url("vote-send-vote-email"), {"email": "voter@example.com"})
        self.assertEqual(resp.json(), {"message": "Email sent!"})


class AlternativeStageTests(VotingViewTestCase):
    config = {
        "workflow": ["approval", ["knapsack", "ranking"], "thanks"],
        "knapsack": {"has_budget_limit": True},
    }

    def test_other_alternative_redirects_to_the_assigned_one(self) -> None:
        voter = self._voter(stage="approval", data={"workflow_choices": {"1": "knapsack"}})
        self._start_voting_machine_session(voter)

        resp = self.client.get(self._url("vote-ranking"))

        self.assertRedirects(resp, self._url("vote-knapsack"), fetch_redirect_response=False)
        voter.refresh_from_db()
        self.assertEqual(voter.stage, "approval")

    def test_ballot_for_the_other_alternative_is_not_taken(self) -> None:
        voter = self._voter(stage="knapsack", data={"workflow_choices": {"1": "knapsack"}})
        self._start_voting_machine_session(voter)

        resp = self.client.post(self._url("vote-submit-knapsack"), {f"project[{self.park.id}]": "40"})
        self.assertRedirects(resp, self._url("vote-thanks"), fetch_redirect_response=False)

        resp = self.client.post(self._url("vote-submit-ranking"), {f"project[{self.library.id}]": "1"})

        self.assertRedirects(resp, self._url("vote-knapsack"), fetch_redirect_response=False)
        self.assertEqual(VoteKnapsack.objects.filter(voter=voter).count(), 1)
        self.assertFalse(VoteApproval.objects.filter(voter=voter).exists())


class ApprovalSubpageTests(VotingViewTestCase):
    config = {
        "workflow": ["approval", "thanks"],
        "approval": {"pages": ["city", "district"]},
    }

    def test_subpages_are_submitted_in_turn(self) -> None:
        city = Category.objects.create(election=self.election, name="City", category_group="city")
        district = Category.objects.create(election=self.election, name="District", category_group="district")
        Project.objects.filter(pk=self.park.pk).update(category=city)
        Project.objects.filter(pk__in=[self.library.pk, self.bridge.pk]).update(category=district)
        voter = self._voter(stage="approval")
        self._start_voting_machine_session(voter)

        page = self.client.get(self._url("vote-approval"), {"subpage": 1}).json()
        self.assertEqual([p["id"] for p in page["projects"]], [self.library.id, self.bridge.id])

        resp = self.client.post(f"{self._url('vote-submit-approval')}?subpage=0", {f"project[{self.park.id}]": "40"})
        self.assertRedirects(resp, f"{self._url('vote-approval')}?subpage=1", fetch_redirect_response=False)

        resp = self.client.post(f"{self._url('vote-submit-approval')}?subpage=1", {f"project[{self.bridge.id}]": "70"})
        self.assertRedirects(resp, self._url("vote-thanks"), fetch_redirect_response=False)

        self.assertEqual(
            sorted(VoteApproval.objects.filter(voter=voter).values_list("project_id", flat=True)),
            [self.park.id, self.bridge.id],
        )

    def test_unknown_subpage_is_404(self) -> None:
        resp = self.client.get(self._url("vote-approval"), {"subpage": 5})

        self.assertEqual(resp.status_code, 404)


class ComparisonAndSurveyTests(VotingViewTestCase):
    config = {
        "workflow": ["comparison", "survey", "thanks"],
        "comparison": {"n_pairs": 2},
        "survey_url": "https://survey.example.com/",
    }

    def test_comparison_flow(self) -> None:
        voter = self._voter()
        self._start_voting_machine_session(voter)

        page = self.client.get(self._url("vote-comparison")).json()
        self.assertEqual(len(page["pairs"]), 2)
        self.assertEqual(ComparisonChallenge.objects.filter(voter=voter).count(), 2)

        pair = page["pairs"][0]
        resp = self.client.post(
            self._url("vote-submit-comparison"),
            {
                "first_project_id": pair["first_project_id"],
                "second_project_id": pair["second_project_id"],
                "result": "first",
            },
        )
        self.assertEqual(resp.json()["status"], "committed")
        self.assertEqual(VoteComparison.objects.filter(voter=voter).count(), 1)

        resp = self.client.post(self._url("vote-submit-comparison"), {"first_project_id": "x"})
        self.assertEqual(resp.status_code, 400)

        resp = self.client.get(self._url("vote-done-comparison"))
        self.assertRedirects(resp, self._url("vote-survey"), fetch_redirect_response=False)

    def test_survey_is_skipped_in_demo_mode(self) -> None:
        resp = self.client.get(self._url("vote-survey"))

        self.assertRedirects(resp, self._url("vote-thanks"), fetch_redirect_response=False)

    def test_survey_in_real_session(self) -> None:
        voter = self._voter(stage="comparison")
        self._start_voting_machine_session(voter)

        resp = self.client.get(self._url("vote-survey"))

        self.assertEqual(resp.json()["survey_url"], "https://survey.example.com/")

    def test_done_survey_breaks_out_of_the_frame(self) -> None:
        voter = self._voter(stage="survey")
        self._start_voting_machine_session(voter)

        resp = self.client.get(self._url("vote-done-survey"))

        self.assertEqual(resp.status_code, 200)
        self.assertIn("window.top.location.href", resp.content.decode())
        self.assertIn("thanks", resp.content.decode())
        self.assertFalse(resp.has_header("X-Frame-Options"))


class ResultsViewTests(VotingViewTestCase):
    def test_results_are_hidden_unless_public(self) -> None:
        resp = self.client.get(self._url("vote-results"))

        self.assertEqual(resp.status_code, 404)

    def test_public_results(self) -> None:
        self.election.config = {**self.config, "show_public_results": True}
        self.election.save()
        VoteApproval.objects.create(voter=self._voter(stage="thanks"), project=self.library, cost=60)

        resp = self.client.get(self._url("vote-results"))

        self.assertEqual(resp.status_code, 200)
        payload = resp.json()
        self.assertEqual(payload["projects"][0]["id"], self.library.id)
        self.assertEqual(payload["max_approval_vote_count"], 1)


class RemoteSignupViewTests(VotingViewTestCase):
    config = {
        "workflow": ["approval", "thanks_approval", "thanks"],
        "allow_remote_voting": True,
        "remote_voting_code_verification": True,
        "remote_voting_sms_verification": True,
    }

    def setUp(self) -> None:
        super().setUp()
        LocmemSmsBackend.outbox.clear()

    def test_disabled_mode_is_403(self) -> None:
        resp = self.client.post(self._url("vote-other-signup"), {"account_number": "123"})

        self.assertEqual(resp.status_code, 403)

    def test_registration_disabled_is_403(self) -> None:
        resp = self.client.get(self._url("vote-registration"))

        self.assertEqual(resp.status_code, 403)

    def test_code_signup(self) -> None:
        Code.objects.create(election=self.election, code="abc123")

        resp = self.client.post(self._url("vote-code-signup"), {"code": "abc123"})

        self.assertRedirects(resp, self._url("vote-approval"), fetch_redirect_response=False)
        voter = Voter.objects.get()
        self.assertEqual(voter.authentication_method, Voter.AuthenticationMethod.remote_code)

        resp = self.client.get(self._url("vote-approval"))
        self.assertEqual(resp.status_code, 200)
        voter.refresh_from_db()
        self.assertEqual(voter.stage, "approval")

    def test_code_signup_rate_limit_is_429(self) -> None:
        for _ in range(5):
            ActivityLog.objects.create(activity="remote_voting_signup_failure", ip_address="127.0.0.1")

        resp = self.client.post(self._url("vote-code-signup"), {"code": "abc123"})

        self.assertEqual(resp.status_code, 429)

    @override_settings(SMS_BACKEND="voting.sms.LocmemSmsBackend")
    def test_sms_signup_flow(self) -> None:
        resp = self.client.post(self._url("vote-sms-signup"), {"phone_number": "+1 222 333 4444"})
        self.assertRedirects(resp, self._url("vote-sms-signup-confirm"), fetch_redirect_response=False)
        voter = Voter.objects.get()
        self.assertEqual(self.client.session[TMP_VOTER_SESSION_KEY], voter.pk)

        resp = self.client.post(self._url("vote-sms-signup-confirm"), {"confirmation_code": "000000"})
        self.assertEqual(resp.status_code, 400)

        resp = self.client.post(
            self._url("vote-sms-signup-confirm"),
            {"confirmation_code": voter.confirmation_code},
        )
        self.assertRedirects(resp, self._url("vote-approval"), fetch_redirect_response=False)
        self.assertEqual(self.client.session[VOTER_SESSION_KEY], voter.pk)
        self.assertNotIn(TMP_VOTER_SESSION_KEY, self.client.session)

    def test_sms_confirm_without_pending_signup(self) -> None:
        resp = self.client.post(self._url("vote-sms-signup-confirm"), {"confirmation_code": "123456"})

        self.assertRedirects(resp, self._url("vote-sms-signup"), fetch_redirect_response=False)


@override_settings(SMS_BACKEND="voting.sms.LocmemSmsBackend")
class RegistrationViewTests(VotingViewTestCase):
    config = {
        "workflow": ["approval", "thanks_approval", "thanks"],
        "voter_registration": True,
        "voter_registration_questions": ["phone_number", "age_verify"],
        "send_vote_sms": True,
    }

    def setUp(self) -> None:
        super().setUp()
        LocmemSmsBackend.outbox.clear()

    def test_registration_then_thanks_sms(self) -> None:
        Code.objects.create(election=self.election, code="abc123")
        self._start_voting_machine_session()

        resp = self.client.post(self._url("vote-authenticate-code"), {"code": "abc123"})
        self.assertRedirects(resp, self._url("vote-registration"), fetch_redirect_response=False)

        page = self.client.get(self._url("vote-registration")).json()
        self.assertEqual(page["questions"], ["phone_number"])

        resp = self.client.post(self._url("vote-registration"), {"phone_number": "+15550100", "age_verify": "1"})
        self.assertRedirects(resp, self._url("vote-approval"), fetch_redirect_response=False)
        voter = Voter.objects.get()
        self.assertEqual(VoterRegistrationRecord.objects.get(voter=voter).answers, {"phone_number": "+15550100"})

        Voter.objects.filter(pk=voter.pk).update(stage="approval")
        resp = self.client.get(self._url("vote-thanks-approval"))
        self.assertTrue(resp.json()["sms_sent"])
        self.assertEqual([m.to for m in LocmemSmsBackend.outbox], ["+15550100"])

        # Reloading the page does not send a second message.
        self.client.get(self._url("vote-thanks-approval"))
        self.assertEqual(len(LocmemSmsBackend.outbox), 1)

    def test_test_voter_reload_does_not_resend_thanks_sms(self) -> None:
        self._start_voting_machine_session()
        self.client.post(self._url("vote-authenticate-code"), {"code": "_test"})
        self.client.post(self._url("vote-registration"), {"phone_number": "+15550100"})

        first = self.client.get(self._url("vote-thanks-approval")).json()
        second = self.client.get(self._url("vote-thanks-approval")).json()

        self.assertTrue(first["sms_sent"])
        self.assertFalse(second["sms_sent"])
        self.assertEqual(len(LocmemSmsBackend.outbox), 1)
        self.assertTrue(Voter.objects.get().is_test)
