from django.urls import path

from voting import views

urlpatterns = [
    path("<slug:election_slug>/", views.index, name="vote-index"),
    path("<slug:election_slug>/approval/", views.approval, name="vote-approval"),
    path("<slug:election_slug>/approval/submit/", views.submit_approval, name="vote-submit-approval"),
    path("<slug:election_slug>/ranking/", views.ranking, name="vote-ranking"),
    path("<slug:election_slug>/ranking/submit/", views.submit_ranking, name="vote-submit-ranking"),
    path("<slug:election_slug>/knapsack/", views.knapsack, name="vote-knapsack"),
    path("<slug:election_slug>/knapsack/submit/", views.submit_knapsack, name="vote-submit-knapsack"),
    path("<slug:election_slug>/comparison/", views.comparison, name="vote-comparison"),
    path(
        "<slug:election_slug>/comparison/submit/",
        views.submit_comparison_view,
        name="vote-submit-comparison",
    ),
    path("<slug:election_slug>/comparison/done/", views.done_comparison, name="vote-done-comparison"),
    path("<slug:election_slug>/survey/", views.survey, name="vote-survey"),
    path("<slug:election_slug>/survey/done/", views.done_survey, name="vote-done-survey"),
    path("<slug:election_slug>/thanks-approval/", views.thanks_approval, name="vote-thanks-approval"),
    path("<slug:election_slug>/thanks/", views.thanks, name="vote-thanks"),
    path("<slug:election_slug>/done/", views.done, name="vote-done"),
    path("<slug:election_slug>/exit/", views.exit_voting, name="vote-exit"),
    path("<slug:election_slug>/results/", views.results, name="vote-results"),
    path("<slug:election_slug>/send-vote-email/", views.send_vote_email, name="vote-send-vote-email"),
    path("<slug:election_slug>/authenticate-code/", views.authenticate_code, name="vote-authenticate-code"),
    path("<slug:election_slug>/code-signup/", views.code_signup, name="vote-code-signup"),
    path("<slug:election_slug>/other-signup/", views.other_signup, name="vote-other-signup"),
    path("<slug:election_slug>/sms-signup/", views.sms_signup, name="vote-sms-signup"),
    path("<slug:election_slug>/sms-signup/confirm/", views.sms_signup_confirm, name="vote-sms-signup-confirm"),
    path("<slug:election_slug>/registration/", views.registration, name="vote-registration"),
]
