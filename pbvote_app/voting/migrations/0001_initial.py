from __future__ import annotations

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Election",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("slug", models.SlugField(max_length=64, unique=True)),
                ("budget", models.PositiveBigIntegerField(default=0)),
                ("config", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ("slug",),
            },
        ),
        migrations.CreateModel(
            name="Category",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("category_group", models.CharField(blank=True, default="", max_length=64)),
                ("sort_order", models.IntegerField(default=0)),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="categories",
                        to="voting.election",
                    ),
                ),
            ],
            options={
                "ordering": ("election", "sort_order", "id"),
                "verbose_name_plural": "Categories",
            },
        ),
        migrations.CreateModel(
            name="Project",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("cost", models.PositiveBigIntegerField(default=0)),
                ("adjustable_cost", models.BooleanField(default=False)),
                ("cost_min", models.PositiveBigIntegerField(default=0)),
                ("cost_step", models.PositiveBigIntegerField(default=0)),
                ("uses_slider", models.BooleanField(default=False)),
                ("mandatory", models.BooleanField(default=False)),
                ("external_vote_count", models.IntegerField(blank=True, null=True)),
                ("data", models.JSONField(blank=True, default=dict)),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="projects",
                        to="voting.election",
                    ),
                ),
                (
                    "category",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="projects",
                        to="voting.category",
                    ),
                ),
            ],
            options={
                "ordering": ("election", "id"),
            },
        ),
        migrations.CreateModel(
            name="Code",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=128)),
                (
                    "status",
                    models.CharField(
                        choices=[("active", "Active"), ("void", "Void")],
                        default="active",
                        max_length=16,
                    ),
                ),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="codes",
                        to="voting.election",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("election", "code"), name="uniq_code_election_code"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Voter",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "authentication_method",
                    models.CharField(
                        choices=[
                            ("code", "Voting machine code"),
                            ("remote_code", "Remote access code"),
                            ("phone", "Phone confirmation"),
                        ],
                        max_length=32,
                    ),
                ),
                ("authentication_id", models.CharField(max_length=255)),
                ("stage", models.CharField(blank=True, max_length=64, null=True)),
                ("is_test", models.BooleanField(default=False)),
                ("void", models.BooleanField(default=False)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.TextField(blank=True, default="")),
                ("location_id", models.IntegerField(blank=True, null=True)),
                ("confirmation_code", models.CharField(blank=True, default="", max_length=16)),
                ("confirmation_code_created_at", models.DateTimeField(blank=True, null=True)),
                ("data", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="voters",
                        to="voting.election",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("election", "authentication_method", "authentication_id"),
                        name="uniq_voter_election_authentication",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="VoterRegistrationRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("phone_number", models.CharField(blank=True, default="", max_length=64)),
                ("answers", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="registration_records",
                        to="voting.election",
                    ),
                ),
                (
                    "voter",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="registration_record",
                        to="voting.voter",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="VoteApproval",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("cost", models.BigIntegerField(default=0)),
                ("rank", models.PositiveIntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "voter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="vote_approvals",
                        to="voting.voter",
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="vote_approvals",
                        to="voting.project",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("voter", "project"), name="uniq_vote_approval_voter_project"),
                ],
            },
        ),
        migrations.CreateModel(
            name="VoteKnapsack",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("cost", models.BigIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "voter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="vote_knapsacks",
                        to="voting.voter",
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="vote_knapsacks",
                        to="voting.project",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("voter", "project"), name="uniq_vote_knapsack_voter_project"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ComparisonChallenge",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("position", models.PositiveIntegerField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "voter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="comparison_challenges",
                        to="voting.voter",
                    ),
                ),
                (
                    "first_project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="+",
                        to="voting.project",
                    ),
                ),
                (
                    "second_project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="+",
                        to="voting.project",
                    ),
                ),
            ],
            options={
                "ordering": ("voter", "position"),
                "constraints": [
                    models.UniqueConstraint(
                        fields=("voter", "position"),
                        name="uniq_comparison_challenge_voter_position",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="VoteComparison",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("first_project_cost", models.BigIntegerField(default=0)),
                ("second_project_cost", models.BigIntegerField(default=0)),
                (
                    "result",
                    models.CharField(
                        choices=[
                            ("first", "First project preferred"),
                            ("second", "Second project preferred"),
                            ("tie", "No preference"),
                        ],
                        max_length=8,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "voter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="vote_comparisons",
                        to="voting.voter",
                    ),
                ),
                (
                    "challenge",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="vote",
                        to="voting.comparisonchallenge",
                    ),
                ),
                (
                    "first_project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="+",
                        to="voting.project",
                    ),
                ),
                (
                    "second_project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="+",
                        to="voting.project",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="ActivityLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("activity", models.CharField(max_length=64)),
                ("note", models.CharField(blank=True, default="", max_length=255)),
                ("ip_address", models.CharField(blank=True, default="", max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "election",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="activity_log",
                        to="voting.election",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "Activity log entries",
                "ordering": ("created_at", "id"),
                "indexes": [
                    models.Index(fields=["activity", "created_at"], name="activity_act_at"),
                ],
            },
        ),
    ]
