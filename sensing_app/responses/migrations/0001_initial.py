import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import sensing_app.responses.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("campaigns", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="SurveyResponse",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("uuid", models.CharField(max_length=36, unique=True)),
                ("client", models.CharField(max_length=255)),
                ("epoch_millis", models.BigIntegerField()),
                ("phone_timezone", models.CharField(max_length=64)),
                ("survey_id", models.CharField(max_length=255)),
                ("launch_context", models.TextField(default="{}")),
                (
                    "location_status",
                    models.CharField(
                        choices=[
                            ("valid", "Valid"),
                            ("inaccurate", "Inaccurate"),
                            ("stale", "Stale"),
                            ("unavailable", "Unavailable"),
                        ],
                        max_length=20,
                    ),
                ),
                ("location", models.TextField(blank=True, null=True)),
                (
                    "privacy_state",
                    models.CharField(
                        choices=[("private", "Private"), ("shared", "Shared")],
                        default="private",
                        max_length=20,
                    ),
                ),
                ("upload_timestamp", models.DateTimeField(auto_now_add=True)),
                (
                    "campaign",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="survey_responses",
                        to="campaigns.campaign",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="survey_responses",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "survey_response",
                "indexes": [
                    models.Index(
                        fields=["campaign", "epoch_millis"],
                        name="survey_resp_campaig_3c1f0e_idx",
                    ),
                    models.Index(fields=["survey_id"], name="survey_resp_survey__8a2d41_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PromptResponse",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("prompt_id", models.CharField(max_length=255)),
                ("prompt_type", models.CharField(max_length=32)),
                (
                    "repeatable_set_id",
                    models.CharField(blank=True, max_length=255, null=True),
                ),
                (
                    "repeatable_set_iteration",
                    models.PositiveIntegerField(blank=True, null=True),
                ),
                ("response", models.TextField()),
                (
                    "survey_response",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="prompt_responses",
                        to="responses.surveyresponse",
                    ),
                ),
            ],
            options={
                "db_table": "prompt_response",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("survey_response", "prompt_id", "repeatable_set_iteration"),
                        name="unique_prompt_response_per_iteration",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Media",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("uuid", models.CharField(max_length=36, unique=True)),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("image", "Image"),
                            ("video", "Video"),
                            ("audio", "Audio"),
                            ("file", "File"),
                        ],
                        max_length=20,
                    ),
                ),
                ("content_type", models.CharField(max_length=255)),
                ("filename", models.CharField(blank=True, max_length=255)),
                (
                    "data",
                    models.FileField(
                        max_length=255,
                        upload_to=sensing_app.responses.models.media_upload_path,
                    ),
                ),
                ("size", models.PositiveBigIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="media",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "survey_response",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="media",
                        to="responses.surveyresponse",
                    ),
                ),
            ],
            options={
                "db_table": "media",
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("upload", "Upload"),
                            ("update", "Update"),
                            ("delete", "Delete"),
                            ("privacy_update", "Privacy update"),
                        ],
                        max_length=20,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "actor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="response_audit_logs",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "campaign",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        to="campaigns.campaign",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["campaign", "action"], name="responses_a_campaig_5e7b2c_idx"),
                    models.Index(fields=["created_at"], name="responses_a_created_9d4f10_idx"),
                ],
            },
        ),
    ]
