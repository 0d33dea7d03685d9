import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="SystemBackup",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "backup_type",
                    models.CharField(
                        choices=[("FULL", "Full"), ("INCREMENTAL", "Incremental"), ("MANUAL", "Manual")],
                        default="FULL",
                        max_length=16,
                    ),
                ),
                ("file_path", models.CharField(max_length=1024)),
                ("file_size", models.PositiveBigIntegerField(default=0)),
                ("backup_date", models.DateTimeField(auto_now_add=True)),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="backups",
                        to="core.company",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-backup_date"],
                "indexes": [models.Index(fields=["company", "backup_date"], name="backup_company_date_idx")],
            },
        ),
    ]
