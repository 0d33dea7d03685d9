import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


def _user_fk():
    return models.ForeignKey(
        blank=True,
        null=True,
        on_delete=django.db.models.deletion.SET_NULL,
        related_name="+",
        to=settings.AUTH_USER_MODEL,
    )


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="CashBalanceEntry",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("trans_date", models.DateField()),
                (
                    "trans_type",
                    models.CharField(
                        choices=[
                            ("SALES", "Sales"),
                            ("PURCHASE", "Purchase"),
                            ("EXPENSE", "Expense"),
                            ("RECEIPT", "Receipt"),
                            ("PAYMENT", "Payment"),
                        ],
                        max_length=16,
                    ),
                ),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("debit_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("credit_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                (
                    "party_type",
                    models.CharField(
                        blank=True,
                        choices=[("CUSTOMER", "Customer"), ("SUPPLIER", "Supplier")],
                        default="",
                        max_length=16,
                    ),
                ),
                ("party_code", models.CharField(blank=True, default="", max_length=32)),
                ("source_type", models.CharField(blank=True, default="", max_length=32)),
                ("source_id", models.UUIDField(blank=True, null=True)),
                ("created_by", _user_fk()),
                ("updated_by", _user_fk()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.company")),
            ],
            options={
                "ordering": ["-trans_date", "-created_at"],
                "indexes": [
                    models.Index(fields=["company", "trans_date"], name="cash_company_date_idx"),
                    models.Index(fields=["source_type", "source_id"], name="cash_source_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ExpenseHead",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=32)),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.company")),
            ],
            options={
                "ordering": ["code"],
                "constraints": [models.UniqueConstraint(fields=("company", "code"), name="uniq_expense_head_code")],
            },
        ),
        migrations.CreateModel(
            name="Expense",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("remarks", models.CharField(blank=True, default="", max_length=255)),
                ("expense_date", models.DateField()),
                ("created_by", _user_fk()),
                ("updated_by", _user_fk()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.company")),
                (
                    "head",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="expenses",
                        to="finance.expensehead",
                    ),
                ),
            ],
            options={
                "ordering": ["-expense_date", "-created_at"],
                "indexes": [models.Index(fields=["company", "expense_date"], name="expense_company_date_idx")],
            },
        ),
        migrations.CreateModel(
            name="OpeningCashBalance",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("balance_date", models.DateField()),
                ("opening_amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("closing_amount", models.DecimalField(decimal_places=2, max_digits=14)),
                (
                    "status",
                    models.CharField(choices=[("OPEN", "Open"), ("CLOSED", "Closed")], default="OPEN", max_length=16),
                ),
                ("created_by", _user_fk()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.company")),
            ],
            options={
                "ordering": ["-balance_date", "-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "OPEN")),
                        fields=("company",),
                        name="uniq_open_cash_balance_per_company",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Loan",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("loan_number", models.CharField(max_length=64)),
                ("loan_date", models.DateField()),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("interest_rate", models.DecimalField(decimal_places=2, default=0, max_digits=6)),
                ("term_months", models.PositiveIntegerField(default=0)),
                ("lender_name", models.CharField(max_length=255)),
                (
                    "status",
                    models.CharField(
                        choices=[("ACTIVE", "Active"), ("CLOSED", "Closed"), ("DEFAULTED", "Defaulted")],
                        default="ACTIVE",
                        max_length=16,
                    ),
                ),
                ("created_by", _user_fk()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.company")),
            ],
            options={
                "ordering": ["-loan_date", "-created_at"],
                "constraints": [models.UniqueConstraint(fields=("company", "loan_number"), name="uniq_loan_number")],
            },
        ),
        migrations.CreateModel(
            name="LoanReturn",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("return_date", models.DateField()),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("payment_method", models.CharField(default="CASH", max_length=32)),
                ("reference_number", models.CharField(blank=True, default="", max_length=128)),
                (
                    "status",
                    models.CharField(
                        choices=[("COMPLETED", "Completed"), ("PENDING", "Pending"), ("FAILED", "Failed")],
                        default="COMPLETED",
                        max_length=16,
                    ),
                ),
                ("created_by", _user_fk()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.company")),
                (
                    "loan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="returns",
                        to="finance.loan",
                    ),
                ),
            ],
            options={
                "ordering": ["-return_date", "-created_at"],
            },
        ),
    ]
