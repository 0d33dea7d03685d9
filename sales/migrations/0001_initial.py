import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


def _audit_user_fields():
    return [
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
        (
            "updated_by",
            models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to=settings.AUTH_USER_MODEL,
            ),
        ),
        ("created_at", models.DateTimeField(auto_now_add=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
    ]


def _line_fields():
    return [
        ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
        ("line_no", models.PositiveIntegerField(default=1)),
        ("quantity", models.DecimalField(decimal_places=3, max_digits=14)),
        ("unit_price", models.DecimalField(decimal_places=2, max_digits=14)),
        ("line_total", models.DecimalField(decimal_places=2, max_digits=14)),
    ]


PAYMENT_STATUS_CHOICES = [("COMPLETED", "Completed"), ("PENDING", "Pending"), ("FAILED", "Failed")]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
        ("inventory", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=32)),
                ("name", models.CharField(max_length=255)),
                ("city", models.CharField(blank=True, default="", max_length=128)),
                ("phone", models.CharField(blank=True, default="", max_length=64)),
                ("route_code", models.CharField(blank=True, default="", max_length=32)),
                ("tax_number", models.CharField(blank=True, default="", max_length=64)),
                ("credit_terms_days", models.PositiveIntegerField(default=0)),
                ("credit_limit", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("outstanding_balance", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                *_audit_user_fields(),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.company")),
            ],
            options={
                "ordering": ["code"],
                "constraints": [models.UniqueConstraint(fields=("company", "code"), name="uniq_customer_code")],
                "indexes": [models.Index(fields=["company", "phone"], name="customer_company_phone_idx")],
            },
        ),
        migrations.CreateModel(
            name="SalesInvoice",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("inv_number", models.CharField(max_length=64)),
                ("inv_date", models.DateField()),
                ("sub_total", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("tax_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("total_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("balance_due", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                *_audit_user_fields(),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.company")),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="sales.customer",
                    ),
                ),
            ],
            options={
                "ordering": ["-inv_date", "-created_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "inv_number"), name="uniq_sales_invoice_number")
                ],
                "indexes": [
                    models.Index(fields=["company", "inv_date"], name="invoice_company_date_idx"),
                    models.Index(fields=["company", "balance_due"], name="invoice_company_balance_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SalesInvoiceItem",
            fields=[
                *_line_fields(),
                ("tax_rate", models.DecimalField(decimal_places=2, default=0, max_digits=6)),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="sales.salesinvoice",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="sales_items",
                        to="inventory.product",
                    ),
                ),
            ],
            options={
                "ordering": ["line_no"],
            },
        ),
        migrations.CreateModel(
            name="SalesReturn",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("return_number", models.CharField(max_length=64)),
                ("return_date", models.DateField()),
                (
                    "status",
                    models.CharField(
                        choices=[("COMPLETED", "Completed"), ("PENDING", "Pending"), ("CANCELLED", "Cancelled")],
                        default="COMPLETED",
                        max_length=16,
                    ),
                ),
                ("total_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                *_audit_user_fields(),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.company")),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="returns",
                        to="sales.salesinvoice",
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="returns",
                        to="sales.customer",
                    ),
                ),
            ],
            options={
                "ordering": ["-return_date", "-created_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "return_number"), name="uniq_sales_return_number")
                ],
            },
        ),
        migrations.CreateModel(
            name="SalesReturnItem",
            fields=[
                *_line_fields(),
                (
                    "sales_return",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="sales.salesreturn",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="return_items",
                        to="inventory.product",
                    ),
                ),
            ],
            options={
                "ordering": ["line_no"],
            },
        ),
        migrations.CreateModel(
            name="PaymentReceipt",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("receipt_number", models.CharField(max_length=64)),
                ("receipt_date", models.DateField()),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("payment_method", models.CharField(default="CASH", max_length=32)),
                ("reference_number", models.CharField(blank=True, default="", max_length=128)),
                ("status", models.CharField(choices=PAYMENT_STATUS_CHOICES, default="COMPLETED", max_length=16)),
                *_audit_user_fields(),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.company")),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="receipts",
                        to="sales.customer",
                    ),
                ),
            ],
            options={
                "ordering": ["-receipt_date", "-created_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "receipt_number"), name="uniq_receipt_number")
                ],
            },
        ),
        migrations.CreateModel(
            name="DiscountVoucher",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("voucher_number", models.CharField(max_length=64)),
                ("voucher_date", models.DateField()),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("reason", models.CharField(blank=True, default="", max_length=255)),
                (
                    "status",
                    models.CharField(
                        choices=[("ACTIVE", "Active"), ("USED", "Used"), ("EXPIRED", "Expired")],
                        default="ACTIVE",
                        max_length=16,
                    ),
                ),
                *_audit_user_fields(),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.company")),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="discount_vouchers",
                        to="sales.customer",
                    ),
                ),
            ],
            options={
                "ordering": ["-voucher_date", "-created_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "voucher_number"), name="uniq_voucher_number")
                ],
            },
        ),
    ]
