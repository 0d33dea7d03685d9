"""Primitives shared by every ledger-mutating operation.

Each business event (sales invoice, purchase invoice, sales return, receipt,
supplier payment, expense, cash transaction, loan) is written through these
helpers inside one `transaction.atomic()` block opened by `ledger_operation`.
Party and product rows are locked before their running totals move and the
totals are updated with `F()` expressions.
"""

import functools
import logging
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import APIException, NotFound, ValidationError

from common.exceptions import InsufficientStock
from core.models import DocumentSequence
from finance.models import CashBalanceEntry
from inventory.models import Product, Supplier, TaxRate
from sales.models import Customer

logger = logging.getLogger("ledger")
stock_logger = logging.getLogger("inventory.stock")

MONEY_QUANT = Decimal("0.01")
QUANTITY_QUANT = Decimal("0.001")
LINE_TOTAL_TOLERANCE = Decimal("0.01")


def to_money(value):
    return Decimal(value or 0).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_quantity(value):
    return Decimal(value or 0).quantize(QUANTITY_QUANT, rounding=ROUND_HALF_UP)


def ledger_operation(document):
    """Run the wrapped operation in one transaction and log every failure path with business keys."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            company = kwargs.get("company")
            user = kwargs.get("user")
            extra = {
                "document": document,
                "document_id": args[0] if args else None,
                "company_code": getattr(company, "code", None),
                "user_id": str(user.pk) if user is not None and getattr(user, "pk", None) else None,
                "event": func.__name__,
            }
            try:
                with transaction.atomic():
                    return func(*args, **kwargs)
            except APIException as exc:
                logger.warning("ledger_rejected operation=%s detail=%s", func.__name__, exc.detail, extra=extra)
                raise
            except Exception:
                logger.exception("ledger_failed operation=%s", func.__name__, extra=extra)
                raise

        return wrapper

    return decorator


def next_document_number(company, prefix, on_date=None):
    """Return `<PREFIX>-<YYYYMMDD>-<seq>`; the per-company counter row is locked while it advances."""
    on_date = on_date or timezone.localdate()
    with transaction.atomic():
        sequence, _ = DocumentSequence.objects.select_for_update().get_or_create(company=company, prefix=prefix)
        DocumentSequence.objects.filter(pk=sequence.pk).update(last_value=F("last_value") + 1)
        sequence.refresh_from_db(fields=["last_value"])
    return f"{prefix}-{on_date:%Y%m%d}-{sequence.last_value:06d}"


def ensure_not_future(value, field_name):
    if value and value > timezone.localdate():
        raise ValidationError({field_name: "Date cannot be in the future."})


def lock_customer(company, code):
    customer = Customer.objects.select_for_update().filter(company=company, code=code).first()
    if customer is None:
        raise NotFound(f"Customer {code} was not found.")
    return customer


def lock_supplier(company, code):
    supplier = Supplier.objects.select_for_update().filter(company=company, code=code).first()
    if supplier is None:
        raise NotFound(f"Supplier {code} was not found.")
    return supplier


def lock_products(company, codes):
    """Lock every referenced product in code order so concurrent documents cannot deadlock."""
    wanted = sorted(set(codes))
    products = {
        product.code: product
        for product in Product.objects.select_for_update().filter(company=company, code__in=wanted).order_by("code")
    }
    missing = [code for code in wanted if code not in products]
    if missing:
        raise ValidationError({"items": [f"Product {code} was not found." for code in missing]})
    return products


def resolve_tax_rate(company, product, rate_cache=None):
    """Percent rate for a product; falls back to DEFAULT_TAX_RATE when no active rate is mapped."""
    if rate_cache is not None and product.tax_code in rate_cache:
        return rate_cache[product.tax_code]

    rate = None
    if product.tax_code:
        rate = (
            TaxRate.objects.filter(company=company, code=product.tax_code, is_active=True)
            .values_list("rate", flat=True)
            .first()
        )
    if rate is None:
        rate = Decimal(str(settings.DEFAULT_TAX_RATE))

    if rate_cache is not None:
        rate_cache[product.tax_code] = rate
    return rate


def quantities_by_product(items):
    """Sum requested quantities per product code for a list of validated item payloads."""
    totals = defaultdict(Decimal)
    for item in items:
        totals[item["product_code"]] += Decimal(item["quantity"])
    return totals


def line_quantities(lines):
    """Same as `quantities_by_product` for stored item rows."""
    totals = defaultdict(Decimal)
    for line in lines:
        totals[line.product.code] += line.quantity
    return totals


def check_stock(products, required, credited=None):
    """Raise when `current_stock + credited` cannot cover `required` for any product.

    `credited` holds quantities that the same operation gives back to stock
    first, e.g. the old lines of an invoice being edited.
    """
    credited = credited or {}
    shortages = []
    for code, quantity in required.items():
        available = products[code].current_stock + credited.get(code, Decimal("0"))
        if quantity > available:
            shortages.append(
                {
                    "product_code": code,
                    "available": str(available),
                    "required": str(quantity),
                }
            )
    if shortages:
        raise InsufficientStock(errors={"items": shortages})


def adjust_stock(product, delta):
    delta = to_quantity(delta)
    if not delta:
        return product
    Product.objects.filter(pk=product.pk).update(current_stock=F("current_stock") + delta, updated_at=timezone.now())
    product.refresh_from_db(fields=["current_stock"])

    if product.min_stock_level > 0 and product.current_stock <= product.min_stock_level:
        stock_logger.warning(
            "low_stock product=%s stock=%s minimum=%s",
            product.code,
            product.current_stock,
            product.min_stock_level,
            extra={"company_code": product.company.code, "product_code": product.code},
        )
    return product


def adjust_customer_balance(customer, delta):
    delta = to_money(delta)
    if delta:
        Customer.objects.filter(pk=customer.pk).update(
            outstanding_balance=F("outstanding_balance") + delta, updated_at=timezone.now()
        )
        customer.refresh_from_db(fields=["outstanding_balance"])
    return customer


def adjust_supplier_balance(supplier, delta):
    delta = to_money(delta)
    if delta:
        Supplier.objects.filter(pk=supplier.pk).update(
            outstanding_balance=F("outstanding_balance") + delta, updated_at=timezone.now()
        )
        supplier.refresh_from_db(fields=["outstanding_balance"])
    return supplier


def post_cash_entry(
    *,
    company,
    trans_type,
    trans_date,
    description,
    source_type,
    source_id,
    debit=Decimal("0"),
    credit=Decimal("0"),
    party_type="",
    party_code="",
    user=None,
):
    return CashBalanceEntry.objects.create(
        company=company,
        trans_date=trans_date,
        trans_type=trans_type,
        description=description[:255],
        debit_amount=to_money(debit),
        credit_amount=to_money(credit),
        party_type=party_type,
        party_code=party_code,
        source_type=source_type,
        source_id=source_id,
        created_by=user,
        updated_by=user,
    )


def reverse_cash_entries(*, company, source_type, source_id):
    deleted, _ = CashBalanceEntry.objects.filter(company=company, source_type=source_type, source_id=source_id).delete()
    return deleted
