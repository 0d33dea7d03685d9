from decimal import Decimal

from django.db.models import F, Sum
from rest_framework.exceptions import NotFound

from common.exceptions import (
    CreditLimitExceeded,
    DocumentClosed,
    ReturnExceedsBalance,
    ReturnExceedsSoldQuantity,
)
from finance.ledger import (
    adjust_customer_balance,
    adjust_stock,
    check_stock,
    ensure_not_future,
    ledger_operation,
    lock_customer,
    lock_products,
    next_document_number,
    line_quantities,
    post_cash_entry,
    quantities_by_product,
    resolve_tax_rate,
    reverse_cash_entries,
    to_money,
)
from finance.models import CashBalanceEntry
from sales.models import PaymentReceipt, SalesInvoice, SalesInvoiceItem, SalesReturn, SalesReturnItem

INVOICE_SOURCE = "sales_invoice"
RECEIPT_SOURCE = "payment_receipt"


def compute_invoice_totals(company, products, items):
    """Return (sub_total, tax_amount, total_amount, per-line rates)."""
    rate_cache = {}
    sub_total = Decimal("0")
    tax_amount = Decimal("0")
    rates = []
    for item in items:
        rate = resolve_tax_rate(company, products[item["product_code"]], rate_cache)
        line_total = Decimal(item["line_total"])
        sub_total += line_total
        tax_amount += line_total * rate / Decimal("100")
        rates.append(rate)

    sub_total = to_money(sub_total)
    tax_amount = to_money(tax_amount)
    return sub_total, tax_amount, sub_total + tax_amount, rates


def check_credit_limit(customer, new_balance_due, released=Decimal("0")):
    """`released` is the part of the current outstanding balance the same edit gives back first."""
    if new_balance_due <= 0 or customer.credit_limit <= 0:
        return
    projected = customer.outstanding_balance - released + new_balance_due
    if projected > customer.credit_limit:
        raise CreditLimitExceeded(
            f"Credit limit exceeded for customer {customer.code}.",
            errors={
                "credit_limit": str(customer.credit_limit),
                "outstanding_balance": str(customer.outstanding_balance - released),
                "requested": str(new_balance_due),
            },
        )


def _lock_customers(company, *codes):
    return {code: lock_customer(company, code) for code in sorted(set(codes))}


def _write_invoice_items(invoice, products, items, rates):
    SalesInvoiceItem.objects.bulk_create(
        [
            SalesInvoiceItem(
                invoice=invoice,
                product=products[item["product_code"]],
                line_no=index,
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                line_total=item["line_total"],
                tax_rate=rate,
            )
            for index, (item, rate) in enumerate(zip(items, rates), start=1)
        ]
    )


def _apply_invoice(invoice, products, items, customer, user):
    for item in items:
        adjust_stock(products[item["product_code"]], -Decimal(item["quantity"]))

    if invoice.balance_due > 0:
        adjust_customer_balance(customer, invoice.balance_due)
    elif invoice.total_amount > 0:
        post_cash_entry(
            company=invoice.company,
            trans_type=CashBalanceEntry.TransType.SALES,
            trans_date=invoice.inv_date,
            description=f"Cash Sale {invoice.inv_number}",
            debit=invoice.total_amount,
            party_type=CashBalanceEntry.PartyType.CUSTOMER,
            party_code=customer.code,
            source_type=INVOICE_SOURCE,
            source_id=invoice.id,
            user=user,
        )


@ledger_operation("sales_invoice")
def create_sales_invoice(*, company, user, customer_code, inv_date, status, items):
    ensure_not_future(inv_date, "inv_date")
    customer = lock_customer(company, customer_code)
    products = lock_products(company, [item["product_code"] for item in items])

    sub_total, tax_amount, total_amount, rates = compute_invoice_totals(company, products, items)
    balance_due = Decimal("0.00") if status == SalesInvoice.Status.PAID else total_amount

    check_stock(products, quantities_by_product(items))
    check_credit_limit(customer, balance_due)

    invoice = SalesInvoice.objects.create(
        company=company,
        customer=customer,
        inv_number=next_document_number(company, "INV", inv_date),
        inv_date=inv_date,
        sub_total=sub_total,
        tax_amount=tax_amount,
        total_amount=total_amount,
        balance_due=balance_due,
        created_by=user,
        updated_by=user,
    )
    _write_invoice_items(invoice, products, items, rates)
    _apply_invoice(invoice, products, items, customer, user)
    return invoice


@ledger_operation("sales_invoice")
def update_sales_invoice(invoice_id, *, company, user, customer_code, inv_date, status, items):
    invoice = SalesInvoice.objects.select_for_update().filter(company=company, pk=invoice_id).first()
    if invoice is None:
        raise NotFound("Invoice was not found.")
    if invoice.returns.exclude(status=SalesReturn.Status.CANCELLED).exists():
        raise DocumentClosed("Invoice has sales returns posted against it and can no longer be edited.")
    ensure_not_future(inv_date, "inv_date")

    old_items = list(invoice.items.select_related("product"))
    old_customer_code = invoice.customer.code
    customers = _lock_customers(company, old_customer_code, customer_code)
    products = lock_products(
        company,
        [item["product_code"] for item in items] + [line.product.code for line in old_items],
    )

    sub_total, tax_amount, total_amount, rates = compute_invoice_totals(company, products, items)
    balance_due = Decimal("0.00") if status == SalesInvoice.Status.PAID else total_amount

    old_quantities = line_quantities(old_items)
    check_stock(products, quantities_by_product(items), credited=old_quantities)
    released = invoice.balance_due if old_customer_code == customer_code and invoice.balance_due > 0 else Decimal("0")
    check_credit_limit(customers[customer_code], balance_due, released=released)

    # reverse the previous version
    for line in old_items:
        adjust_stock(products[line.product.code], line.quantity)
    if invoice.balance_due > 0:
        adjust_customer_balance(customers[old_customer_code], -invoice.balance_due)
    reverse_cash_entries(company=company, source_type=INVOICE_SOURCE, source_id=invoice.id)

    invoice.customer = customers[customer_code]
    invoice.inv_date = inv_date
    invoice.sub_total = sub_total
    invoice.tax_amount = tax_amount
    invoice.total_amount = total_amount
    invoice.balance_due = balance_due
    invoice.updated_by = user
    invoice.save()

    invoice.items.all().delete()
    _write_invoice_items(invoice, products, items, rates)
    _apply_invoice(invoice, products, items, customers[customer_code], user)
    return invoice


def _returned_quantities(invoice, exclude_return_id=None):
    queryset = SalesReturnItem.objects.filter(sales_return__invoice=invoice).exclude(
        sales_return__status=SalesReturn.Status.CANCELLED
    )
    if exclude_return_id is not None:
        queryset = queryset.exclude(sales_return_id=exclude_return_id)
    return {
        row["product__code"]: row["quantity"]
        for row in queryset.values("product__code").annotate(quantity=Sum("quantity"))
    }


def _check_returnable(invoice, items, exclude_return_id=None):
    sold = line_quantities(invoice.items.select_related("product"))
    returned = _returned_quantities(invoice, exclude_return_id)
    violations = []
    for code, quantity in quantities_by_product(items).items():
        available = sold.get(code, Decimal("0")) - returned.get(code, Decimal("0"))
        if quantity > available:
            violations.append({"product_code": code, "returnable": str(available), "requested": str(quantity)})
    if violations:
        raise ReturnExceedsSoldQuantity(errors={"items": violations})


def _lock_invoice(company, invoice_id):
    invoice = SalesInvoice.objects.select_for_update().filter(company=company, pk=invoice_id).first()
    if invoice is None:
        raise NotFound("Invoice was not found.")
    return invoice


def _apply_return(sales_return, invoice, customer, products, items):
    for item in items:
        adjust_stock(products[item["product_code"]], Decimal(item["quantity"]))
    adjust_customer_balance(customer, -sales_return.total_amount)
    SalesInvoice.objects.filter(pk=invoice.pk).update(balance_due=F("balance_due") - sales_return.total_amount)
    invoice.refresh_from_db(fields=["balance_due"])


@ledger_operation("sales_return")
def create_sales_return(*, company, user, invoice_id, return_date, items, status=SalesReturn.Status.COMPLETED):
    ensure_not_future(return_date, "return_date")
    invoice = _lock_invoice(company, invoice_id)
    customer = lock_customer(company, invoice.customer.code)
    products = lock_products(company, [item["product_code"] for item in items])

    total_amount = to_money(sum(Decimal(item["line_total"]) for item in items))
    applies = status != SalesReturn.Status.CANCELLED
    if applies:
        _check_returnable(invoice, items)
        if total_amount > invoice.balance_due:
            raise ReturnExceedsBalance(
                errors={"total_amount": str(total_amount), "balance_due": str(invoice.balance_due)},
            )

    sales_return = SalesReturn.objects.create(
        company=company,
        invoice=invoice,
        customer=customer,
        return_number=next_document_number(company, "RTN", return_date),
        return_date=return_date,
        status=status,
        total_amount=total_amount,
        created_by=user,
        updated_by=user,
    )
    _write_return_items(sales_return, products, items)
    if applies:
        _apply_return(sales_return, invoice, customer, products, items)
    return sales_return


def _write_return_items(sales_return, products, items):
    SalesReturnItem.objects.bulk_create(
        [
            SalesReturnItem(
                sales_return=sales_return,
                product=products[item["product_code"]],
                line_no=index,
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                line_total=item["line_total"],
            )
            for index, item in enumerate(items, start=1)
        ]
    )


@ledger_operation("sales_return")
def update_sales_return(return_id, *, company, user, return_date, items, invoice_id=None, status=None):
    sales_return = SalesReturn.objects.select_for_update().filter(company=company, pk=return_id).first()
    if sales_return is None:
        raise NotFound("Sales return was not found.")
    ensure_not_future(return_date, "return_date")

    old_items = list(sales_return.items.select_related("product"))
    old_applied = sales_return.status != SalesReturn.Status.CANCELLED
    status = status or sales_return.status
    applies = status != SalesReturn.Status.CANCELLED

    old_invoice = _lock_invoice(company, sales_return.invoice_id)
    invoice = old_invoice if invoice_id in (None, old_invoice.pk, str(old_invoice.pk)) else _lock_invoice(company, invoice_id)
    customers = _lock_customers(company, old_invoice.customer.code, invoice.customer.code)
    products = lock_products(
        company,
        [item["product_code"] for item in items] + [line.product.code for line in old_items],
    )

    total_amount = to_money(sum(Decimal(item["line_total"]) for item in items))
    if old_applied:
        # returned goods may have been sold again since; taking them back out must not go negative
        check_stock(products, line_quantities(old_items), credited=quantities_by_product(items) if applies else None)
    if applies:
        _check_returnable(invoice, items, exclude_return_id=sales_return.pk)
        available_balance = invoice.balance_due
        if old_applied and invoice.pk == old_invoice.pk:
            available_balance += sales_return.total_amount
        if total_amount > available_balance:
            raise ReturnExceedsBalance(
                errors={"total_amount": str(total_amount), "balance_due": str(available_balance)},
            )

    if old_applied:
        for line in old_items:
            adjust_stock(products[line.product.code], -line.quantity)
        adjust_customer_balance(customers[old_invoice.customer.code], sales_return.total_amount)
        SalesInvoice.objects.filter(pk=old_invoice.pk).update(balance_due=F("balance_due") + sales_return.total_amount)
        old_invoice.refresh_from_db(fields=["balance_due"])
        if invoice.pk == old_invoice.pk:
            invoice = old_invoice

    sales_return.invoice = invoice
    sales_return.customer = customers[invoice.customer.code]
    sales_return.return_date = return_date
    sales_return.status = status
    sales_return.total_amount = total_amount
    sales_return.updated_by = user
    sales_return.save()

    sales_return.items.all().delete()
    _write_return_items(sales_return, products, items)
    if applies:
        _apply_return(sales_return, invoice, customers[invoice.customer.code], products, items)
    return sales_return


def _post_receipt_cash(receipt, user):
    post_cash_entry(
        company=receipt.company,
        trans_type=CashBalanceEntry.TransType.RECEIPT,
        trans_date=receipt.receipt_date,
        description=f"Receipt {receipt.receipt_number} from {receipt.customer.code}",
        debit=receipt.amount,
        party_type=CashBalanceEntry.PartyType.CUSTOMER,
        party_code=receipt.customer.code,
        source_type=RECEIPT_SOURCE,
        source_id=receipt.id,
        user=user,
    )


@ledger_operation("payment_receipt")
def create_payment_receipt(
    *, company, user, customer_code, receipt_date, amount, payment_method="CASH", reference_number=""
):
    ensure_not_future(receipt_date, "receipt_date")
    customer = lock_customer(company, customer_code)
    amount = to_money(amount)

    receipt = PaymentReceipt.objects.create(
        company=company,
        customer=customer,
        receipt_number=next_document_number(company, "REC", receipt_date),
        receipt_date=receipt_date,
        amount=amount,
        payment_method=payment_method,
        reference_number=reference_number,
        created_by=user,
        updated_by=user,
    )
    adjust_customer_balance(customer, -amount)
    _post_receipt_cash(receipt, user)
    return receipt


@ledger_operation("payment_receipt")
def update_payment_receipt(
    receipt_id, *, company, user, customer_code, receipt_date, amount, payment_method="CASH", reference_number=""
):
    receipt = PaymentReceipt.objects.select_for_update().filter(company=company, pk=receipt_id).first()
    if receipt is None:
        raise NotFound("Payment receipt was not found.")
    ensure_not_future(receipt_date, "receipt_date")

    customers = _lock_customers(company, receipt.customer.code, customer_code)
    adjust_customer_balance(customers[receipt.customer.code], receipt.amount)
    reverse_cash_entries(company=company, source_type=RECEIPT_SOURCE, source_id=receipt.id)

    receipt.customer = customers[customer_code]
    receipt.receipt_date = receipt_date
    receipt.amount = to_money(amount)
    receipt.payment_method = payment_method
    receipt.reference_number = reference_number
    receipt.updated_by = user
    receipt.save()

    adjust_customer_balance(receipt.customer, -receipt.amount)
    _post_receipt_cash(receipt, user)
    return receipt
