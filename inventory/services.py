from decimal import Decimal

from rest_framework.exceptions import NotFound

from finance.ledger import (
    adjust_stock,
    adjust_supplier_balance,
    check_stock,
    ensure_not_future,
    ledger_operation,
    line_quantities,
    lock_products,
    lock_supplier,
    next_document_number,
    post_cash_entry,
    quantities_by_product,
    reverse_cash_entries,
    to_money,
)
from finance.models import CashBalanceEntry
from inventory.models import PurchaseInvoice, PurchaseInvoiceItem, SupplierPayment

SUPPLIER_PAYMENT_SOURCE = "supplier_payment"


def _purchase_total(items):
    return to_money(sum(Decimal(item["line_total"]) for item in items))


def _write_purchase_items(purchase, products, items):
    PurchaseInvoiceItem.objects.bulk_create(
        [
            PurchaseInvoiceItem(
                purchase_invoice=purchase,
                product=products[item["product_code"]],
                line_no=index,
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                line_total=item["line_total"],
            )
            for index, item in enumerate(items, start=1)
        ]
    )


def _lock_suppliers(company, *codes):
    return {code: lock_supplier(company, code) for code in sorted(set(codes))}


@ledger_operation("purchase_invoice")
def create_purchase_invoice(*, company, user, supplier_code, purchase_date, items, status=PurchaseInvoice.Status.PENDING):
    ensure_not_future(purchase_date, "purchase_date")
    supplier = lock_supplier(company, supplier_code)
    products = lock_products(company, [item["product_code"] for item in items])

    purchase = PurchaseInvoice.objects.create(
        company=company,
        supplier=supplier,
        purchase_number=next_document_number(company, "PUR", purchase_date),
        purchase_date=purchase_date,
        status=status,
        total_amount=_purchase_total(items),
        created_by=user,
        updated_by=user,
    )
    _write_purchase_items(purchase, products, items)

    if status != PurchaseInvoice.Status.CANCELLED:
        for item in items:
            adjust_stock(products[item["product_code"]], Decimal(item["quantity"]))
        adjust_supplier_balance(supplier, purchase.total_amount)
    return purchase


@ledger_operation("purchase_invoice")
def update_purchase_invoice(purchase_id, *, company, user, supplier_code, purchase_date, items, status=None):
    purchase = PurchaseInvoice.objects.select_for_update().filter(company=company, pk=purchase_id).first()
    if purchase is None:
        raise NotFound("Purchase invoice was not found.")
    ensure_not_future(purchase_date, "purchase_date")

    status = status or purchase.status
    old_applied = purchase.status != PurchaseInvoice.Status.CANCELLED
    applies = status != PurchaseInvoice.Status.CANCELLED
    old_items = list(purchase.items.select_related("product"))
    old_supplier_code = purchase.supplier.code
    suppliers = _lock_suppliers(company, old_supplier_code, supplier_code)
    products = lock_products(
        company,
        [item["product_code"] for item in items] + [line.product.code for line in old_items],
    )

    # stock received by the old version may already have been sold
    if old_applied:
        check_stock(products, line_quantities(old_items), credited=quantities_by_product(items) if applies else None)
        for line in old_items:
            adjust_stock(products[line.product.code], -line.quantity)
        adjust_supplier_balance(suppliers[old_supplier_code], -purchase.total_amount)

    purchase.supplier = suppliers[supplier_code]
    purchase.purchase_date = purchase_date
    purchase.status = status
    purchase.total_amount = _purchase_total(items)
    purchase.updated_by = user
    purchase.save()

    purchase.items.all().delete()
    _write_purchase_items(purchase, products, items)

    if applies:
        for item in items:
            adjust_stock(products[item["product_code"]], Decimal(item["quantity"]))
        adjust_supplier_balance(purchase.supplier, purchase.total_amount)
    return purchase


def _post_payment_cash(payment, user):
    post_cash_entry(
        company=payment.company,
        trans_type=CashBalanceEntry.TransType.PAYMENT,
        trans_date=payment.payment_date,
        description=f"Payment {payment.payment_number} to {payment.supplier.code}",
        credit=payment.amount,
        party_type=CashBalanceEntry.PartyType.SUPPLIER,
        party_code=payment.supplier.code,
        source_type=SUPPLIER_PAYMENT_SOURCE,
        source_id=payment.id,
        user=user,
    )


@ledger_operation("supplier_payment")
def create_supplier_payment(
    *, company, user, supplier_code, payment_date, amount, payment_method="CASH", reference_number=""
):
    ensure_not_future(payment_date, "payment_date")
    supplier = lock_supplier(company, supplier_code)

    payment = SupplierPayment.objects.create(
        company=company,
        supplier=supplier,
        payment_number=next_document_number(company, "PAY", payment_date),
        payment_date=payment_date,
        amount=to_money(amount),
        payment_method=payment_method,
        reference_number=reference_number,
        created_by=user,
        updated_by=user,
    )
    adjust_supplier_balance(supplier, -payment.amount)
    _post_payment_cash(payment, user)
    return payment


@ledger_operation("supplier_payment")
def update_supplier_payment(
    payment_id, *, company, user, supplier_code, payment_date, amount, payment_method="CASH", reference_number=""
):
    payment = SupplierPayment.objects.select_for_update().filter(company=company, pk=payment_id).first()
    if payment is None:
        raise NotFound("Supplier payment was not found.")
    ensure_not_future(payment_date, "payment_date")

    suppliers = _lock_suppliers(company, payment.supplier.code, supplier_code)
    adjust_supplier_balance(suppliers[payment.supplier.code], payment.amount)
    reverse_cash_entries(company=company, source_type=SUPPLIER_PAYMENT_SOURCE, source_id=payment.id)

    payment.supplier = suppliers[supplier_code]
    payment.payment_date = payment_date
    payment.amount = to_money(amount)
    payment.payment_method = payment_method
    payment.reference_number = reference_number
    payment.updated_by = user
    payment.save()

    adjust_supplier_balance(payment.supplier, -payment.amount)
    _post_payment_cash(payment, user)
    return payment
