import logging
import threading
import unittest
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import AuditLog, Company
from finance.models import CashBalanceEntry
from inventory.models import Product, TaxRate
from sales.models import Customer, PaymentReceipt, SalesInvoice, SalesReturn
from sales.services import INVOICE_SOURCE, create_sales_invoice


def line(code, quantity, unit_price):
    quantity = Decimal(str(quantity))
    unit_price = Decimal(str(unit_price))
    return {
        "product_code": code,
        "quantity": str(quantity),
        "unit_price": str(unit_price),
        "line_total": str((quantity * unit_price).quantize(Decimal("0.01"))),
    }


class SalesLedgerTestMixin:
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.company = Company.objects.create(code="CMP01", name="Main Company")
        self.user = get_user_model().objects.create_user(
            username="sales-clerk",
            password="pass1234",
            default_company=self.company,
        )
        self.client.force_authenticate(user=self.user)

        TaxRate.objects.create(company=self.company, code="VAT5", name="VAT 5%", rate=Decimal("5.00"))
        TaxRate.objects.create(company=self.company, code="ZERO", name="Zero rated", rate=Decimal("0.00"))

        self.product_a = Product.objects.create(
            company=self.company, code="P-A", name="Product A", unit_price=Decimal("100.00"),
            current_stock=Decimal("10"), tax_code="VAT5",
        )
        self.product_b = Product.objects.create(
            company=self.company, code="P-B", name="Product B", unit_price=Decimal("100.00"),
            current_stock=Decimal("20"), tax_code="ZERO",
        )
        self.product_c = Product.objects.create(
            company=self.company, code="P-C", name="Product C", unit_price=Decimal("50.00"),
            current_stock=Decimal("5"), tax_code="ZERO",
        )
        self.customer = Customer.objects.create(company=self.company, code="C001", name="First Customer")
        self.today = timezone.localdate().isoformat()

    def post_invoice(self, items, status="PENDING", customer_code="C001"):
        return self.client.post(
            "/api/invoices/",
            {"customer_code": customer_code, "inv_date": self.today, "status": status, "items": items},
            format="json",
        )

    def put_invoice(self, invoice_id, items, status="PENDING", customer_code="C001"):
        return self.client.put(
            f"/api/invoices/{invoice_id}/",
            {"customer_code": customer_code, "inv_date": self.today, "status": status, "items": items},
            format="json",
        )

    def snapshot(self):
        return {
            "stock": {product.code: product.current_stock for product in Product.objects.order_by("code")},
            "customers": {customer.code: customer.outstanding_balance for customer in Customer.objects.order_by("code")},
            "invoices": {invoice.id: invoice.balance_due for invoice in SalesInvoice.objects.all()},
            "cash_rows": CashBalanceEntry.objects.count(),
            "invoice_count": SalesInvoice.objects.count(),
        }


class SalesInvoiceLedgerTests(SalesLedgerTestMixin, TestCase):
    def test_total_is_subtotal_plus_per_product_tax(self):
        response = self.post_invoice([line("P-A", 2, 100), line("P-C", 1, 50)])

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["sub_total"], "250.00")
        self.assertEqual(body["tax_amount"], "10.00")
        self.assertEqual(body["total_amount"], "260.00")
        self.assertEqual(body["balance_due"], "260.00")
        self.assertEqual(body["status"], "PENDING")
        self.assertTrue(body["inv_number"].startswith("INV-"))

        self.product_a.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(self.product_a.current_stock, Decimal("8"))
        self.assertEqual(self.customer.outstanding_balance, Decimal("260.00"))
        self.assertFalse(CashBalanceEntry.objects.exists())

    def test_product_without_tax_mapping_uses_default_rate(self):
        self.product_a.tax_code = ""
        self.product_a.save()

        response = self.post_invoice([line("P-A", 1, 100)])

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["tax_amount"], "5.00")
        self.assertEqual(response.json()["total_amount"], "105.00")

    def test_document_numbers_are_sequential_per_company(self):
        first = self.post_invoice([line("P-B", 1, 100)]).json()["inv_number"]
        second = self.post_invoice([line("P-B", 1, 100)]).json()["inv_number"]

        self.assertTrue(first.endswith("-000001"))
        self.assertTrue(second.endswith("-000002"))

    def test_paid_invoice_posts_linked_cash_sale(self):
        response = self.post_invoice([line("P-A", 1, 100)], status="PAID")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["balance_due"], "0.00")
        self.assertEqual(body["status"], "PAID")

        entry = CashBalanceEntry.objects.get()
        self.assertEqual(entry.trans_type, CashBalanceEntry.TransType.SALES)
        self.assertEqual(entry.debit_amount, Decimal("105.00"))
        self.assertEqual(entry.source_type, INVOICE_SOURCE)
        self.assertEqual(str(entry.source_id), body["id"])
        self.assertEqual(entry.description, f"Cash Sale {body['inv_number']}")

        self.customer.refresh_from_db()
        self.assertEqual(self.customer.outstanding_balance, Decimal("0.00"))

    def test_identical_edit_is_a_no_op(self):
        items = [line("P-A", 2, 100), line("P-B", 3, 100)]
        invoice_id = self.post_invoice(items).json()["id"]
        before = self.snapshot()

        response = self.put_invoice(invoice_id, items)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.snapshot(), before)

    def test_quantity_increase_lowers_stock_by_difference(self):
        invoice_id = self.post_invoice([line("P-A", 2, 100)]).json()["id"]
        self.product_a.refresh_from_db()
        stock_before_edit = self.product_a.current_stock

        response = self.put_invoice(invoice_id, [line("P-A", 5, 100)])

        self.assertEqual(response.status_code, 200)
        self.product_a.refresh_from_db()
        self.assertEqual(stock_before_edit - self.product_a.current_stock, Decimal("3"))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.outstanding_balance, Decimal("525.00"))

    def test_edit_can_use_stock_released_by_old_version(self):
        invoice_id = self.post_invoice([line("P-C", 5, 50)]).json()["id"]

        response = self.put_invoice(invoice_id, [line("P-C", 5, 40)])

        self.assertEqual(response.status_code, 200)
        self.product_c.refresh_from_db()
        self.assertEqual(self.product_c.current_stock, Decimal("0"))

    def test_switching_paid_to_pending_moves_amount_from_cash_to_customer(self):
        invoice_id = self.post_invoice([line("P-B", 2, 100)], status="PAID").json()["id"]
        self.assertEqual(CashBalanceEntry.objects.count(), 1)

        response = self.put_invoice(invoice_id, [line("P-B", 2, 100)], status="PENDING")

        self.assertEqual(response.status_code, 200)
        self.assertFalse(CashBalanceEntry.objects.exists())
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.outstanding_balance, Decimal("200.00"))

    def test_edit_moves_balance_between_customers(self):
        other = Customer.objects.create(company=self.company, code="C002", name="Second Customer")
        invoice_id = self.post_invoice([line("P-B", 1, 100)]).json()["id"]

        response = self.put_invoice(invoice_id, [line("P-B", 1, 100)], customer_code="C002")

        self.assertEqual(response.status_code, 200)
        self.customer.refresh_from_db()
        other.refresh_from_db()
        self.assertEqual(self.customer.outstanding_balance, Decimal("0.00"))
        self.assertEqual(other.outstanding_balance, Decimal("100.00"))

    def test_invalid_quantity_leaves_everything_unchanged(self):
        self.post_invoice([line("P-A", 1, 100)])
        before = self.snapshot()

        response = self.post_invoice([{"product_code": "P-A", "quantity": "0", "unit_price": "100.00"}])

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertEqual(self.snapshot(), before)

    def test_line_total_must_match_quantity_times_price(self):
        response = self.post_invoice([{"product_code": "P-A", "quantity": "2", "unit_price": "100.00", "line_total": "150.00"}])

        self.assertEqual(response.status_code, 400)
        self.assertIn("items", response.json()["errors"])

    def test_future_dated_invoice_is_rejected(self):
        tomorrow = (timezone.localdate() + timedelta(days=1)).isoformat()

        response = self.client.post(
            "/api/invoices/",
            {"customer_code": "C001", "inv_date": tomorrow, "items": [line("P-A", 1, 100)]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("inv_date", response.json()["errors"])
        self.assertFalse(SalesInvoice.objects.exists())

    def test_insufficient_stock_is_rejected_with_shortages(self):
        before = self.snapshot()

        response = self.post_invoice([line("P-C", 3, 50), line("P-C", 3, 50)])

        self.assertEqual(response.status_code, 422)
        body = response.json()
        self.assertEqual(body["code"], "insufficient_stock")
        self.assertEqual(body["errors"]["items"][0]["product_code"], "P-C")
        self.assertEqual(Decimal(body["errors"]["items"][0]["required"]), Decimal("6"))
        self.assertEqual(self.snapshot(), before)

    def test_credit_limit_blocks_pending_invoice(self):
        self.customer.credit_limit = Decimal("150.00")
        self.customer.save()
        before = self.snapshot()

        response = self.post_invoice([line("P-A", 2, 100)])

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "credit_limit_exceeded")
        self.assertEqual(self.snapshot(), before)

    def test_credit_limit_does_not_apply_to_paid_invoice(self):
        self.customer.credit_limit = Decimal("150.00")
        self.customer.save()

        response = self.post_invoice([line("P-A", 2, 100)], status="PAID")

        self.assertEqual(response.status_code, 201)

    def test_credit_limit_on_edit_releases_old_balance_first(self):
        self.customer.credit_limit = Decimal("300.00")
        self.customer.save()
        invoice_id = self.post_invoice([line("P-B", 2, 100)]).json()["id"]

        response = self.put_invoice(invoice_id, [line("P-B", 3, 100)])

        self.assertEqual(response.status_code, 200)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.outstanding_balance, Decimal("300.00"))

    def test_unknown_customer_returns_not_found(self):
        response = self.post_invoice([line("P-A", 1, 100)], customer_code="NOPE")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_unknown_product_is_a_validation_error(self):
        response = self.post_invoice([line("NOPE", 1, 100)])

        self.assertEqual(response.status_code, 400)
        self.assertIn("items", response.json()["errors"])

    def test_invoices_cannot_be_deleted(self):
        invoice_id = self.post_invoice([line("P-A", 1, 100)]).json()["id"]

        response = self.client.delete(f"/api/invoices/{invoice_id}/")

        self.assertEqual(response.status_code, 405)

    def test_status_filter_uses_balance_due(self):
        self.post_invoice([line("P-B", 1, 100)], status="PAID")
        self.post_invoice([line("P-B", 1, 100)])

        response = self.client.get("/api/invoices/", {"status": "paid"})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["status"], "PAID")

    def test_rejected_operation_is_logged_with_business_keys(self):
        with self.assertLogs("ledger", level=logging.WARNING) as captured:
            self.post_invoice([line("P-C", 99, 50)])

        record = captured.records[0]
        self.assertEqual(record.document, "sales_invoice")
        self.assertEqual(record.company_code, "CMP01")
        self.assertEqual(record.event, "create_sales_invoice")

    def test_create_ignores_list_filters_in_query_string(self):
        response = self.client.post(
            "/api/invoices/?status=PAID",
            {"customer_code": "C001", "inv_date": self.today, "status": "PENDING", "items": [line("P-B", 1, 100)]},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["status"], "PENDING")
        self.assertEqual(SalesInvoice.objects.count(), 1)

    def test_update_ignores_list_filters_in_query_string(self):
        invoice_id = self.post_invoice([line("P-B", 1, 100)]).json()["id"]

        response = self.client.put(
            f"/api/invoices/{invoice_id}/?status=PENDING",
            {"customer_code": "C001", "inv_date": self.today, "status": "PAID", "items": [line("P-B", 2, 100)]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "PAID")

    def test_impossible_calendar_date_filter_is_a_validation_error(self):
        self.post_invoice([line("P-B", 1, 100)])

        response = self.client.get("/api/invoices/", {"date_from": "2024-02-30"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("date_from", response.json()["errors"])

    def test_zero_priced_invoice_is_accepted(self):
        before = self.snapshot()

        response = self.post_invoice([line("P-B", 2, 0)], status="PAID")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["sub_total"], "0.00")
        self.assertEqual(body["total_amount"], "0.00")
        self.assertEqual(body["status"], "PAID")
        self.product_b.refresh_from_db()
        self.assertEqual(self.product_b.current_stock, Decimal("18"))
        self.assertEqual(CashBalanceEntry.objects.count(), before["cash_rows"])

    def test_create_writes_audit_entry(self):
        invoice_id = self.post_invoice([line("P-A", 1, 100)]).json()["id"]

        log = AuditLog.objects.get(action="sales_invoice.create")
        self.assertEqual(log.entity_id, invoice_id)
        self.assertEqual(log.company, self.company)
        self.assertEqual(log.actor, self.user)


class SalesReturnLedgerTests(SalesLedgerTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        response = self.post_invoice([line("P-B", 5, 100)])
        self.invoice_id = response.json()["id"]

    def post_return(self, items, invoice_id=None):
        return self.client.post(
            "/api/sales-returns/",
            {"invoice_id": invoice_id or self.invoice_id, "return_date": self.today, "items": items},
            format="json",
        )

    def test_return_reduces_balance_due_and_customer_balance(self):
        invoice = SalesInvoice.objects.get(pk=self.invoice_id)
        self.assertEqual(invoice.balance_due, Decimal("500.00"))
        self.customer.refresh_from_db()
        outstanding_before = self.customer.outstanding_balance

        response = self.post_return([line("P-B", 1, 100)])

        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.json()["return_number"].startswith("RTN-"))
        invoice.refresh_from_db()
        self.customer.refresh_from_db()
        self.product_b.refresh_from_db()
        self.assertEqual(invoice.balance_due, Decimal("400.00"))
        self.assertEqual(invoice.status, SalesInvoice.Status.PARTIAL)
        self.assertEqual(outstanding_before - self.customer.outstanding_balance, Decimal("100.00"))
        self.assertEqual(self.product_b.current_stock, Decimal("16"))

    def test_legacy_inv_id_field_is_accepted(self):
        response = self.client.post(
            "/api/sales-returns/",
            {"inv_id": self.invoice_id, "return_date": self.today, "items": [line("P-B", 1, 100)]},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["inv_id"], self.invoice_id)

    def test_return_larger_than_balance_due_is_rejected(self):
        SalesInvoice.objects.filter(pk=self.invoice_id).update(balance_due=Decimal("50.00"))
        before = self.snapshot()

        response = self.post_return([line("P-B", 1, 100)])

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "return_exceeds_balance")
        self.assertEqual(self.snapshot(), before)

    def test_return_more_than_sold_is_rejected(self):
        self.post_return([line("P-B", 3, 100)])

        response = self.post_return([line("P-B", 3, 100)])

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "return_exceeds_sold_quantity")

    def test_return_of_product_not_on_invoice_is_rejected(self):
        response = self.post_return([line("P-A", 1, 100)])

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "return_exceeds_sold_quantity")

    def test_return_edit_reverses_then_reapplies(self):
        return_id = self.post_return([line("P-B", 1, 100)]).json()["id"]

        response = self.client.put(
            f"/api/sales-returns/{return_id}/",
            {"return_date": self.today, "items": [line("P-B", 2, 100)]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        invoice = SalesInvoice.objects.get(pk=self.invoice_id)
        self.customer.refresh_from_db()
        self.product_b.refresh_from_db()
        self.assertEqual(invoice.balance_due, Decimal("300.00"))
        self.assertEqual(self.customer.outstanding_balance, Decimal("300.00"))
        self.assertEqual(self.product_b.current_stock, Decimal("17"))

    def test_cancelling_a_return_restores_invoice(self):
        return_id = self.post_return([line("P-B", 1, 100)]).json()["id"]

        response = self.client.put(
            f"/api/sales-returns/{return_id}/",
            {"return_date": self.today, "status": "CANCELLED", "items": [line("P-B", 1, 100)]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(SalesReturn.objects.get(pk=return_id).status, SalesReturn.Status.CANCELLED)
        self.assertEqual(SalesInvoice.objects.get(pk=self.invoice_id).balance_due, Decimal("500.00"))
        self.product_b.refresh_from_db()
        self.assertEqual(self.product_b.current_stock, Decimal("15"))

    def test_return_against_paid_invoice_is_refused(self):
        paid_id = self.post_invoice([line("P-B", 2, 100)], status="PAID").json()["id"]
        before = self.snapshot()

        response = self.post_return([line("P-B", 1, 100)], invoice_id=paid_id)

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "return_exceeds_balance")
        self.assertEqual(self.snapshot(), before)
        self.assertFalse(SalesReturn.objects.filter(invoice_id=paid_id).exists())

    def test_invoice_with_returns_cannot_be_edited(self):
        self.post_return([line("P-B", 1, 100)])

        response = self.put_invoice(self.invoice_id, [line("P-B", 5, 100)])

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "document_closed")


class PaymentReceiptTests(SalesLedgerTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.post_invoice([line("P-B", 5, 100)])

    def test_receipt_lowers_outstanding_and_posts_cash(self):
        response = self.client.post(
            "/api/payment-receipts/",
            {"customer_code": "C001", "receipt_date": self.today, "amount": "200.00", "reference_number": "CHQ-1"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        receipt = PaymentReceipt.objects.get(pk=response.json()["id"])
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.outstanding_balance, Decimal("300.00"))

        entry = CashBalanceEntry.objects.get(source_id=receipt.id)
        self.assertEqual(entry.trans_type, CashBalanceEntry.TransType.RECEIPT)
        self.assertEqual(entry.debit_amount, Decimal("200.00"))
        self.assertEqual(entry.party_code, "C001")

    def test_receipt_edit_replaces_linked_cash_row(self):
        receipt_id = self.client.post(
            "/api/payment-receipts/",
            {"customer_code": "C001", "receipt_date": self.today, "amount": "200.00"},
            format="json",
        ).json()["id"]

        response = self.client.put(
            f"/api/payment-receipts/{receipt_id}/",
            {"customer_code": "C001", "receipt_date": self.today, "amount": "150.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.outstanding_balance, Decimal("350.00"))
        entries = CashBalanceEntry.objects.filter(source_id=receipt_id)
        self.assertEqual(entries.count(), 1)
        self.assertEqual(entries.get().debit_amount, Decimal("150.00"))

    def test_non_positive_receipt_is_rejected(self):
        response = self.client.post(
            "/api/payment-receipts/",
            {"customer_code": "C001", "receipt_date": self.today, "amount": "0"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("amount", response.json()["errors"])


class CustomerAndCompanyScopeTests(SalesLedgerTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.other_company = Company.objects.create(code="CMP02", name="Second Company")
        Customer.objects.create(company=self.other_company, code="C001", name="Other Company Customer")

    def test_customers_are_scoped_to_default_company(self):
        response = self.client.get("/api/customers/")

        self.assertEqual(response.status_code, 200)
        names = [row["name"] for row in response.json()["results"]]
        self.assertEqual(names, ["First Customer"])

    def test_company_header_selects_company(self):
        response = self.client.get("/api/customers/", HTTP_X_COMPANY_CODE="CMP02")

        self.assertEqual(response.status_code, 200)
        names = [row["name"] for row in response.json()["results"]]
        self.assertEqual(names, ["Other Company Customer"])

    def test_unknown_company_header_returns_not_found(self):
        response = self.client.get("/api/customers/", HTTP_X_COMPANY_CODE="NOPE")

        self.assertEqual(response.status_code, 404)

    def test_duplicate_customer_code_rejected_within_company(self):
        response = self.client.post("/api/customers/", {"code": "C001", "name": "Duplicate"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("code", response.json()["errors"])

    def test_same_code_allowed_in_another_company(self):
        response = self.client.post(
            "/api/customers/",
            {"code": "C002", "name": "New"},
            format="json",
            HTTP_X_COMPANY_CODE="CMP02",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(Customer.objects.get(pk=response.json()["id"]).company, self.other_company)

    def test_outstanding_balance_cannot_be_edited_directly(self):
        response = self.client.patch(
            f"/api/customers/{self.customer.id}/",
            {"outstanding_balance": "999.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("outstanding_balance", response.json()["errors"])

    def test_customer_with_invoices_cannot_be_deleted(self):
        self.post_invoice([line("P-A", 1, 100)])

        response = self.client.delete(f"/api/customers/{self.customer.id}/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "dependent_records_exist")

    def test_invoice_from_other_company_is_not_visible(self):
        invoice_id = self.post_invoice([line("P-A", 1, 100)]).json()["id"]

        response = self.client.get(f"/api/invoices/{invoice_id}/", HTTP_X_COMPANY_CODE="CMP02")

        self.assertEqual(response.status_code, 404)


class DiscountVoucherTests(SalesLedgerTestMixin, TestCase):
    def test_voucher_gets_number_and_has_no_ledger_effect(self):
        response = self.client.post(
            "/api/discount-vouchers/",
            {"customer_code": "C001", "voucher_date": self.today, "amount": "25.00", "reason": "Loyalty"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.json()["voucher_number"].startswith("DV-"))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.outstanding_balance, Decimal("0.00"))
        self.assertFalse(CashBalanceEntry.objects.exists())


class AnalyticsTests(SalesLedgerTestMixin, TestCase):
    def test_dashboard_metrics(self):
        self.post_invoice([line("P-A", 2, 100)], status="PAID")
        self.post_invoice([line("P-B", 1, 100)])

        response = self.client.get("/api/analytics/dashboard-metrics/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total_revenue"], "210.00")
        self.assertEqual(body["pending_receivables"], "100.00")
        self.assertEqual(body["customer_count"], 1)
        self.assertEqual(body["invoice_count"], 2)
        self.assertEqual(len(body["recent_invoices"]), 2)
        self.assertEqual(body["top_products"][0]["product_code"], "P-A")

    def test_sales_trends_cover_six_months(self):
        self.post_invoice([line("P-B", 1, 100)], status="PAID")

        response = self.client.get("/api/analytics/sales-trends/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(len(body), 6)
        self.assertEqual(body[-1]["month"], timezone.localdate().strftime("%Y-%m"))
        self.assertEqual(body[-1]["sales"], "100.00")

    def test_invalid_limit_is_rejected(self):
        response = self.client.get("/api/analytics/dashboard-metrics/", {"limit": "abc"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("limit", response.json()["errors"])


@unittest.skipUnless(connection.vendor == "postgresql", "row locks need PostgreSQL")
class ConcurrentInvoiceTests(TransactionTestCase):
    def test_concurrent_invoices_do_not_lose_customer_balance_updates(self):
        company = Company.objects.create(code="CMP01", name="Main Company")
        user = get_user_model().objects.create_user(username="race", password="pass1234", default_company=company)
        Product.objects.create(company=company, code="P-R", name="Race", unit_price=Decimal("10.00"), current_stock=Decimal("100"), tax_code="")
        customer = Customer.objects.create(company=company, code="C-R", name="Race Customer", outstanding_balance=Decimal("7.00"))

        errors = []

        def worker():
            try:
                create_sales_invoice(
                    company=company,
                    user=user,
                    customer_code="C-R",
                    inv_date=timezone.localdate(),
                    status="PENDING",
                    items=[{"product_code": "P-R", "quantity": Decimal("1"), "unit_price": Decimal("10.00"), "line_total": Decimal("10.00")}],
                )
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        customer.refresh_from_db()
        self.assertEqual(customer.outstanding_balance, Decimal("7.00") + 2 * Decimal("10.50"))
        self.assertEqual(SalesInvoice.objects.count(), 2)
