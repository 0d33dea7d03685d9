from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import Company
from finance.models import CashBalanceEntry, ExpenseHead, Loan, OpeningCashBalance
from finance.services import CASH_TRANSACTION_SOURCE, EXPENSE_SOURCE, LOAN_RETURN_SOURCE, LOAN_SOURCE
from inventory.models import Supplier
from sales.models import Customer


class FinanceTestMixin:
    def setUp(self):
        self.client = APIClient()
        self.company = Company.objects.create(code="CMP01", name="Main Company")
        self.user = get_user_model().objects.create_user(
            username="accountant",
            password="pass1234",
            default_company=self.company,
        )
        self.client.force_authenticate(user=self.user)
        self.head = ExpenseHead.objects.create(company=self.company, code="RENT", name="Rent")
        self.customer = Customer.objects.create(
            company=self.company, code="C001", name="First Customer", outstanding_balance=Decimal("500.00")
        )
        self.supplier = Supplier.objects.create(
            company=self.company, code="S001", name="First Supplier", outstanding_balance=Decimal("300.00")
        )
        self.today = timezone.localdate().isoformat()


class ExpenseTests(FinanceTestMixin, TestCase):
    def post_expense(self, amount, head_code="RENT"):
        return self.client.post(
            "/api/finance/expenses/",
            {"head_code": head_code, "amount": amount, "expense_date": self.today, "remarks": "October"},
            format="json",
        )

    def test_expense_posts_linked_cash_credit(self):
        response = self.post_expense("250.00")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["head_name"], "Rent")
        entry = CashBalanceEntry.objects.get()
        self.assertEqual(entry.trans_type, CashBalanceEntry.TransType.EXPENSE)
        self.assertEqual(entry.credit_amount, Decimal("250.00"))
        self.assertEqual(entry.source_type, EXPENSE_SOURCE)
        self.assertEqual(str(entry.source_id), body["id"])

    def test_expense_edit_replaces_cash_row(self):
        expense_id = self.post_expense("250.00").json()["id"]

        response = self.client.put(
            f"/api/finance/expenses/{expense_id}/",
            {"head_code": "RENT", "amount": "300.00", "expense_date": self.today},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        entries = CashBalanceEntry.objects.filter(source_id=expense_id)
        self.assertEqual(entries.count(), 1)
        self.assertEqual(entries.get().credit_amount, Decimal("300.00"))

    def test_inactive_head_is_rejected(self):
        self.head.is_active = False
        self.head.save()

        response = self.post_expense("10.00")

        self.assertEqual(response.status_code, 400)
        self.assertIn("head_code", response.json()["errors"])
        self.assertFalse(CashBalanceEntry.objects.exists())

    def test_unknown_head_returns_not_found(self):
        response = self.post_expense("10.00", head_code="NOPE")

        self.assertEqual(response.status_code, 404)

    def test_expense_head_delete_deactivates(self):
        response = self.client.delete("/api/finance/expense-heads/RENT/")

        self.assertEqual(response.status_code, 204)
        self.head.refresh_from_db()
        self.assertFalse(self.head.is_active)
        self.assertEqual(self.client.get("/api/finance/expense-heads/").json()["results"], [])


class CashTransactionTests(FinanceTestMixin, TestCase):
    def post_payment(self, trans_type, party_code, amount):
        return self.client.post(
            "/api/finance/payment/",
            {"type": trans_type, "party_code": party_code, "amount": amount, "date": self.today},
            format="json",
        )

    def test_receipt_lowers_customer_balance(self):
        response = self.post_payment("RECEIPT", "C001", "100.00")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["debit_amount"], "100.00")
        self.assertEqual(body["party_type"], "CUSTOMER")
        self.assertEqual(body["source_type"], CASH_TRANSACTION_SOURCE)
        self.assertEqual(body["source_id"], body["id"])
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.outstanding_balance, Decimal("400.00"))

    def test_payment_lowers_supplier_balance(self):
        response = self.post_payment("PAYMENT", "S001", "120.00")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["credit_amount"], "120.00")
        self.supplier.refresh_from_db()
        self.assertEqual(self.supplier.outstanding_balance, Decimal("180.00"))

    def test_unknown_party_leaves_ledger_untouched(self):
        response = self.post_payment("RECEIPT", "NOPE", "100.00")

        self.assertEqual(response.status_code, 404)
        self.assertFalse(CashBalanceEntry.objects.exists())

    def test_invalid_type_is_rejected(self):
        response = self.post_payment("SALES", "C001", "100.00")

        self.assertEqual(response.status_code, 400)
        self.assertIn("type", response.json()["errors"])

    def test_edit_reverses_previous_party_effect(self):
        entry_id = self.post_payment("RECEIPT", "C001", "100.00").json()["id"]

        response = self.client.put(
            f"/api/finance/transactions/{entry_id}/",
            {"trans_type": "RECEIPT", "party_code": "C001", "amount": "40.00", "trans_date": self.today},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.outstanding_balance, Decimal("460.00"))
        self.assertEqual(CashBalanceEntry.objects.get(pk=entry_id).debit_amount, Decimal("40.00"))

    def test_edit_can_switch_receipt_to_supplier_payment(self):
        entry_id = self.post_payment("RECEIPT", "C001", "100.00").json()["id"]

        response = self.client.put(
            f"/api/finance/transactions/{entry_id}/",
            {"trans_type": "PAYMENT", "party_code": "S001", "amount": "50.00", "trans_date": self.today},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.customer.refresh_from_db()
        self.supplier.refresh_from_db()
        self.assertEqual(self.customer.outstanding_balance, Decimal("500.00"))
        self.assertEqual(self.supplier.outstanding_balance, Decimal("250.00"))
        entry = CashBalanceEntry.objects.get(pk=entry_id)
        self.assertEqual(entry.debit_amount, Decimal("0.00"))
        self.assertEqual(entry.credit_amount, Decimal("50.00"))

    def test_document_linked_row_cannot_be_edited_directly(self):
        self.client.post(
            "/api/finance/expenses/",
            {"head_code": "RENT", "amount": "250.00", "expense_date": self.today},
            format="json",
        )
        entry = CashBalanceEntry.objects.get(source_type=EXPENSE_SOURCE)

        response = self.client.put(
            f"/api/finance/transactions/{entry.id}/",
            {"trans_type": "PAYMENT", "party_code": "S001", "amount": "10.00", "trans_date": self.today},
            format="json",
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "document_closed")
        entry.refresh_from_db()
        self.assertEqual(entry.credit_amount, Decimal("250.00"))

    def test_transactions_cannot_be_created_or_deleted_through_ledger_endpoint(self):
        entry_id = self.post_payment("RECEIPT", "C001", "100.00").json()["id"]

        self.assertEqual(self.client.post("/api/finance/transactions/", {}, format="json").status_code, 405)
        self.assertEqual(self.client.delete(f"/api/finance/transactions/{entry_id}/").status_code, 405)

    def test_filters_by_type(self):
        self.post_payment("RECEIPT", "C001", "100.00")
        self.post_payment("PAYMENT", "S001", "20.00")

        response = self.client.get("/api/finance/transactions/", {"type": "payment"})

        self.assertEqual([row["party_code"] for row in response.json()["results"]], ["S001"])

    def test_summary_includes_opening_balance(self):
        self.client.post(
            "/api/finance/opening-balance/",
            {"balance_date": self.today, "opening_amount": "1000.00"},
            format="json",
        )
        self.post_payment("RECEIPT", "C001", "100.00")
        self.client.post(
            "/api/finance/expenses/",
            {"head_code": "RENT", "amount": "250.00", "expense_date": self.today},
            format="json",
        )

        response = self.client.get("/api/finance/transactions/summary/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(Decimal(body["opening_balance"]), Decimal("1000.00"))
        self.assertEqual(Decimal(body["total_debit"]), Decimal("100.00"))
        self.assertEqual(Decimal(body["total_credit"]), Decimal("250.00"))
        self.assertEqual(Decimal(body["cash_in_hand"]), Decimal("850.00"))


class OpeningBalanceTests(FinanceTestMixin, TestCase):
    def test_empty_opening_balance(self):
        response = self.client.get("/api/finance/opening-balance/")

        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()["status"])

    def test_new_opening_balance_closes_previous(self):
        first = self.client.post(
            "/api/finance/opening-balance/",
            {"balance_date": self.today, "opening_amount": "500.00"},
            format="json",
        )
        second = self.client.post(
            "/api/finance/opening-balance/",
            {"balance_date": self.today, "opening_amount": "800.00", "closing_amount": "900.00"},
            format="json",
        )

        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["closing_amount"], "500.00")
        self.assertEqual(second.status_code, 201)
        self.assertEqual(OpeningCashBalance.objects.filter(status=OpeningCashBalance.Status.OPEN).count(), 1)
        current = self.client.get("/api/finance/opening-balance/").json()
        self.assertEqual(current["opening_amount"], "800.00")
        self.assertEqual(current["status"], "OPEN")

    def test_negative_opening_amount_is_rejected(self):
        response = self.client.post(
            "/api/finance/opening-balance/",
            {"balance_date": self.today, "opening_amount": "-1.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("opening_amount", response.json()["errors"])


class LoanTests(FinanceTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        response = self.client.post(
            "/api/finance/loans/",
            {"loan_date": self.today, "amount": "1000.00", "lender_name": "City Bank", "interest_rate": "4.50", "term_months": 12},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.loan = response.json()

    def post_return(self, amount):
        return self.client.post(
            "/api/finance/loan-returns/",
            {"loan_id": self.loan["id"], "return_date": self.today, "amount": amount},
            format="json",
        )

    def test_loan_posts_cash_receipt(self):
        self.assertTrue(self.loan["loan_number"].startswith("LOAN-"))
        self.assertEqual(self.loan["outstanding_amount"], "1000.00")
        entry = CashBalanceEntry.objects.get(source_type=LOAN_SOURCE)
        self.assertEqual(entry.trans_type, CashBalanceEntry.TransType.RECEIPT)
        self.assertEqual(entry.debit_amount, Decimal("1000.00"))

    def test_partial_return_lowers_outstanding(self):
        response = self.post_return("400.00")

        self.assertEqual(response.status_code, 201)
        loan = self.client.get(f"/api/finance/loans/{self.loan['id']}/").json()
        self.assertEqual(loan["outstanding_amount"], "600.00")
        self.assertEqual(loan["status"], "ACTIVE")
        entry = CashBalanceEntry.objects.get(source_type=LOAN_RETURN_SOURCE)
        self.assertEqual(entry.trans_type, CashBalanceEntry.TransType.PAYMENT)
        self.assertEqual(entry.credit_amount, Decimal("400.00"))

    def test_overpayment_is_rejected(self):
        self.post_return("400.00")

        response = self.post_return("700.00")

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "loan_overpaid")
        self.assertEqual(CashBalanceEntry.objects.filter(source_type=LOAN_RETURN_SOURCE).count(), 1)

    def test_full_repayment_closes_loan(self):
        self.post_return("400.00")
        self.post_return("600.00")

        self.assertEqual(Loan.objects.get(pk=self.loan["id"]).status, Loan.Status.CLOSED)
        response = self.post_return("1.00")
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "document_closed")

    def test_returns_action_lists_loan_returns(self):
        self.post_return("100.00")
        self.post_return("200.00")

        response = self.client.get(f"/api/finance/loans/{self.loan['id']}/returns/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()), 2)

    def test_loans_cannot_be_edited(self):
        response = self.client.put(
            f"/api/finance/loans/{self.loan['id']}/",
            {"loan_date": self.today, "amount": "1.00", "lender_name": "X"},
            format="json",
        )

        self.assertEqual(response.status_code, 405)
