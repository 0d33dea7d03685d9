from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import Company
from finance.models import CashBalanceEntry
from inventory.models import Category, Product, PurchaseInvoice, Supplier, TaxRate
from inventory.services import SUPPLIER_PAYMENT_SOURCE
from sales.models import Customer
from sales.services import create_sales_invoice


class InventoryTestMixin:
    def setUp(self):
        self.client = APIClient()
        self.company = Company.objects.create(code="CMP01", name="Main Company")
        self.user = get_user_model().objects.create_user(
            username="storekeeper",
            password="pass1234",
            default_company=self.company,
        )
        self.client.force_authenticate(user=self.user)
        self.tax = TaxRate.objects.create(company=self.company, code="ZERO", name="Zero rated", rate=Decimal("0.00"))
        self.category = Category.objects.create(company=self.company, code="GEN", name="General")
        self.product = Product.objects.create(
            company=self.company, code="P-A", name="Product A", category=self.category,
            unit_price=Decimal("30.00"), purchase_price=Decimal("20.00"), current_stock=Decimal("10"), tax_code="ZERO",
        )
        self.supplier = Supplier.objects.create(company=self.company, code="S001", name="First Supplier")
        self.today = timezone.localdate().isoformat()

    def post_purchase(self, quantity, unit_price="20.00", status=None):
        payload = {
            "supplier_code": "S001",
            "purchase_date": self.today,
            "items": [{"product_code": "P-A", "quantity": str(quantity), "unit_price": unit_price}],
        }
        if status:
            payload["status"] = status
        return self.client.post("/api/purchase-invoices/", payload, format="json")

    def put_purchase(self, purchase_id, quantity, unit_price="20.00", status=None):
        payload = {
            "supplier_code": "S001",
            "purchase_date": self.today,
            "items": [{"product_code": "P-A", "quantity": str(quantity), "unit_price": unit_price}],
        }
        if status:
            payload["status"] = status
        return self.client.put(f"/api/purchase-invoices/{purchase_id}/", payload, format="json")


class PurchaseInvoiceTests(InventoryTestMixin, TestCase):
    def test_purchase_raises_stock_and_supplier_balance(self):
        response = self.post_purchase(5)

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["purchase_number"].startswith("PUR-"))
        self.assertEqual(body["total_amount"], "100.00")
        self.product.refresh_from_db()
        self.supplier.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal("15"))
        self.assertEqual(self.supplier.outstanding_balance, Decimal("100.00"))

    def test_edit_lowers_supplier_balance_by_difference(self):
        purchase_id = self.post_purchase(5).json()["id"]

        response = self.put_purchase(purchase_id, 3)

        self.assertEqual(response.status_code, 200)
        self.product.refresh_from_db()
        self.supplier.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal("13"))
        self.assertEqual(self.supplier.outstanding_balance, Decimal("60.00"))

    def test_edit_rejected_when_received_stock_was_already_sold(self):
        Product.objects.filter(pk=self.product.pk).update(current_stock=Decimal("0"))
        purchase_id = self.post_purchase(5).json()["id"]
        Customer.objects.create(company=self.company, code="C001", name="Walk-in")
        create_sales_invoice(
            company=self.company,
            user=self.user,
            customer_code="C001",
            inv_date=timezone.localdate(),
            status="PAID",
            items=[{"product_code": "P-A", "quantity": Decimal("4"), "unit_price": Decimal("30.00"), "line_total": Decimal("120.00")}],
        )

        response = self.put_purchase(purchase_id, 1)

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "insufficient_stock")
        self.product.refresh_from_db()
        self.supplier.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal("1"))
        self.assertEqual(self.supplier.outstanding_balance, Decimal("100.00"))
        self.assertEqual(PurchaseInvoice.objects.get(pk=purchase_id).total_amount, Decimal("100.00"))

    def test_cancelling_purchase_reverses_effects(self):
        purchase_id = self.post_purchase(5).json()["id"]

        response = self.put_purchase(purchase_id, 5, status="CANCELLED")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "CANCELLED")
        self.product.refresh_from_db()
        self.supplier.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal("10"))
        self.assertEqual(self.supplier.outstanding_balance, Decimal("0.00"))

    def test_cancelled_purchase_applies_nothing(self):
        response = self.post_purchase(5, status="CANCELLED")

        self.assertEqual(response.status_code, 201)
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal("10"))

    def test_unknown_supplier_returns_not_found(self):
        response = self.client.post(
            "/api/purchase-invoices/",
            {"supplier_code": "NOPE", "purchase_date": self.today, "items": [{"product_code": "P-A", "quantity": "1", "unit_price": "1.00"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 404)

    def test_filter_by_supplier_and_status(self):
        self.post_purchase(1)
        self.post_purchase(1, status="CANCELLED")

        response = self.client.get("/api/purchase-invoices/", {"supplier": "S001", "status": "pending"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 1)


class SupplierPaymentTests(InventoryTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.post_purchase(5)

    def test_payment_lowers_supplier_balance_and_posts_cash(self):
        response = self.client.post(
            "/api/supplier-payments/",
            {"supplier_code": "S001", "payment_date": self.today, "amount": "40.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.json()["payment_number"].startswith("PAY-"))
        self.supplier.refresh_from_db()
        self.assertEqual(self.supplier.outstanding_balance, Decimal("60.00"))

        entry = CashBalanceEntry.objects.get(source_type=SUPPLIER_PAYMENT_SOURCE)
        self.assertEqual(entry.trans_type, CashBalanceEntry.TransType.PAYMENT)
        self.assertEqual(entry.credit_amount, Decimal("40.00"))
        self.assertEqual(entry.party_code, "S001")

    def test_payment_edit_reverses_previous_amount(self):
        payment_id = self.client.post(
            "/api/supplier-payments/",
            {"supplier_code": "S001", "payment_date": self.today, "amount": "40.00"},
            format="json",
        ).json()["id"]

        response = self.client.put(
            f"/api/supplier-payments/{payment_id}/",
            {"supplier_code": "S001", "payment_date": self.today, "amount": "70.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.supplier.refresh_from_db()
        self.assertEqual(self.supplier.outstanding_balance, Decimal("30.00"))
        self.assertEqual(CashBalanceEntry.objects.filter(source_id=payment_id).count(), 1)


class ProductAndMasterDataTests(InventoryTestMixin, TestCase):
    def test_create_product(self):
        response = self.client.post(
            "/api/products/",
            {"code": "P-B", "name": "Product B", "category_code": "GEN", "unit_price": "12.50", "tax_code": "ZERO"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["category_name"], "General")
        self.assertEqual(Product.objects.get(code="P-B").company, self.company)

    def test_duplicate_product_code_is_rejected(self):
        response = self.client.post("/api/products/", {"code": "p-a", "name": "Again", "unit_price": "1.00"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("code", response.json()["errors"])

    def test_unknown_tax_code_is_rejected(self):
        response = self.client.post(
            "/api/products/",
            {"code": "P-B", "name": "Product B", "unit_price": "1.00", "tax_code": "NOPE"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("tax_code", response.json()["errors"])

    def test_current_stock_cannot_be_edited_directly(self):
        response = self.client.patch(f"/api/products/{self.product.id}/", {"current_stock": "99"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("current_stock", response.json()["errors"])
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal("10"))

    def test_product_search(self):
        Product.objects.create(company=self.company, code="X-1", name="Widget", unit_price=Decimal("1.00"))

        response = self.client.get("/api/products/", {"search": "widg"})

        self.assertEqual([row["code"] for row in response.json()["results"]], ["X-1"])

    def test_category_in_use_cannot_be_deleted(self):
        response = self.client.delete(f"/api/categories/{self.category.id}/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "dependent_records_exist")
        self.assertTrue(Category.objects.filter(pk=self.category.pk).exists())

    def test_unused_category_can_be_deleted(self):
        unused = Category.objects.create(company=self.company, code="OLD", name="Old")

        response = self.client.delete(f"/api/categories/{unused.id}/")

        self.assertEqual(response.status_code, 204)

    def test_tax_rate_delete_deactivates(self):
        response = self.client.delete("/api/finance/tax-rates/ZERO/")

        self.assertEqual(response.status_code, 204)
        self.tax.refresh_from_db()
        self.assertFalse(self.tax.is_active)
        listed = self.client.get("/api/finance/tax-rates/").json()["results"]
        self.assertEqual(listed, [])
        listed = self.client.get("/api/finance/tax-rates/", {"include_inactive": "true"}).json()["results"]
        self.assertEqual([row["code"] for row in listed], ["ZERO"])

    def test_tax_rate_out_of_range(self):
        response = self.client.post("/api/finance/tax-rates/", {"code": "BAD", "name": "Bad", "rate": "120"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("rate", response.json()["errors"])

    def test_supplier_balance_cannot_be_edited_directly(self):
        response = self.client.patch(f"/api/suppliers/{self.supplier.id}/", {"outstanding_balance": "5.00"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("outstanding_balance", response.json()["errors"])
