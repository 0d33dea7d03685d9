from decimal import Decimal

from django.utils import timezone
from rest_framework import serializers

from common.company import CompanyCodeSerializerMixin
from inventory.models import (
    Category,
    Product,
    PurchaseInvoice,
    PurchaseInvoiceItem,
    Supplier,
    SupplierPayment,
    TaxRate,
)

LINE_TOTAL_TOLERANCE = Decimal("0.01")


class LineItemSerializer(serializers.Serializer):
    """One requested document line. `line_total` defaults to quantity × unit_price."""

    product_code = serializers.CharField(max_length=64)
    quantity = serializers.DecimalField(max_digits=14, decimal_places=3)
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2)
    line_total = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)

    def validate(self, attrs):
        quantity = attrs["quantity"]
        unit_price = attrs["unit_price"]
        if quantity <= 0:
            raise serializers.ValidationError({"quantity": "Quantity must be greater than zero."})
        if unit_price < 0:
            raise serializers.ValidationError({"unit_price": "Unit price cannot be negative."})

        expected = quantity * unit_price
        line_total = attrs.get("line_total")
        if line_total is None:
            attrs["line_total"] = expected.quantize(Decimal("0.01"))
        elif line_total < 0:
            raise serializers.ValidationError({"line_total": "Line total cannot be negative."})
        elif abs(line_total - expected) > LINE_TOTAL_TOLERANCE:
            raise serializers.ValidationError({"line_total": "Line total must equal quantity × unit price."})

        attrs["product_code"] = attrs["product_code"].strip()
        return attrs


class CategorySerializer(CompanyCodeSerializerMixin, serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "code", "name", "description", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class TaxRateSerializer(CompanyCodeSerializerMixin, serializers.ModelSerializer):
    code_label = "tax code"

    class Meta:
        model = TaxRate
        fields = ["id", "code", "name", "rate", "tax_type", "description", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_rate(self, value):
        if value < 0 or value > 100:
            raise serializers.ValidationError("Tax rate must be between 0 and 100.")
        return value


class ProductSerializer(CompanyCodeSerializerMixin, serializers.ModelSerializer):
    code_label = "product code"
    category_code = serializers.CharField(source="category.code", required=False, allow_blank=True, allow_null=True)
    category_name = serializers.CharField(source="category.name", read_only=True, allow_null=True)
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "code",
            "name",
            "category_code",
            "category_name",
            "unit_price",
            "purchase_price",
            "current_stock",
            "min_stock_level",
            "tax_code",
            "hsn_code",
            "is_low_stock",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate(self, attrs):
        company = self.context.get("company")

        category_payload = attrs.pop("category", None)
        if category_payload is not None:
            category_code = (category_payload.get("code") or "").strip()
            attrs["category"] = None
            if category_code:
                category = Category.objects.filter(company=company, code=category_code).first()
                if category is None:
                    raise serializers.ValidationError({"category_code": f"Category {category_code} was not found."})
                attrs["category"] = category

        tax_code = attrs.get("tax_code")
        if tax_code and not TaxRate.objects.filter(company=company, code=tax_code).exists():
            raise serializers.ValidationError({"tax_code": f"Tax rate {tax_code} was not found."})

        for field in ("unit_price", "purchase_price", "min_stock_level", "current_stock"):
            value = attrs.get(field)
            if value is not None and value < 0:
                raise serializers.ValidationError({field: "Value cannot be negative."})

        if self.instance is not None and "current_stock" in attrs and attrs["current_stock"] != self.instance.current_stock:
            raise serializers.ValidationError(
                {"current_stock": "Stock changes are posted through purchase, sales and return documents."}
            )
        return attrs


class SupplierSerializer(CompanyCodeSerializerMixin, serializers.ModelSerializer):
    code_label = "supplier code"

    class Meta:
        model = Supplier
        fields = [
            "id",
            "code",
            "name",
            "contact_person",
            "city",
            "phone",
            "tax_number",
            "payment_terms_days",
            "outstanding_balance",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate(self, attrs):
        if (
            self.instance is not None
            and "outstanding_balance" in attrs
            and attrs["outstanding_balance"] != self.instance.outstanding_balance
        ):
            raise serializers.ValidationError(
                {"outstanding_balance": "Balances are posted through purchase invoices and payments."}
            )
        return attrs


class PurchaseInvoiceItemSerializer(serializers.ModelSerializer):
    product_code = serializers.CharField(source="product.code", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = PurchaseInvoiceItem
        fields = ["id", "line_no", "product_code", "product_name", "quantity", "unit_price", "line_total"]
        read_only_fields = fields


class PurchaseInvoiceSerializer(serializers.ModelSerializer):
    supplier_code = serializers.CharField(source="supplier.code", read_only=True)
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)
    items = PurchaseInvoiceItemSerializer(many=True, read_only=True)

    class Meta:
        model = PurchaseInvoice
        fields = [
            "id",
            "purchase_number",
            "purchase_date",
            "supplier_code",
            "supplier_name",
            "status",
            "total_amount",
            "items",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PurchaseInvoiceWriteSerializer(serializers.Serializer):
    supplier_code = serializers.CharField(max_length=32)
    purchase_date = serializers.DateField(default=timezone.localdate)
    status = serializers.ChoiceField(choices=PurchaseInvoice.Status.choices, required=False)
    items = LineItemSerializer(many=True, allow_empty=False)


class SupplierPaymentSerializer(serializers.ModelSerializer):
    supplier_code = serializers.CharField(source="supplier.code", read_only=True)
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)

    class Meta:
        model = SupplierPayment
        fields = [
            "id",
            "payment_number",
            "payment_date",
            "supplier_code",
            "supplier_name",
            "amount",
            "payment_method",
            "reference_number",
            "status",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class SupplierPaymentWriteSerializer(serializers.Serializer):
    supplier_code = serializers.CharField(max_length=32)
    payment_date = serializers.DateField(default=timezone.localdate)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    payment_method = serializers.CharField(max_length=32, required=False, default="CASH")
    reference_number = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than zero.")
        return value
