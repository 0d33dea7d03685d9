from django.utils import timezone
from rest_framework import serializers

from common.company import CompanyCodeSerializerMixin
from inventory.serializers import LineItemSerializer
from sales.models import (
    Customer,
    DiscountVoucher,
    PaymentReceipt,
    SalesInvoice,
    SalesInvoiceItem,
    SalesReturn,
    SalesReturnItem,
)


class CustomerSerializer(CompanyCodeSerializerMixin, serializers.ModelSerializer):
    code_label = "customer code"

    class Meta:
        model = Customer
        fields = [
            "id",
            "code",
            "name",
            "city",
            "phone",
            "route_code",
            "tax_number",
            "credit_terms_days",
            "credit_limit",
            "outstanding_balance",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_credit_limit(self, value):
        if value < 0:
            raise serializers.ValidationError("Credit limit cannot be negative.")
        return value

    def validate(self, attrs):
        if (
            self.instance is not None
            and "outstanding_balance" in attrs
            and attrs["outstanding_balance"] != self.instance.outstanding_balance
        ):
            raise serializers.ValidationError(
                {"outstanding_balance": "Balances are posted through invoices, returns and receipts."}
            )
        return attrs


class SalesInvoiceItemSerializer(serializers.ModelSerializer):
    product_code = serializers.CharField(source="product.code", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = SalesInvoiceItem
        fields = ["id", "line_no", "product_code", "product_name", "quantity", "unit_price", "line_total", "tax_rate"]
        read_only_fields = fields


class SalesInvoiceSerializer(serializers.ModelSerializer):
    customer_code = serializers.CharField(source="customer.code", read_only=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    status = serializers.CharField(read_only=True)
    items = SalesInvoiceItemSerializer(many=True, read_only=True)

    class Meta:
        model = SalesInvoice
        fields = [
            "id",
            "inv_number",
            "inv_date",
            "customer_code",
            "customer_name",
            "sub_total",
            "tax_amount",
            "total_amount",
            "balance_due",
            "status",
            "items",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class SalesInvoiceWriteSerializer(serializers.Serializer):
    customer_code = serializers.CharField(max_length=32)
    inv_date = serializers.DateField(default=timezone.localdate)
    status = serializers.ChoiceField(
        choices=[SalesInvoice.Status.PAID, SalesInvoice.Status.PENDING],
        default=SalesInvoice.Status.PENDING,
    )
    items = LineItemSerializer(many=True, allow_empty=False)


class SalesReturnItemSerializer(serializers.ModelSerializer):
    product_code = serializers.CharField(source="product.code", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = SalesReturnItem
        fields = ["id", "line_no", "product_code", "product_name", "quantity", "unit_price", "line_total"]
        read_only_fields = fields


class SalesReturnSerializer(serializers.ModelSerializer):
    inv_id = serializers.UUIDField(source="invoice_id", read_only=True)
    inv_number = serializers.CharField(source="invoice.inv_number", read_only=True)
    customer_code = serializers.CharField(source="customer.code", read_only=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    items = SalesReturnItemSerializer(many=True, read_only=True)

    class Meta:
        model = SalesReturn
        fields = [
            "id",
            "return_number",
            "return_date",
            "inv_id",
            "inv_number",
            "customer_code",
            "customer_name",
            "status",
            "total_amount",
            "items",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class SalesReturnWriteSerializer(serializers.Serializer):
    invoice_id = serializers.UUIDField(required=False)
    inv_id = serializers.UUIDField(required=False, write_only=True)
    return_date = serializers.DateField()
    status = serializers.ChoiceField(choices=SalesReturn.Status.choices, required=False)
    items = LineItemSerializer(many=True, allow_empty=False)

    def validate(self, attrs):
        legacy_id = attrs.pop("inv_id", None)
        if "invoice_id" not in attrs and legacy_id is not None:
            attrs["invoice_id"] = legacy_id
        if "invoice_id" not in attrs and self.context.get("view") and self.context["view"].action == "create":
            raise serializers.ValidationError({"invoice_id": "This field is required."})
        return attrs


class PaymentReceiptSerializer(serializers.ModelSerializer):
    customer_code = serializers.CharField(source="customer.code", read_only=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True)

    class Meta:
        model = PaymentReceipt
        fields = [
            "id",
            "receipt_number",
            "receipt_date",
            "customer_code",
            "customer_name",
            "amount",
            "payment_method",
            "reference_number",
            "status",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PaymentReceiptWriteSerializer(serializers.Serializer):
    customer_code = serializers.CharField(max_length=32)
    receipt_date = serializers.DateField(default=timezone.localdate)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    payment_method = serializers.CharField(max_length=32, required=False, default="CASH")
    reference_number = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than zero.")
        return value


class DiscountVoucherSerializer(serializers.ModelSerializer):
    customer_code = serializers.SlugRelatedField(source="customer", slug_field="code", queryset=Customer.objects.none())
    customer_name = serializers.CharField(source="customer.name", read_only=True)

    class Meta:
        model = DiscountVoucher
        fields = [
            "id",
            "voucher_number",
            "voucher_date",
            "customer_code",
            "customer_name",
            "amount",
            "reason",
            "status",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "voucher_number", "created_at", "updated_at"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        company = self.context.get("company")
        if company is not None:
            self.fields["customer_code"].queryset = Customer.objects.filter(company=company)

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than zero.")
        return value
