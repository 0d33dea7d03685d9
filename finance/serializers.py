from django.utils import timezone
from rest_framework import serializers

from common.company import CompanyCodeSerializerMixin
from finance.models import CashBalanceEntry, Expense, ExpenseHead, Loan, LoanReturn, OpeningCashBalance


def _positive(value):
    if value <= 0:
        raise serializers.ValidationError("Amount must be greater than zero.")
    return value


class CashBalanceEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = CashBalanceEntry
        fields = [
            "id",
            "trans_date",
            "trans_type",
            "description",
            "debit_amount",
            "credit_amount",
            "party_type",
            "party_code",
            "source_type",
            "source_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class CashTransactionWriteSerializer(serializers.Serializer):
    trans_type = serializers.ChoiceField(
        choices=[CashBalanceEntry.TransType.RECEIPT, CashBalanceEntry.TransType.PAYMENT]
    )
    party_code = serializers.CharField(max_length=32)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, validators=[_positive])
    trans_date = serializers.DateField(default=timezone.localdate)
    remarks = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")


class FinancePaymentSerializer(serializers.Serializer):
    """Payload of `POST /finance/payment`, named the way the browser client sends it."""

    type = serializers.ChoiceField(choices=[CashBalanceEntry.TransType.RECEIPT, CashBalanceEntry.TransType.PAYMENT])
    party_code = serializers.CharField(max_length=32)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, validators=[_positive])
    date = serializers.DateField(default=timezone.localdate)
    remarks = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")

    def to_service_kwargs(self):
        data = self.validated_data
        return {
            "trans_type": data["type"],
            "party_code": data["party_code"],
            "amount": data["amount"],
            "trans_date": data["date"],
            "remarks": data["remarks"],
        }


class ExpenseHeadSerializer(CompanyCodeSerializerMixin, serializers.ModelSerializer):
    code_label = "expense head code"

    class Meta:
        model = ExpenseHead
        fields = ["id", "code", "name", "description", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class ExpenseSerializer(serializers.ModelSerializer):
    head_code = serializers.CharField(source="head.code", read_only=True)
    head_name = serializers.CharField(source="head.name", read_only=True)

    class Meta:
        model = Expense
        fields = ["id", "head_code", "head_name", "amount", "remarks", "expense_date", "created_at", "updated_at"]
        read_only_fields = fields


class ExpenseWriteSerializer(serializers.Serializer):
    head_code = serializers.CharField(max_length=32)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, validators=[_positive])
    expense_date = serializers.DateField(default=timezone.localdate)
    remarks = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class OpeningCashBalanceSerializer(serializers.ModelSerializer):
    class Meta:
        model = OpeningCashBalance
        fields = ["id", "balance_date", "opening_amount", "closing_amount", "status", "created_at"]
        read_only_fields = ["id", "status", "created_at"]
        extra_kwargs = {"closing_amount": {"required": False}}

    def validate_opening_amount(self, value):
        if value < 0:
            raise serializers.ValidationError("Opening amount cannot be negative.")
        return value


class LoanReturnSerializer(serializers.ModelSerializer):
    loan_id = serializers.UUIDField()

    class Meta:
        model = LoanReturn
        fields = ["id", "loan_id", "return_date", "amount", "payment_method", "reference_number", "status", "created_at"]
        read_only_fields = ["id", "status", "created_at"]
        extra_kwargs = {"amount": {"validators": [_positive]}}


class LoanSerializer(serializers.ModelSerializer):
    outstanding_amount = serializers.SerializerMethodField()

    class Meta:
        model = Loan
        fields = [
            "id",
            "loan_number",
            "loan_date",
            "amount",
            "interest_rate",
            "term_months",
            "lender_name",
            "status",
            "outstanding_amount",
            "created_at",
        ]
        read_only_fields = ["id", "status", "outstanding_amount", "created_at"]
        extra_kwargs = {
            "loan_number": {"required": False, "allow_blank": True},
            "amount": {"validators": [_positive]},
        }

    def get_outstanding_amount(self, obj):
        from finance.services import loan_outstanding

        return str(loan_outstanding(obj))
