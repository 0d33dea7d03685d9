from decimal import Decimal

from django.db.models import Sum
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request
from common.company import CompanyScopedMutationMixin, LedgerDocumentMixin, get_request_company
from common.permissions import RoleCapabilityPermission, crud_action_map
from finance.models import CashBalanceEntry, Expense, ExpenseHead, Loan, LoanReturn, OpeningCashBalance
from finance.serializers import (
    CashBalanceEntrySerializer,
    CashTransactionWriteSerializer,
    ExpenseHeadSerializer,
    ExpenseSerializer,
    ExpenseWriteSerializer,
    FinancePaymentSerializer,
    LoanReturnSerializer,
    LoanSerializer,
    OpeningCashBalanceSerializer,
)
from finance.services import (
    create_expense,
    create_loan,
    create_loan_return,
    post_cash_transaction,
    set_opening_balance,
    update_cash_transaction,
    update_expense,
)
from inventory.views import filter_by_date_range


class CashTransactionViewSet(
    LedgerDocumentMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    """The cash ledger. Rows are created by documents; only standalone
    receipt/payment rows are editable here."""

    queryset = CashBalanceEntry.objects.all()
    serializer_class = CashBalanceEntrySerializer
    write_serializer_class = CashTransactionWriteSerializer
    update_service = update_cash_transaction
    http_method_names = ["get", "put", "head", "options"]
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("finance.view", "finance.manage", {"summary": "finance.view"})
    audit_entity = "cash_transaction"

    def get_queryset(self):
        queryset = filter_by_date_range(super().get_queryset(), self.request, "trans_date")
        trans_type = self.request.query_params.get("type")
        if trans_type:
            queryset = queryset.filter(trans_type=trans_type.upper())
        party_code = self.request.query_params.get("party_code")
        if party_code:
            queryset = queryset.filter(party_code=party_code)
        return queryset

    @action(detail=False, methods=["get"])
    def summary(self, request):
        totals = self.get_queryset().aggregate(debit=Sum("debit_amount"), credit=Sum("credit_amount"))
        debit = totals["debit"] or Decimal("0.00")
        credit = totals["credit"] or Decimal("0.00")
        opening = (
            OpeningCashBalance.objects.filter(company=self.get_company(), status=OpeningCashBalance.Status.OPEN)
            .values_list("opening_amount", flat=True)
            .first()
        ) or Decimal("0.00")
        return Response(
            {
                "opening_balance": str(opening),
                "total_debit": str(debit),
                "total_credit": str(credit),
                "net": str(debit - credit),
                "cash_in_hand": str(opening + debit - credit),
            }
        )


class FinancePaymentView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "finance.manage"}

    def post(self, request):
        serializer = FinancePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        company = get_request_company(request)
        entry = post_cash_transaction(company=company, user=request.user, **serializer.to_service_kwargs())
        data = CashBalanceEntrySerializer(entry).data
        create_audit_log_from_request(
            request,
            action="cash_transaction.create",
            entity="cash_transaction",
            entity_id=entry.pk,
            after_snapshot=data,
            company=company,
        )
        return Response(data, status=status.HTTP_201_CREATED)


class ExpenseHeadViewSet(CompanyScopedMutationMixin, viewsets.ModelViewSet):
    queryset = ExpenseHead.objects.all()
    serializer_class = ExpenseHeadSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("finance.view", "finance.manage")
    audit_entity = "expense_head"
    lookup_field = "code"

    def get_queryset(self):
        queryset = super().get_queryset()
        if self.action == "list" and self.request.query_params.get("include_inactive") not in ("1", "true"):
            queryset = queryset.filter(is_active=True)
        return queryset

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        instance.is_active = False
        instance.save(update_fields=["is_active", "updated_at"])
        self._audit(action="deactivate", instance=instance, before_snapshot=before_snapshot)


class ExpenseViewSet(
    LedgerDocumentMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Expense.objects.select_related("head")
    serializer_class = ExpenseSerializer
    write_serializer_class = ExpenseWriteSerializer
    create_service = create_expense
    update_service = update_expense
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("finance.view", "finance.manage")
    audit_entity = "expense"

    def get_queryset(self):
        queryset = filter_by_date_range(super().get_queryset(), self.request, "expense_date")
        head = self.request.query_params.get("head")
        if head:
            queryset = queryset.filter(head__code=head)
        return queryset


class OpeningBalanceView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "finance.view", "post": "finance.manage"}

    def get(self, request):
        company = get_request_company(request)
        balance = OpeningCashBalance.objects.filter(company=company, status=OpeningCashBalance.Status.OPEN).first()
        if balance is None:
            return Response({"opening_amount": "0.00", "closing_amount": "0.00", "status": None})
        return Response(OpeningCashBalanceSerializer(balance).data)

    def post(self, request):
        serializer = OpeningCashBalanceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        company = get_request_company(request)
        balance = set_opening_balance(company=company, user=request.user, **serializer.validated_data)
        data = OpeningCashBalanceSerializer(balance).data
        create_audit_log_from_request(
            request,
            action="opening_balance.create",
            entity="opening_balance",
            entity_id=balance.pk,
            after_snapshot=data,
            company=company,
        )
        return Response(data, status=status.HTTP_201_CREATED)


class LoanViewSet(
    LedgerDocumentMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Loan.objects.prefetch_related("returns")
    serializer_class = LoanSerializer
    write_serializer_class = LoanSerializer
    create_service = create_loan
    http_method_names = ["get", "post", "head", "options"]
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("finance.view", "finance.manage", {"returns": "finance.view"})
    audit_entity = "loan"

    def get_queryset(self):
        queryset = filter_by_date_range(super().get_queryset(), self.request, "loan_date")
        status_filter = self.request.query_params.get("status")
        if status_filter:
            queryset = queryset.filter(status=status_filter.upper())
        return queryset

    @action(detail=True, methods=["get"])
    def returns(self, request, pk=None):
        loan = self.get_object()
        return Response(LoanReturnSerializer(loan.returns.all(), many=True).data)


class LoanReturnViewSet(
    LedgerDocumentMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = LoanReturn.objects.select_related("loan")
    serializer_class = LoanReturnSerializer
    write_serializer_class = LoanReturnSerializer
    create_service = create_loan_return
    http_method_names = ["get", "post", "head", "options"]
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("finance.view", "finance.manage")
    audit_entity = "loan_return"

    def get_queryset(self):
        queryset = filter_by_date_range(super().get_queryset(), self.request, "return_date")
        loan_id = self.request.query_params.get("loan")
        if loan_id:
            queryset = queryset.filter(loan_id=loan_id)
        return queryset
