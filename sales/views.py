from django.db.models import F, Q
from rest_framework import mixins, viewsets
from rest_framework.permissions import IsAuthenticated

from common.company import CompanyScopedMutationMixin, LedgerDocumentMixin
from common.permissions import RoleCapabilityPermission, crud_action_map
from finance.ledger import next_document_number
from inventory.views import ProtectedDestroyMixin, filter_by_date_range
from sales.models import Customer, DiscountVoucher, PaymentReceipt, SalesInvoice, SalesReturn
from sales.serializers import (
    CustomerSerializer,
    DiscountVoucherSerializer,
    PaymentReceiptSerializer,
    PaymentReceiptWriteSerializer,
    SalesInvoiceSerializer,
    SalesInvoiceWriteSerializer,
    SalesReturnSerializer,
    SalesReturnWriteSerializer,
)
from sales.services import (
    create_payment_receipt,
    create_sales_invoice,
    create_sales_return,
    update_payment_receipt,
    update_sales_invoice,
    update_sales_return,
)


class CustomerViewSet(ProtectedDestroyMixin, CompanyScopedMutationMixin, viewsets.ModelViewSet):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("sales.view", "sales.manage")
    audit_entity = "customer"

    def get_queryset(self):
        queryset = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(Q(code__icontains=search) | Q(name__icontains=search) | Q(phone__icontains=search))
        return queryset


class SalesInvoiceViewSet(
    LedgerDocumentMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = SalesInvoice.objects.select_related("customer").prefetch_related("items__product")
    serializer_class = SalesInvoiceSerializer
    write_serializer_class = SalesInvoiceWriteSerializer
    create_service = create_sales_invoice
    update_service = update_sales_invoice
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("sales.view", "sales.manage")
    audit_entity = "sales_invoice"

    def get_queryset(self):
        queryset = filter_by_date_range(super().get_queryset(), self.request, "inv_date")
        customer = self.request.query_params.get("customer")
        if customer:
            queryset = queryset.filter(customer__code=customer)

        status_filter = (self.request.query_params.get("status") or "").upper()
        if status_filter == SalesInvoice.Status.PAID:
            queryset = queryset.filter(balance_due__lte=0)
        elif status_filter == SalesInvoice.Status.PARTIAL:
            queryset = queryset.filter(balance_due__gt=0, balance_due__lt=F("total_amount"))
        elif status_filter == SalesInvoice.Status.PENDING:
            queryset = queryset.filter(balance_due__gt=0, balance_due__gte=F("total_amount"))
        return queryset


class SalesReturnViewSet(
    LedgerDocumentMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = SalesReturn.objects.select_related("invoice", "customer").prefetch_related("items__product")
    serializer_class = SalesReturnSerializer
    write_serializer_class = SalesReturnWriteSerializer
    create_service = create_sales_return
    update_service = update_sales_return
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("sales.view", "sales.manage")
    audit_entity = "sales_return"

    def get_queryset(self):
        queryset = filter_by_date_range(super().get_queryset(), self.request, "return_date")
        invoice_id = self.request.query_params.get("invoice")
        if invoice_id:
            queryset = queryset.filter(invoice_id=invoice_id)
        return queryset


class PaymentReceiptViewSet(
    LedgerDocumentMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = PaymentReceipt.objects.select_related("customer")
    serializer_class = PaymentReceiptSerializer
    write_serializer_class = PaymentReceiptWriteSerializer
    create_service = create_payment_receipt
    update_service = update_payment_receipt
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("finance.view", "finance.manage")
    audit_entity = "payment_receipt"

    def get_queryset(self):
        queryset = filter_by_date_range(super().get_queryset(), self.request, "receipt_date")
        customer = self.request.query_params.get("customer")
        if customer:
            queryset = queryset.filter(customer__code=customer)
        return queryset


class DiscountVoucherViewSet(
    CompanyScopedMutationMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = DiscountVoucher.objects.select_related("customer")
    serializer_class = DiscountVoucherSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("sales.view", "sales.manage")
    audit_entity = "discount_voucher"

    def get_queryset(self):
        queryset = filter_by_date_range(super().get_queryset(), self.request, "voucher_date")
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(
                Q(voucher_number__icontains=search) | Q(customer__code__icontains=search) | Q(customer__name__icontains=search)
            )
        status_filter = self.request.query_params.get("status")
        if status_filter:
            queryset = queryset.filter(status=status_filter.upper())
        return queryset

    def perform_create(self, serializer):
        company = self.get_company()
        voucher_date = serializer.validated_data["voucher_date"]
        instance = serializer.save(
            company=company,
            voucher_number=next_document_number(company, "DV", voucher_date),
            created_by=self.request.user,
            updated_by=self.request.user,
        )
        self._audit(action="create", instance=instance, after_snapshot=self.get_serializer(instance).data)
