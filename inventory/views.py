import logging

from django.db.models import ProtectedError, Q
from django.utils.dateparse import parse_date
from rest_framework import mixins, viewsets
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated

from common.company import CompanyScopedMutationMixin, LedgerDocumentMixin
from common.exceptions import DependentRecordsExist
from common.permissions import RoleCapabilityPermission, crud_action_map
from inventory.models import Category, Product, PurchaseInvoice, Supplier, SupplierPayment, TaxRate
from inventory.serializers import (
    CategorySerializer,
    ProductSerializer,
    PurchaseInvoiceSerializer,
    PurchaseInvoiceWriteSerializer,
    SupplierPaymentSerializer,
    SupplierPaymentWriteSerializer,
    SupplierSerializer,
    TaxRateSerializer,
)
from inventory.services import (
    create_purchase_invoice,
    create_supplier_payment,
    update_purchase_invoice,
    update_supplier_payment,
)

stock_logger = logging.getLogger("inventory.stock")


class ProtectedDestroyMixin:
    """Turn a PROTECT foreign-key failure into a 409 instead of a server error."""

    def perform_destroy(self, instance):
        try:
            super().perform_destroy(instance)
        except ProtectedError as exc:
            raise DependentRecordsExist(
                f"{instance._meta.verbose_name.capitalize()} {getattr(instance, 'code', instance.pk)} is still referenced.",
                errors={"references": len(exc.protected_objects)},
            )


class CategoryViewSet(ProtectedDestroyMixin, CompanyScopedMutationMixin, viewsets.ModelViewSet):
    queryset = Category.objects.all()
    serializer_class = CategorySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("inventory.view", "inventory.manage")
    audit_entity = "category"


class TaxRateViewSet(CompanyScopedMutationMixin, viewsets.ModelViewSet):
    queryset = TaxRate.objects.all()
    serializer_class = TaxRateSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("finance.view", "finance.manage")
    audit_entity = "tax_rate"
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


class ProductViewSet(ProtectedDestroyMixin, CompanyScopedMutationMixin, viewsets.ModelViewSet):
    queryset = Product.objects.select_related("category")
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("inventory.view", "inventory.manage")
    audit_entity = "product"

    def get_queryset(self):
        queryset = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(Q(code__icontains=search) | Q(name__icontains=search))
        category = self.request.query_params.get("category")
        if category:
            queryset = queryset.filter(category__code=category)
        return queryset

    def perform_update(self, serializer):
        super().perform_update(serializer)
        product = serializer.instance
        if product.min_stock_level > 0 and product.is_low_stock:
            stock_logger.warning(
                "low_stock product=%s stock=%s minimum=%s",
                product.code,
                product.current_stock,
                product.min_stock_level,
                extra={"company_code": self.get_company().code, "product_code": product.code},
            )


class SupplierViewSet(ProtectedDestroyMixin, CompanyScopedMutationMixin, viewsets.ModelViewSet):
    queryset = Supplier.objects.all()
    serializer_class = SupplierSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("inventory.view", "inventory.manage")
    audit_entity = "supplier"

    def get_queryset(self):
        queryset = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(Q(code__icontains=search) | Q(name__icontains=search))
        return queryset


def _query_date(request, key):
    try:
        return parse_date(request.query_params.get(key, ""))
    except ValueError:
        raise ValidationError({key: "Enter a valid calendar date (YYYY-MM-DD)."})


def filter_by_date_range(queryset, request, field):
    date_from = _query_date(request, "date_from")
    date_to = _query_date(request, "date_to")
    if date_from:
        queryset = queryset.filter(**{f"{field}__gte": date_from})
    if date_to:
        queryset = queryset.filter(**{f"{field}__lte": date_to})
    return queryset


class PurchaseInvoiceViewSet(
    LedgerDocumentMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = PurchaseInvoice.objects.select_related("supplier").prefetch_related("items__product")
    serializer_class = PurchaseInvoiceSerializer
    write_serializer_class = PurchaseInvoiceWriteSerializer
    create_service = create_purchase_invoice
    update_service = update_purchase_invoice
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("inventory.view", "inventory.manage")
    audit_entity = "purchase_invoice"

    def get_queryset(self):
        queryset = filter_by_date_range(super().get_queryset(), self.request, "purchase_date")
        supplier = self.request.query_params.get("supplier")
        if supplier:
            queryset = queryset.filter(supplier__code=supplier)
        status_filter = self.request.query_params.get("status")
        if status_filter:
            queryset = queryset.filter(status=status_filter.upper())
        return queryset


class SupplierPaymentViewSet(
    LedgerDocumentMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = SupplierPayment.objects.select_related("supplier")
    serializer_class = SupplierPaymentSerializer
    write_serializer_class = SupplierPaymentWriteSerializer
    create_service = create_supplier_payment
    update_service = update_supplier_payment
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("finance.view", "finance.manage")
    audit_entity = "supplier_payment"

    def get_queryset(self):
        queryset = filter_by_date_range(super().get_queryset(), self.request, "payment_date")
        supplier = self.request.query_params.get("supplier")
        if supplier:
            queryset = queryset.filter(supplier__code=supplier)
        return queryset
