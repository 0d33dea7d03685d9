from django.urls import path
from rest_framework.routers import DefaultRouter

from sales.reports import DashboardMetricsView, SalesTrendsView
from sales.views import (
    CustomerViewSet,
    DiscountVoucherViewSet,
    PaymentReceiptViewSet,
    SalesInvoiceViewSet,
    SalesReturnViewSet,
)

router = DefaultRouter()
router.register(r"customers", CustomerViewSet, basename="customer")
router.register(r"invoices", SalesInvoiceViewSet, basename="invoice")
router.register(r"sales-returns", SalesReturnViewSet, basename="sales-return")
router.register(r"payment-receipts", PaymentReceiptViewSet, basename="payment-receipt")
router.register(r"discount-vouchers", DiscountVoucherViewSet, basename="discount-voucher")

urlpatterns = router.urls + [
    path("analytics/dashboard-metrics/", DashboardMetricsView.as_view(), name="dashboard-metrics"),
    path("analytics/sales-trends/", SalesTrendsView.as_view(), name="sales-trends"),
]
