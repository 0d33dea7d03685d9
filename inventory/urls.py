from rest_framework.routers import DefaultRouter

from inventory.views import (
    CategoryViewSet,
    ProductViewSet,
    PurchaseInvoiceViewSet,
    SupplierPaymentViewSet,
    SupplierViewSet,
    TaxRateViewSet,
)

router = DefaultRouter()
router.register(r"categories", CategoryViewSet, basename="category")
router.register(r"products", ProductViewSet, basename="product")
router.register(r"suppliers", SupplierViewSet, basename="supplier")
router.register(r"purchase-invoices", PurchaseInvoiceViewSet, basename="purchase-invoice")
router.register(r"supplier-payments", SupplierPaymentViewSet, basename="supplier-payment")
router.register(r"finance/tax-rates", TaxRateViewSet, basename="tax-rate")

urlpatterns = router.urls
