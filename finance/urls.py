from django.urls import path
from rest_framework.routers import DefaultRouter

from finance.views import (
    CashTransactionViewSet,
    ExpenseHeadViewSet,
    ExpenseViewSet,
    FinancePaymentView,
    LoanReturnViewSet,
    LoanViewSet,
    OpeningBalanceView,
)

router = DefaultRouter()
router.register(r"finance/transactions", CashTransactionViewSet, basename="cash-transaction")
router.register(r"finance/expenses", ExpenseViewSet, basename="expense")
router.register(r"finance/expense-heads", ExpenseHeadViewSet, basename="expense-head")
router.register(r"finance/loans", LoanViewSet, basename="loan")
router.register(r"finance/loan-returns", LoanReturnViewSet, basename="loan-return")

urlpatterns = router.urls + [
    path("finance/payment/", FinancePaymentView.as_view(), name="finance-payment"),
    path("finance/opening-balance/", OpeningBalanceView.as_view(), name="opening-balance"),
]
