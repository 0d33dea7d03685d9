from datetime import date
from decimal import Decimal

from django.core.cache import cache
from django.db.models import Count, F, Q, Sum, Value
from django.db.models.functions import Coalesce, TruncMonth
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.company import get_request_company
from common.permissions import RoleCapabilityPermission
from inventory.models import Category, Product
from sales.models import Customer, SalesInvoice, SalesInvoiceItem

ZERO = Decimal("0.00")


class BaseReportView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "reports.view"}
    cache_timeout = 30

    def _parse_limit(self, request, default=10, minimum=1, maximum=100):
        raw_limit = request.query_params.get("limit")
        if raw_limit is None:
            return default

        try:
            limit = int(raw_limit)
        except (TypeError, ValueError):
            raise ValidationError({"limit": f"Limit must be an integer between {minimum} and {maximum}."})

        if not minimum <= limit <= maximum:
            raise ValidationError({"limit": f"Limit must be between {minimum} and {maximum}."})
        return limit

    def _cached(self, request, key, callback):
        company = get_request_company(request)
        cache_key = f"reports:{company.code}:{key}:{request.get_full_path()}"
        payload = cache.get(cache_key)
        if payload is None:
            payload = callback(company)
            cache.set(cache_key, payload, self.cache_timeout)
        return payload


class DashboardMetricsView(BaseReportView):
    def get(self, request):
        limit = self._parse_limit(request)

        def run(company):
            invoices = SalesInvoice.objects.filter(company=company)
            items = SalesInvoiceItem.objects.filter(invoice__company=company)

            recent = [
                {
                    "id": str(invoice.id),
                    "inv_number": invoice.inv_number,
                    "inv_date": invoice.inv_date.isoformat(),
                    "customer_code": invoice.customer.code,
                    "total_amount": str(invoice.total_amount),
                    "balance_due": str(invoice.balance_due),
                    "status": invoice.status,
                }
                for invoice in invoices.select_related("customer").order_by("-inv_date", "-created_at")[:5]
            ]
            top_products = list(
                items.values(product_code=F("product__code"), product_name=F("product__name"))
                .annotate(total_revenue=Sum("line_total"), quantity=Sum("quantity"))
                .order_by("-total_revenue")[:limit]
            )
            by_category = list(
                Category.objects.filter(company=company)
                .annotate(
                    category_revenue=Coalesce(
                        Sum("product__sales_items__line_total", filter=Q(product__sales_items__invoice__company=company)),
                        Value(ZERO),
                    )
                )
                .values("code", "name", "category_revenue")
                .order_by("-category_revenue")
            )

            return {
                "total_revenue": str(invoices.filter(balance_due__lte=0).aggregate(total=Coalesce(Sum("total_amount"), Value(ZERO)))["total"]),
                "pending_receivables": str(invoices.filter(balance_due__gt=0).aggregate(total=Coalesce(Sum("balance_due"), Value(ZERO)))["total"]),
                "low_stock_count": Product.objects.filter(company=company, current_stock__lte=F("min_stock_level")).count(),
                "customer_count": Customer.objects.filter(company=company).count(),
                "invoice_count": invoices.aggregate(count=Count("id"))["count"],
                "recent_invoices": recent,
                "top_products": [
                    {**row, "total_revenue": str(row["total_revenue"]), "quantity": str(row["quantity"])} for row in top_products
                ],
                "sales_by_category": [
                    {
                        "category_code": row["code"],
                        "category_name": row["name"],
                        "category_revenue": str(row["category_revenue"]),
                    }
                    for row in by_category
                ],
            }

        return Response(self._cached(request, "dashboard-metrics", run))


def _month_starts(today, count):
    year, month = today.year, today.month
    starts = []
    for _ in range(count):
        starts.append(date(year, month, 1))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(starts))


class SalesTrendsView(BaseReportView):
    """Revenue from fully paid invoices per calendar month, oldest first."""

    months = 6

    def get(self, request):
        def run(company):
            starts = _month_starts(timezone.localdate(), self.months)
            totals = {
                row["month"]: row["sales"]
                for row in SalesInvoice.objects.filter(company=company, balance_due__lte=0, inv_date__gte=starts[0])
                .annotate(month=TruncMonth("inv_date"))
                .values("month")
                .annotate(sales=Sum("total_amount"))
            }
            return [
                {
                    "name": start.strftime("%b"),
                    "month": start.strftime("%Y-%m"),
                    "sales": str(totals.get(start, ZERO)),
                }
                for start in starts
            ]

        return Response(self._cached(request, "sales-trends", run))
