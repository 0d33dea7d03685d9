from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Page-number pagination for every list endpoint.

    `?limit=` is accepted as an alias of `?page_size=` since the browser
    client pages with `page` + `limit`; both are capped at `max_page_size`.
    """

    page_size_query_param = "page_size"
    max_page_size = 200

    def get_page_size(self, request):
        if "limit" in request.query_params and self.page_size_query_param not in request.query_params:
            self.page_size_query_param = "limit"
            try:
                return super().get_page_size(request)
            finally:
                self.page_size_query_param = "page_size"
        return super().get_page_size(request)
