"""
Pagination for the refund ledger listing.

Query parameters:
    page: 1-based page number
    per_page: Rows per page (default 20, maximum 100)
"""

from rest_framework.pagination import PageNumberPagination


class RefundLedgerPagination(PageNumberPagination):
    page_size = 20
    max_page_size = 100
    page_size_query_param = "per_page"
