import django_filters as filters

from refunds.models import RefundLedgerEntry
from refunds.state_machines import RefundSource, RefundStatus


class RefundLedgerFilter(filters.FilterSet):
    status = filters.ChoiceFilter(choices=RefundStatus.choices)
    source = filters.ChoiceFilter(choices=RefundSource.choices)
    order_id = filters.UUIDFilter(field_name="order_id")
    user_id = filters.NumberFilter(field_name="order__user_id")
    date_from = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    date_to = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")
    amount_min = filters.NumberFilter(field_name="amount_cents", lookup_expr="gte")
    amount_max = filters.NumberFilter(field_name="amount_cents", lookup_expr="lte")

    class Meta:
        model = RefundLedgerEntry
        fields = [
            "status",
            "source",
            "is_manual",
            "order_id",
            "user_id",
            "date_from",
            "date_to",
            "amount_min",
            "amount_max",
        ]
