from django.urls import path

from billing.api_v1 import (
    BillingEntitiesView,
    BillingEntityDetailView,
    EventAssignView,
    EventExclusionView,
    EventSubstituteView,
    ExcludedEventsView,
    InvoiceDetailView,
    InvoicesView,
    InvoiceStatusView,
    MatchEventsView,
    PayoutPreviewView,
    RematchEventsView,
    RevertToStudioView,
    UninvoicedEventsView,
    UnmatchedEventsView,
)


app_name = "billing"

urlpatterns = [
    path("entities/", BillingEntitiesView.as_view(), name="entities"),
    path("entities/<int:pk>/", BillingEntityDetailView.as_view(), name="entity_detail"),
    path("payout-preview/", PayoutPreviewView.as_view(), name="payout_preview"),
    path("match/", MatchEventsView.as_view(), name="match"),
    path("rematch/", RematchEventsView.as_view(), name="rematch"),
    path("events/uninvoiced/", UninvoicedEventsView.as_view(), name="events_uninvoiced"),
    path("events/unmatched/", UnmatchedEventsView.as_view(), name="events_unmatched"),
    path("events/excluded/", ExcludedEventsView.as_view(), name="events_excluded"),
    path("events/revert/", RevertToStudioView.as_view(), name="events_revert"),
    path("events/<int:pk>/assign/", EventAssignView.as_view(), name="event_assign"),
    path("events/<int:pk>/substitute/", EventSubstituteView.as_view(), name="event_substitute"),
    path("events/<int:pk>/exclusion/", EventExclusionView.as_view(), name="event_exclusion"),
    path("invoices/", InvoicesView.as_view(), name="invoices"),
    path("invoices/<int:pk>/", InvoiceDetailView.as_view(), name="invoice_detail"),
    path("invoices/<int:pk>/status/", InvoiceStatusView.as_view(), name="invoice_status"),
]
