from __future__ import annotations

import logging

from django.db.models import ProtectedError
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.exceptions import (
    BillingError,
    EntityMismatch,
    EventAlreadyInvoiced,
    InvalidRateConfig,
    InvoiceLocked,
    RateConfigValidationError,
)
from billing.models import BillingEntity, Invoice
from billing.serializers import (
    BillingEntitySerializer,
    EventSerializer,
    ExclusionSerializer,
    InvoiceCreateSerializer,
    InvoiceSerializer,
    InvoiceStatusSerializer,
    InvoiceUpdateSerializer,
    ManualAssignSerializer,
    PayoutPreviewSerializer,
    RematchRequestSerializer,
    RevertSerializer,
    SubstituteSerializer,
)
from billing.services.invoicing import (
    create_invoice,
    delete_invoice,
    get_owner_invoices,
    get_uninvoiced_events,
    update_invoice,
    update_invoice_status,
)
from billing.services.matching import get_unmatched_events, match_events
from billing.services.payouts import preview_payout
from billing.services.rematch import RematchScope, rematch_events
from billing.services.substitutes import (
    TeacherRecipient,
    assign_entity_manually,
    assign_substitute,
    get_excluded_events,
    get_or_create_teacher_entity,
    revert_to_studio_invoicing,
    set_event_exclusion,
    toggle_event_exclusion,
)
from scheduling.models import Event

logger = logging.getLogger(__name__)


def _not_found(message: str):
    return Response({"detail": message}, status=status.HTTP_404_NOT_FOUND)


def _error_response(exc: BillingError):
    """Translate a domain error into an API response."""
    body = {"detail": str(exc)}
    if isinstance(exc, RateConfigValidationError):
        body["errors"] = exc.errors
        return Response(body, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, (EventAlreadyInvoiced, InvoiceLocked)):
        if getattr(exc, "event_ids", None):
            body["event_ids"] = exc.event_ids
        return Response(body, status=status.HTTP_409_CONFLICT)
    if isinstance(exc, EntityMismatch) and exc.event_ids:
        body["event_ids"] = exc.event_ids
    if isinstance(exc, InvalidRateConfig):
        logger.warning("Stored rate config rejected: %s", exc)
    return Response(body, status=status.HTTP_400_BAD_REQUEST)


def _owned_event(request, pk):
    return Event.objects.filter(owner=request.user, pk=pk).first()


class BillingEntitiesView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        qs = BillingEntity.objects.filter(owner=request.user)
        kind = request.query_params.get("kind")
        if kind:
            qs = qs.filter(kind=kind)
        return Response({"results": BillingEntitySerializer(qs, many=True).data})

    def post(self, request):
        serializer = BillingEntitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        entity = serializer.save(owner=request.user)
        return Response(BillingEntitySerializer(entity).data, status=status.HTTP_201_CREATED)


class BillingEntityDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def _get(self, request, pk):
        return BillingEntity.objects.filter(owner=request.user, pk=pk).first()

    def get(self, request, pk: int):
        entity = self._get(request, pk)
        if not entity:
            return _not_found("Billing entity not found.")
        return Response(BillingEntitySerializer(entity).data)

    def patch(self, request, pk: int):
        entity = self._get(request, pk)
        if not entity:
            return _not_found("Billing entity not found.")
        serializer = BillingEntitySerializer(entity, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        entity = serializer.save()
        return Response(BillingEntitySerializer(entity).data)

    def delete(self, request, pk: int):
        entity = self._get(request, pk)
        if not entity:
            return _not_found("Billing entity not found.")
        try:
            entity.delete()
        except ProtectedError:
            return Response(
                {"detail": "Billing entity has invoices and cannot be deleted."},
                status=status.HTTP_409_CONFLICT,
            )
        return Response(status=status.HTTP_204_NO_CONTENT)


class PayoutPreviewView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = PayoutPreviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        breakdown = preview_payout(
            data["rate_config"],
            students_studio=data["students_studio"],
            students_online=data["students_online"],
        )
        return Response(breakdown.as_dict())


class MatchEventsView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        result = match_events(request.user)
        return Response(result.as_dict())


class RematchEventsView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = RematchRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if data.get("feed_id") is not None:
            scope = RematchScope.feed(data["feed_id"])
        elif data.get("event_ids") is not None:
            scope = RematchScope.events(data["event_ids"])
        else:
            scope = RematchScope.all()

        result = rematch_events(
            request.user,
            scope,
            rematch_tags=data["rematch_tags"],
            rematch_entities=data["rematch_entities"],
        )
        return Response(result.as_dict())


class UninvoicedEventsView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        qs = get_uninvoiced_events(request.user)
        entity_id = request.query_params.get("billing_entity_id")
        if entity_id:
            try:
                qs = qs.filter(billing_entity_id=int(entity_id))
            except ValueError:
                return Response({"detail": "Invalid billing_entity_id."}, status=status.HTTP_400_BAD_REQUEST)
        return Response({"results": EventSerializer(qs, many=True).data})


class UnmatchedEventsView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        qs = get_unmatched_events(request.user)
        return Response({"results": EventSerializer(qs, many=True).data})


class ExcludedEventsView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        qs = get_excluded_events(request.user)
        return Response({"results": EventSerializer(qs, many=True).data})


class EventAssignView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, pk: int):
        event = _owned_event(request, pk)
        if not event:
            return _not_found("Event not found.")
        serializer = ManualAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        entity = None
        entity_id = serializer.validated_data["billing_entity_id"]
        if entity_id is not None:
            entity = BillingEntity.objects.filter(owner=request.user, pk=entity_id).first()
            if not entity:
                return _not_found("Billing entity not found.")
        try:
            event = assign_entity_manually(event, entity)
        except BillingError as exc:
            return _error_response(exc)
        return Response(EventSerializer(event).data)


class EventSubstituteView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, pk: int):
        event = _owned_event(request, pk)
        if not event:
            return _not_found("Event not found.")
        serializer = SubstituteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            if data.get("billing_entity_id"):
                entity = BillingEntity.objects.filter(owner=request.user, pk=data["billing_entity_id"]).first()
                if not entity:
                    return _not_found("Billing entity not found.")
            else:
                entity = get_or_create_teacher_entity(request.user, TeacherRecipient(**data["recipient"]))
            event = assign_substitute(event, entity, notes=data.get("notes", ""))
        except BillingError as exc:
            return _error_response(exc)
        return Response(EventSerializer(event).data)


class EventExclusionView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, pk: int):
        event = _owned_event(request, pk)
        if not event:
            return _not_found("Event not found.")
        serializer = ExclusionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        excluded = serializer.validated_data["excluded"]
        if excluded is None:
            excluded = toggle_event_exclusion(event)
        else:
            excluded = set_event_exclusion(event, excluded).exclude_from_matching
        return Response({"id": event.pk, "exclude_from_matching": excluded})


class RevertToStudioView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = RevertSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        reverted, result = revert_to_studio_invoicing(request.user, serializer.validated_data["event_ids"])
        return Response({"reverted_count": reverted, "match": result.as_dict()})


class InvoicesView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        qs = get_owner_invoices(request.user)
        status_filter = request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter)
        return Response({"results": InvoiceSerializer(qs, many=True).data})

    def post(self, request):
        serializer = InvoiceCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if not BillingEntity.objects.filter(owner=request.user, pk=data["billing_entity_id"]).exists():
            return _not_found("Billing entity not found.")
        try:
            invoice = create_invoice(
                request.user,
                data["billing_entity_id"],
                data["event_ids"],
                notes=data.get("notes", ""),
                period_start=data.get("period_start"),
                period_end=data.get("period_end"),
            )
        except BillingError as exc:
            return _error_response(exc)
        return Response(InvoiceSerializer(invoice).data, status=status.HTTP_201_CREATED)


class InvoiceDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def _exists(self, request, pk) -> bool:
        return Invoice.objects.filter(owner=request.user, pk=pk).exists()

    def get(self, request, pk: int):
        invoice = Invoice.objects.filter(owner=request.user, pk=pk).select_related("billing_entity").first()
        if not invoice:
            return _not_found("Invoice not found.")
        return Response(InvoiceSerializer(invoice).data)

    def patch(self, request, pk: int):
        if not self._exists(request, pk):
            return _not_found("Invoice not found.")
        serializer = InvoiceUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            invoice = update_invoice(
                request.user,
                pk,
                event_ids=data.get("event_ids"),
                notes=data.get("notes"),
                period_start=data.get("period_start"),
                period_end=data.get("period_end"),
            )
        except BillingError as exc:
            return _error_response(exc)
        return Response(InvoiceSerializer(invoice).data)

    def delete(self, request, pk: int):
        if not self._exists(request, pk):
            return _not_found("Invoice not found.")
        unlinked = delete_invoice(request.user, pk)
        return Response({"deleted": True, "unlinked_events": unlinked})


class InvoiceStatusView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, pk: int):
        if not Invoice.objects.filter(owner=request.user, pk=pk).exists():
            return _not_found("Invoice not found.")
        serializer = InvoiceStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = update_invoice_status(
            request.user,
            pk,
            serializer.validated_data["status"],
            at=serializer.validated_data.get("at"),
        )
        return Response(InvoiceSerializer(invoice).data)
