from __future__ import annotations

from rest_framework import serializers

from billing.exceptions import InvalidRateConfig, RateConfigValidationError
from billing.models import BillingEntity, Invoice, normalize_location_patterns
from billing.rate_config import describe_rate_config, dump_rate_config, validate_rate_config
from scheduling.models import Event


def _rate_config_field(value):
    if value in (None, {}):
        return None
    try:
        return dump_rate_config(validate_rate_config(value))
    except RateConfigValidationError as exc:
        raise serializers.ValidationError(exc.errors)


class BillingEntitySerializer(serializers.ModelSerializer):
    rate_summary = serializers.SerializerMethodField()

    class Meta:
        model = BillingEntity
        fields = [
            "id",
            "kind",
            "recipient_type",
            "name",
            "location_match",
            "match_priority",
            "rate_config",
            "rate_summary",
            "currency",
            "recipient_name",
            "recipient_email",
            "recipient_phone",
            "address",
            "recipient_user",
            "iban",
            "bic",
            "tax_id",
            "vat_id",
            "notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "recipient_user", "created_at", "updated_at"]

    def get_rate_summary(self, obj):
        if not obj.rate_config:
            return []
        try:
            return describe_rate_config(obj.get_rate_config(), currency=obj.currency)
        except InvalidRateConfig:
            return []

    def validate_location_match(self, value):
        if value is None:
            return []
        if not isinstance(value, (list, str)):
            raise serializers.ValidationError("location_match must be a list of strings.")
        return normalize_location_patterns(value)

    def validate_rate_config(self, value):
        return _rate_config_field(value)


class EventSerializer(serializers.ModelSerializer):
    billing_entity_name = serializers.SerializerMethodField()

    class Meta:
        model = Event
        fields = [
            "id",
            "feed",
            "title",
            "location",
            "start_time",
            "end_time",
            "students_studio",
            "students_online",
            "tags",
            "billing_entity",
            "billing_entity_name",
            "invoice",
            "manually_assigned",
            "exclude_from_matching",
            "invoice_type",
            "substitute_notes",
        ]

    def get_billing_entity_name(self, obj):
        entity = obj.billing_entity
        return entity.display_name if entity else None


class InvoiceSerializer(serializers.ModelSerializer):
    billing_entity_name = serializers.CharField(source="billing_entity.display_name", read_only=True)
    event_ids = serializers.SerializerMethodField()

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "billing_entity",
            "billing_entity_name",
            "period_start",
            "period_end",
            "notes",
            "amount_total",
            "currency",
            "status",
            "sent_at",
            "paid_at",
            "pdf_url",
            "event_ids",
            "created_at",
            "updated_at",
        ]

    def get_event_ids(self, obj):
        return list(obj.events.order_by("start_time", "id").values_list("id", flat=True))


class InvoiceCreateSerializer(serializers.Serializer):
    billing_entity_id = serializers.IntegerField()
    event_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    period_start = serializers.DateField(required=False, allow_null=True, default=None)
    period_end = serializers.DateField(required=False, allow_null=True, default=None)

    def validate(self, attrs):
        start, end = attrs.get("period_start"), attrs.get("period_end")
        if start and end and end < start:
            raise serializers.ValidationError({"period_end": "period_end must not be before period_start."})
        return attrs


class InvoiceUpdateSerializer(serializers.Serializer):
    event_ids = serializers.ListField(child=serializers.IntegerField(), required=False, allow_empty=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    period_start = serializers.DateField(required=False, allow_null=True)
    period_end = serializers.DateField(required=False, allow_null=True)


class InvoiceStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Invoice.Status.choices)
    at = serializers.DateTimeField(required=False, allow_null=True, default=None)


class PayoutPreviewSerializer(serializers.Serializer):
    rate_config = serializers.JSONField()
    students_studio = serializers.IntegerField(min_value=0, default=0)
    students_online = serializers.IntegerField(min_value=0, default=0)

    def validate_rate_config(self, value):
        try:
            return validate_rate_config(value)
        except RateConfigValidationError as exc:
            raise serializers.ValidationError(exc.errors)


class RematchRequestSerializer(serializers.Serializer):
    feed_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    event_ids = serializers.ListField(child=serializers.IntegerField(), required=False, allow_null=True, default=None)
    rematch_tags = serializers.BooleanField(required=False, default=True)
    rematch_entities = serializers.BooleanField(required=False, default=True)

    def validate(self, attrs):
        if attrs.get("feed_id") is not None and attrs.get("event_ids") is not None:
            raise serializers.ValidationError("Pass either feed_id or event_ids, not both.")
        return attrs


class ManualAssignSerializer(serializers.Serializer):
    billing_entity_id = serializers.IntegerField(allow_null=True)


class RecipientSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=["internal", "external"])
    user_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    name = serializers.CharField(required=False, allow_blank=True, default="")
    email = serializers.EmailField(required=False, allow_blank=True, default="")
    phone = serializers.CharField(required=False, allow_blank=True, default="")
    address = serializers.CharField(required=False, allow_blank=True, default="")
    tax_id = serializers.CharField(required=False, allow_blank=True, default="")
    vat_id = serializers.CharField(required=False, allow_blank=True, default="")
    iban = serializers.CharField(required=False, allow_blank=True, default="")
    bic = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if attrs["type"] == "internal" and not attrs.get("user_id"):
            raise serializers.ValidationError({"user_id": "Required for internal recipients."})
        if attrs["type"] == "external":
            if not attrs.get("name"):
                raise serializers.ValidationError({"name": "Required for external recipients."})
            if not attrs.get("email"):
                raise serializers.ValidationError({"email": "Required for external recipients."})
        return attrs


class SubstituteSerializer(serializers.Serializer):
    billing_entity_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    recipient = RecipientSerializer(required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if not attrs.get("billing_entity_id") and not attrs.get("recipient"):
            raise serializers.ValidationError("Pass billing_entity_id or recipient.")
        return attrs


class ExclusionSerializer(serializers.Serializer):
    excluded = serializers.BooleanField(required=False, allow_null=True, default=None)


class RevertSerializer(serializers.Serializer):
    event_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)
