from django.contrib import admin

from .models import BillingEntity, Invoice, InvoiceSettings


@admin.register(BillingEntity)
class BillingEntityAdmin(admin.ModelAdmin):
    list_display = ("name", "kind", "recipient_type", "owner", "match_priority", "currency", "created_at")
    list_filter = ("kind", "recipient_type", "currency")
    search_fields = ("name", "recipient_name", "recipient_email")
    ordering = ("owner", "match_priority", "created_at")


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "billing_entity", "owner", "display_total", "status", "created_at")
    list_filter = ("status", "currency")
    search_fields = ("invoice_number", "billing_entity__name")
    readonly_fields = ("amount_total", "created_at", "updated_at")
    ordering = ("-created_at",)

    @admin.display(description="Total")
    def display_total(self, obj):
        return f"{obj.currency} {obj.amount_total}"


@admin.register(InvoiceSettings)
class InvoiceSettingsAdmin(admin.ModelAdmin):
    list_display = ("owner", "invoice_prefix", "currency", "updated_at")
