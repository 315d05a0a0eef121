from django.contrib import admin

from .models import CalendarFeed, Event, Tag, TagRule


@admin.register(CalendarFeed)
class CalendarFeedAdmin(admin.ModelAdmin):
    list_display = ("name", "owner", "created_at")
    search_fields = ("name",)


@admin.register(Tag)
class TagAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "owner")
    search_fields = ("name", "slug")


@admin.register(TagRule)
class TagRuleAdmin(admin.ModelAdmin):
    list_display = ("tag", "owner", "keyword", "created_at")
    list_select_related = ("tag",)


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = (
        "title",
        "owner",
        "start_time",
        "location",
        "students_studio",
        "students_online",
        "billing_entity",
        "invoice",
        "manually_assigned",
    )
    list_filter = ("manually_assigned", "exclude_from_matching", "invoice_type")
    search_fields = ("title", "location")
    raw_id_fields = ("billing_entity", "invoice", "feed")
    ordering = ("-start_time",)
