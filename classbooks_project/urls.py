from django.conf import settings
from django.contrib import admin
from django.urls import include, path


urlpatterns = [
    path("api/billing/", include("billing.urls")),
]

if getattr(settings, "ENABLE_DJANGO_ADMIN", True):
    urlpatterns.insert(0, path("admin/", admin.site.urls))
