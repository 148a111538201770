"""
hirepilot/urls.py

Root URL configuration.
"""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    # ── Admin (operator surface) ───────────────────────────────────────────────
    path("admin/", admin.site.urls),

    # ── Candidate portal (token-addressed, no login) ───────────────────────────
    path("portal/", include("portal.urls", namespace="portal")),

    # ── Webhooks (CSRF-exempt, shared-secret) ──────────────────────────────────
    path("webhooks/", include("webhooks.urls", namespace="webhooks")),
]
