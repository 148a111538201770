"""
portal/urls.py

  GET/POST /portal/  — token-addressed candidate self-service
"""

from django.urls import path

from portal import views

app_name = "portal"

urlpatterns = [
    path("", views.portal, name="portal"),
]
