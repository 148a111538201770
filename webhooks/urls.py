"""
webhooks/urls.py

URL patterns for inbound form webhooks.

  POST /webhooks/application-form/  — application form response
  POST /webhooks/test-form/         — test submission form response
"""

from django.urls import path

from webhooks import views

app_name = "webhooks"

urlpatterns = [
    path("application-form/", views.application_form_webhook, name="application_form"),
    path("test-form/", views.test_form_webhook, name="test_form"),
]
