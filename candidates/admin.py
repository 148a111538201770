"""
candidates/admin.py

Admin is the operator surface of the pipeline: editing a candidate's status
here is what moves them through the workflow.
"""

import logging

from django.contrib import admin, messages

from candidates.models import Candidate, TimelineEvent
from pipeline.models import StatusChange
from pipeline.transitions import ADMIN_CHANGE_NOTE, InvalidTransition, transition_status

logger = logging.getLogger(__name__)


class StatusChangeInline(admin.TabularInline):
    model = StatusChange
    extra = 0
    can_delete = False
    fields = ("changed_at", "from_status", "to_status", "changed_by", "is_irregular", "note")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Candidate)
class CandidateAdmin(admin.ModelAdmin):
    list_display = ("name", "email", "role", "department", "status", "portfolio_score", "updated_at")
    list_filter = ("status", "department", "source")
    search_fields = ("name", "email", "phone", "role")
    readonly_fields = ("log", "portal_token", "test_sent_at", "test_submitted_at", "created_at", "updated_at")
    inlines = [StatusChangeInline]
    actions = ["rerun_status_handler"]

    def save_model(self, request, obj, form, change):
        """
        Status edits go through transition_status so they are audited and
        trigger the handler for the new status.
        """
        if not change:
            super().save_model(request, obj, form, change)
            from pipeline.engine import get_engine
            get_engine().dispatch(obj)
            return

        new_status = obj.status
        old_status = Candidate.objects.filter(pk=obj.pk).values_list("status", flat=True).first()
        obj.status = old_status
        super().save_model(request, obj, form, change)

        if new_status == old_status:
            return
        try:
            transition_status(obj, new_status, changed_by=request.user, note=ADMIN_CHANGE_NOTE)
        except InvalidTransition as exc:
            self.message_user(request, str(exc), level=messages.ERROR)

    @admin.action(description="Re-run status handler")
    def rerun_status_handler(self, request, queryset):
        from pipeline.engine import get_engine

        engine = get_engine()
        succeeded = sum(1 for candidate in queryset if engine.dispatch(candidate))
        self.message_user(request, f"Handler ran for {succeeded} of {queryset.count()} candidate(s).")


@admin.register(TimelineEvent)
class TimelineEventAdmin(admin.ModelAdmin):
    list_display = ("created_at", "email", "event_type", "candidate")
    list_filter = ("event_type",)
    search_fields = ("email",)
    readonly_fields = ("candidate", "email", "event_type", "payload", "created_at")

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
