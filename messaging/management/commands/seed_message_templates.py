"""
management/commands/seed_message_templates.py

Copies the built-in fallback message bodies into editable MessageTemplate
rows, one per MessageType × Channel combination that has a fallback. Safe
to run multiple times — uses get_or_create so existing custom templates are
never overwritten.

Usage:
    python manage.py seed_message_templates
    python manage.py seed_message_templates --force   # overwrite existing bodies
"""

from django.core.management.base import BaseCommand

from messaging.models import MessageTemplate
from messaging.services import _FALLBACK_BODIES, _FALLBACK_SUBJECTS


class Command(BaseCommand):
    help = "Seed MessageTemplate rows from the built-in fallback bodies. Safe to re-run."

    def add_arguments(self, parser):
        parser.add_argument(
            "--force",
            action="store_true",
            help="Overwrite the body/subject of existing templates.",
        )

    def handle(self, *args, **options):
        force = options["force"]
        created_count = 0
        updated_count = 0

        for (message_type, channel), body in _FALLBACK_BODIES.items():
            subject = _FALLBACK_SUBJECTS.get(message_type, "") if channel == MessageTemplate.Channel.EMAIL else ""
            obj, created = MessageTemplate.objects.get_or_create(
                message_type=message_type,
                channel=channel,
                defaults={"subject": subject, "body": body, "is_active": True},
            )
            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f"  Created: {obj}"))
            elif force:
                obj.subject = subject
                obj.body = body
                obj.save(update_fields=["subject", "body", "updated_at"])
                updated_count += 1
                self.stdout.write(self.style.WARNING(f"  Updated: {obj}"))
            else:
                self.stdout.write(f"  Skipped (exists): {obj}")

        self.stdout.write(
            self.style.SUCCESS(
                f"\nDone. Created: {created_count}, Updated: {updated_count}, "
                f"Skipped: {len(_FALLBACK_BODIES) - created_count - updated_count}"
            )
        )
