"""
Management command: dispatch_status

Re-runs the status handler for one or more candidates without changing
their status (e.g. to resend a test link).

Usage:
    python manage.py dispatch_status 12 15
    python manage.py dispatch_status --status TEST_SENT
"""

from django.core.management.base import BaseCommand, CommandError

from candidates.models import Candidate
from pipeline.engine import get_engine


class Command(BaseCommand):
    help = "Re-run the workflow handler for the given candidates' current status."

    def add_arguments(self, parser):
        parser.add_argument("candidate_ids", nargs="*", type=int, metavar="ID")
        parser.add_argument(
            "--status",
            choices=Candidate.Status.values,
            help="Dispatch every candidate currently in this status.",
        )

    def handle(self, *args, **options):
        ids = options["candidate_ids"]
        status = options["status"]
        if not ids and not status:
            raise CommandError("Pass candidate ids or --status.")

        candidates = Candidate.objects.order_by("pk")
        if ids:
            candidates = candidates.filter(pk__in=ids)
            missing = set(ids) - set(candidates.values_list("pk", flat=True))
            if missing:
                raise CommandError(f"Unknown candidate id(s): {sorted(missing)}")
        if status:
            candidates = candidates.filter(status=status)

        engine = get_engine()
        ok = failed = 0
        for candidate in candidates:
            if engine.dispatch(candidate):
                ok += 1
                self.stdout.write(f"  Dispatched: {candidate}")
            else:
                failed += 1
                self.stdout.write(self.style.WARNING(f"  No handler ran: {candidate}"))

        self.stdout.write(self.style.SUCCESS(f"\nDone. Dispatched: {ok}, Not run: {failed}"))
