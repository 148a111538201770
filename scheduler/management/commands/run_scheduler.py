"""
scheduler/management/commands/run_scheduler.py

Django management command that starts the APScheduler background scheduler
with the HirePilot background cycle and the daily summary.

Usage:
    python manage.py run_scheduler
    python manage.py run_scheduler --once     # run one cycle and exit

The command blocks until interrupted (Ctrl+C / SIGTERM).  In production,
run it as a long-lived process alongside the web server, e.g.:

    web:       gunicorn hirepilot.wsgi --bind 0.0.0.0:8010
    scheduler: python manage.py run_scheduler

Jobs are persisted in the database via DjangoJobStore, which means:
  - Job execution history is available in Django admin.
  - Missed runs (misfire_grace_time) are tracked.
  - Restarting the process picks up existing job definitions automatically.
"""

import time
import logging

from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from django.conf import settings
from django.core.management.base import BaseCommand
from django_apscheduler.jobstores import DjangoJobStore

from scheduler.jobs import run_background_cycle, send_daily_summary

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = (
        "Start the APScheduler background scheduler. "
        "Runs the pipeline background cycle and the daily summary. "
        "Blocks until interrupted."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--once",
            action="store_true",
            help="Run a single background cycle in the foreground and exit.",
        )

    def handle(self, *args, **options):
        if options["once"]:
            results = run_background_cycle()
            self.stdout.write(self.style.SUCCESS(f"Cycle complete: {results}"))
            return

        tz = ZoneInfo(settings.APSCHEDULER_TIMEZONE)

        scheduler = BackgroundScheduler(timezone=tz)
        scheduler.add_jobstore(DjangoJobStore(), "default")

        # ── Job registrations ──────────────────────────────────────────────────
        # replace_existing=True: update the definition on each restart
        # max_instances=1: one cycle at a time
        # coalesce=True: if multiple runs were missed, execute once
        # misfire_grace_time: seconds after which a missed run is discarded

        scheduler.add_job(
            run_background_cycle,
            trigger=IntervalTrigger(minutes=settings.BACKGROUND_CYCLE_MINUTES, timezone=tz),
            id="run_background_cycle",
            name="Pipeline Background Cycle",
            jobstore="default",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=120,
        )

        scheduler.add_job(
            send_daily_summary,
            trigger=CronTrigger(hour=settings.DAILY_SUMMARY_HOUR, minute=0, timezone=tz),
            id="send_daily_summary",
            name="Daily Pipeline Summary",
            jobstore="default",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        # ── Start ──────────────────────────────────────────────────────────────
        self.stdout.write(self.style.SUCCESS(
            f"Starting scheduler (timezone={settings.APSCHEDULER_TIMEZONE})"
        ))

        for job in scheduler.get_jobs():
            self.stdout.write(
                f"  • {job.id:<30} next run: {job.next_run_time}"
            )

        scheduler.start()
        self.stdout.write(self.style.SUCCESS(
            "Scheduler running. Press Ctrl+C to stop."
        ))

        try:
            while True:
                time.sleep(5)
        except (KeyboardInterrupt, SystemExit):
            self.stdout.write(self.style.WARNING("Shutting down scheduler…"))
            scheduler.shutdown(wait=True)
            self.stdout.write(self.style.SUCCESS("Scheduler stopped."))
