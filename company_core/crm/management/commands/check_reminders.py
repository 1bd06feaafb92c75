from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_date
from datetime import datetime, time

from crm.reminders import run_reminder_check


class Command(BaseCommand):
    help = "Send reminders for recurring important dates that are due today."

    def add_arguments(self, parser):
        parser.add_argument(
            "--date",
            help="Evaluate as if today were this date (YYYY-MM-DD).",
        )

    def handle(self, *args, **options):
        now = None
        if options.get("date"):
            as_of = parse_date(options["date"])
            if as_of is None:
                raise CommandError(f"Invalid date: {options['date']}")
            now = timezone.make_aware(datetime.combine(as_of, time(hour=7)))

        results = run_reminder_check(now=now)

        if not results["reminders_sent"]:
            self.stdout.write(
                self.style.SUCCESS(f"No reminders due ({results['checked']} date(s) checked).")
            )
            return

        for entry in results["dates"]:
            when = "today" if entry["daysUntil"] == 0 else f"in {entry['daysUntil']} days"
            self.stdout.write(f"{entry['title']} for {entry['customer']} ({when})")

        push = results["push_notifications"]
        self.stdout.write(
            self.style.SUCCESS(
                f"Sent {results['reminders_sent']} reminder(s); push sent={push['sent']} failed={push['failed']}."
            )
        )
