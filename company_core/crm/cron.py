from django_cron import CronJobBase, Schedule
import logging

from .reminders import run_reminder_check

logger = logging.getLogger(__name__)

class ImportantDateReminderCronJob(CronJobBase):
    RUN_EVERY_MINS = 60 * 24  # Every 24 hours

    schedule = Schedule(run_every_mins=RUN_EVERY_MINS)
    code = 'crm.important_date_reminder_cron_job'  # Unique code

    def do(self):
        results = run_reminder_check()
        message = (
            f"Checked {results['checked']} date(s), sent {results['reminders_sent']} reminder(s), "
            f"push sent={results['push_notifications']['sent']} failed={results['push_notifications']['failed']}"
        )
        logger.info(message)
        return message
