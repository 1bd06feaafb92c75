from django.core.management.base import BaseCommand

from crm.exceptions import ValidationFailed
from crm.invoice_utils import recalculate_invoice_totals
from crm.models import Invoice


class Command(BaseCommand):
    help = 'Recalculates subtotal, cost and profit figures for invoices from their packages and items'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report invoices whose stored totals differ without saving.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        changed = 0
        skipped = 0
        for invoice in Invoice.objects.exclude(status=Invoice.STATUS_CANCELLED).iterator():
            stored_total = invoice.total
            stored_cost = invoice.total_cost
            stored_status = invoice.status
            try:
                totals = recalculate_invoice_totals(invoice, commit=not dry_run)
            except ValidationFailed as exc:
                skipped += 1
                self.stdout.write(self.style.ERROR(f'{invoice.invoice_number}: skipped, {exc.message}'))
                continue
            if totals.total != stored_total or totals.total_cost != stored_cost:
                changed += 1
                self.stdout.write(
                    self.style.WARNING(
                        f'{invoice.invoice_number}: total {stored_total} -> {totals.total}, '
                        f'cost {stored_cost} -> {totals.total_cost}, '
                        f'status {stored_status} -> {invoice.status}'
                    )
                )
        verb = 'would change' if dry_run else 'updated'
        self.stdout.write(self.style.SUCCESS(f'Recalculated invoices; {changed} {verb}, {skipped} skipped.'))
