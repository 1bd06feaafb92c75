from collections import Counter

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from crm.sequences import DOCUMENT_KINDS, document_prefix, parse_sequence


def iter_missing_ranges(numbers):
    numbers = sorted(numbers)
    if not numbers:
        return []
    ranges = []
    start = prev = numbers[0]
    for value in numbers[1:]:
        if value == prev + 1:
            prev = value
            continue
        ranges.append((start, prev))
        start = prev = value
    ranges.append((start, prev))
    return ranges


class Command(BaseCommand):
    help = "List missing or duplicate sequence numbers in an invoice or receipt series."

    def add_arguments(self, parser):
        parser.add_argument(
            "--kind",
            choices=sorted(DOCUMENT_KINDS),
            default="invoice",
            help="Document series to inspect (default: invoice).",
        )
        parser.add_argument(
            "--prefix",
            help="Prefix to inspect (default: the configured prefix).",
        )
        parser.add_argument(
            "--year",
            type=int,
            help="Year to inspect (default: current year).",
        )
        parser.add_argument(
            "--ranges",
            action="store_true",
            help="Print missing numbers as ranges.",
        )
        parser.add_argument(
            "--duplicates",
            action="store_true",
            help="List duplicate sequence numbers (with counts).",
        )

    def handle(self, *args, **options):
        kind = DOCUMENT_KINDS[options["kind"]]
        prefix = (options.get("prefix") or document_prefix(options["kind"])).upper()
        year = options.get("year") or timezone.localdate().year
        if year < 1000:
            raise CommandError("--year must be a four digit year.")

        numbers = kind.model.objects.filter(
            **{f"{kind.field}__startswith": f"{prefix}-{year}-"}
        ).values_list(kind.field, flat=True)
        sequences_raw = [parse_sequence(value) for value in numbers]
        sequences = sorted({value for value in sequences_raw if value is not None})

        if not sequences:
            self.stdout.write(f"No {options['kind']} numbers found for {prefix}-{year}.")
            return

        if options["duplicates"]:
            counts = Counter(value for value in sequences_raw if value is not None)
            duplicates = [(value, count) for value, count in counts.items() if count > 1]
            if not duplicates:
                self.stdout.write("No duplicate numbers.")
                return
            for value, count in sorted(duplicates):
                self.stdout.write(f"{value} ({count})")
            return

        missing = sorted(set(range(1, sequences[-1] + 1)) - set(sequences))
        if not missing:
            self.stdout.write("No missing numbers.")
            return

        if options["ranges"]:
            for start, end in iter_missing_ranges(missing):
                self.stdout.write(str(start) if start == end else f"{start}-{end}")
            return

        for value in missing:
            self.stdout.write(str(value))
