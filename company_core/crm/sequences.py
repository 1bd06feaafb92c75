"""Per-prefix, per-year document numbering (``INV-2025-0001``).

Numbers come from a locked counter row in ``DocumentSequence`` so two
requests can never be handed the same value. Call ``next_document_number``
inside the transaction that inserts the numbered document; if that
transaction rolls back, the counter rolls back with it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .exceptions import ValidationFailed
from .models import DocumentSequence, Invoice, Receipt, Setting


logger = logging.getLogger(__name__)

DOCUMENT_NUMBER_RE = re.compile(r'^(?P<prefix>[A-Z]+)-(?P<year>\d{4})-(?P<seq>\d{4,})$')
_SEQUENCE_SUFFIX_RE = re.compile(r'-(\d+)$')


@dataclass(frozen=True)
class DocumentKind:
    model: type
    field: str
    setting_key: str
    default_setting: str


DOCUMENT_KINDS = {
    'invoice': DocumentKind(Invoice, 'invoice_number', 'invoice_prefix', 'DEFAULT_INVOICE_PREFIX'),
    'receipt': DocumentKind(Receipt, 'receipt_number', 'receipt_prefix', 'DEFAULT_RECEIPT_PREFIX'),
}


def _get_kind(kind: str) -> DocumentKind:
    try:
        return DOCUMENT_KINDS[kind]
    except KeyError:
        raise ValidationFailed(f'Unknown document kind: {kind}') from None


def normalize_prefix(value: str | None, default: str) -> str:
    cleaned = re.sub(r'[^A-Z]', '', (value or '').upper())
    return cleaned or default


def document_prefix(kind: str) -> str:
    doc_kind = _get_kind(kind)
    default = getattr(settings, doc_kind.default_setting)
    return normalize_prefix(Setting.get_value(doc_kind.setting_key), default)


def format_document_number(prefix: str, year: int, value: int) -> str:
    return f'{prefix}-{year}-{value:04d}'


def parse_sequence(number: str | None) -> int | None:
    if not number:
        return None
    match = _SEQUENCE_SUFFIX_RE.search(number)
    if not match:
        return None
    return int(match.group(1))


def _highest_existing(doc_kind: DocumentKind, prefix: str, year: int) -> int:
    numbers = doc_kind.model.objects.filter(
        **{f'{doc_kind.field}__startswith': f'{prefix}-{year}-'}
    ).values_list(doc_kind.field, flat=True)
    parsed = [parse_sequence(number) for number in numbers]
    return max((value for value in parsed if value is not None), default=0)


def next_document_number(kind: str, *, year: int | None = None) -> str:
    """Allocate the next number for ``kind`` ('invoice' or 'receipt')."""

    doc_kind = _get_kind(kind)
    prefix = document_prefix(kind)
    year = year or timezone.localdate().year

    with transaction.atomic():
        sequence = (
            DocumentSequence.objects.select_for_update()
            .filter(prefix=prefix, year=year)
            .first()
        )
        if sequence is None:
            # Seed from numbers issued before the counter existed.
            seed = _highest_existing(doc_kind, prefix, year)
            created, _ = DocumentSequence.objects.get_or_create(
                prefix=prefix, year=year, defaults={'last_value': seed}
            )
            sequence = DocumentSequence.objects.select_for_update().get(pk=created.pk)

        sequence.last_value += 1
        sequence.save(update_fields=['last_value'])

    number = format_document_number(prefix, year, sequence.last_value)
    logger.debug('Allocated %s number %s', kind, number)
    return number
