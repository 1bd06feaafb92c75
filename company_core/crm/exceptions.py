"""Domain errors raised by the CRM services.

Each error carries the HTTP status and machine code the API layer should
answer with, so services never import anything from the web stack.
"""

from .ledger import format_money


class CRMError(Exception):
    status_code = 400
    code = 'ERROR'
    default_message = 'Request could not be processed'

    def __init__(self, message=None, *, code=None):
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)


class ValidationFailed(CRMError):
    code = 'VALIDATION_ERROR'
    default_message = 'Invalid request'


class NotFound(CRMError):
    status_code = 404
    code = 'NOT_FOUND'
    default_message = 'Not found'


class Duplicate(CRMError):
    status_code = 409
    code = 'DUPLICATE'
    default_message = 'A record with this value already exists'


class PaymentRejected(CRMError):
    code = 'PAYMENT_REJECTED'


class InvoiceCancelled(PaymentRejected):
    code = 'INVOICE_CANCELLED'
    default_message = 'Cannot add payment to cancelled invoice'


class PaymentExceedsBalance(PaymentRejected):
    code = 'PAYMENT_EXCEEDS_BALANCE'

    def __init__(self, max_payment, currency='Rs.'):
        self.max_payment = max_payment
        super().__init__(
            f'Payment exceeds balance. Maximum payment: {format_money(max_payment, currency)}'
        )


class InvoiceLocked(CRMError):
    code = 'INVOICE_LOCKED'
    default_message = 'Invoice can no longer be edited'


class ReceiptAlreadyExists(CRMError):
    code = 'RECEIPT_EXISTS'
    default_message = 'Receipt already exists for this invoice'


class InvalidStatusTransition(CRMError):
    code = 'INVALID_STATUS'
    default_message = 'Invalid status'
