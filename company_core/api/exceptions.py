"""Uniform ``{"error": message}`` bodies for every API failure."""

import logging

from django.db import IntegrityError
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

from crm.exceptions import CRMError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = '23505'
FOREIGN_KEY_VIOLATION = '23503'


def _first_message(data):
    """Pick the first human readable message out of a DRF error payload."""
    if isinstance(data, dict):
        if 'detail' in data:
            return str(data['detail'])
        for value in data.values():
            return _first_message(value)
        return 'Invalid request'
    if isinstance(data, (list, tuple)):
        if not data:
            return 'Invalid request'
        return _first_message(data[0])
    return str(data)


def _integrity_code(exc):
    cause = exc.__cause__
    code = getattr(cause, 'pgcode', None) or getattr(cause, 'sqlstate', None)
    if code:
        return code
    text = str(exc)
    if 'UNIQUE constraint failed' in text or 'duplicate key value' in text:
        return UNIQUE_VIOLATION
    if 'FOREIGN KEY constraint failed' in text or 'violates foreign key constraint' in text:
        return FOREIGN_KEY_VIOLATION
    return None


def integrity_error_response(exc):
    code = _integrity_code(exc)
    if code == UNIQUE_VIOLATION:
        return Response(
            {'error': 'A record with this value already exists', 'code': 'DUPLICATE'},
            status=status.HTTP_409_CONFLICT,
        )
    if code == FOREIGN_KEY_VIOLATION:
        return Response(
            {'error': 'Referenced record does not exist', 'code': 'FOREIGN_KEY_VIOLATION'},
            status=status.HTTP_400_BAD_REQUEST,
        )
    logger.exception("Unhandled integrity error: %s", exc)
    return Response({'error': 'Server error'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


def api_exception_handler(exc, context):
    if isinstance(exc, CRMError):
        return Response({'error': exc.message, 'code': exc.code}, status=exc.status_code)

    if isinstance(exc, IntegrityError):
        return integrity_error_response(exc)

    response = exception_handler(exc, context)
    if response is not None:
        body = {'error': _first_message(response.data)}
        if isinstance(exc, ValidationError):
            body['details'] = response.data
        response.data = body
        return response

    view = context.get('view')
    logger.exception("Unhandled API error in %s", view.__class__.__name__ if view else 'unknown view')
    return Response({'error': 'Server error'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
