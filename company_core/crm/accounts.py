"""Staff accounts: admin-managed users and self-service password changes.

Roles map onto Django's ``is_staff`` flag: admins are staff users, everyone
else is a plain active user.
"""

import logging

from django.contrib.auth.models import User
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError

from .exceptions import Duplicate, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

ROLE_ADMIN = 'admin'
ROLE_STAFF = 'staff'
ROLES = (ROLE_ADMIN, ROLE_STAFF)


def user_role(user):
    return ROLE_ADMIN if user.is_staff else ROLE_STAFF


def _check_password(password, user):
    try:
        validate_password(password, user)
    except DjangoValidationError as exc:
        raise ValidationFailed(' '.join(exc.messages)) from exc


def create_user(*, username, password, name='', role=ROLE_STAFF):
    username = (username or '').strip()
    if not username or not password:
        raise ValidationFailed('Username and password are required')
    if role not in ROLES:
        raise ValidationFailed('Invalid role')
    if User.objects.filter(username__iexact=username).exists():
        raise Duplicate('Username already exists')

    first_name, _, last_name = (name or '').strip().partition(' ')
    user = User(
        username=username,
        first_name=first_name,
        last_name=last_name.strip(),
        is_staff=role == ROLE_ADMIN,
    )
    _check_password(password, user)
    user.set_password(password)
    user.save()
    logger.info("Created %s account %s", role, username)
    return user


def change_password(user, current_password, new_password):
    if not user.check_password(current_password or ''):
        raise ValidationFailed('Current password is incorrect')
    if not new_password:
        raise ValidationFailed('New password is required')
    _check_password(new_password, user)
    user.set_password(new_password)
    user.save(update_fields=['password'])
    logger.info("Password changed for %s", user.get_username())


def delete_user(user_id, *, acting_user):
    if int(user_id) == acting_user.pk:
        raise ValidationFailed('Cannot delete yourself')
    user = User.objects.filter(pk=user_id).first()
    if user is None:
        raise NotFound('User not found')
    username = user.get_username()
    user.delete()
    logger.info("Deleted account %s", username)
