"""
Outgoing mail for reminders.

A transport never raises: every failure, timeouts included, comes back
as a failed DeliveryResult so the caller can record it on the reminder.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.core.mail import BadHeaderError, EmailMessage, get_connection

from core.exceptions import TransientDeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls):
        return cls(success=True)

    @classmethod
    def failed(cls, error):
        return cls(success=False, error=str(error) or "Unknown delivery error")


class MailTransport:
    def send(self, to, subject, body) -> DeliveryResult:
        raise NotImplementedError


class DjangoMailTransport(MailTransport):
    """Sends through Django's configured e-mail backend."""

    def __init__(self, timeout=10, from_email=None):
        self.timeout = timeout
        self.from_email = from_email or settings.DEFAULT_FROM_EMAIL

    def send(self, to, subject, body) -> DeliveryResult:
        if not to:
            return DeliveryResult.failed("Recipient has no e-mail address.")

        try:
            self._deliver(to, subject, body)
        except TransientDeliveryError as exc:
            logger.warning("Reminder e-mail to %s failed: %s", to, exc)
            return DeliveryResult.failed(exc)
        except Exception as exc:
            logger.exception("Unexpected error sending reminder e-mail to %s", to)
            return DeliveryResult.failed(exc)

        return DeliveryResult.ok()

    def _deliver(self, to, subject, body):
        try:
            connection = get_connection(timeout=self.timeout)
            EmailMessage(
                subject=subject,
                body=body,
                from_email=self.from_email,
                to=[to],
                connection=connection,
            ).send(fail_silently=False)
        except (BadHeaderError, OSError) as exc:
            # smtplib errors and socket timeouts are both OSError.
            raise TransientDeliveryError(str(exc) or exc.__class__.__name__) from exc
