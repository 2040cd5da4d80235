"""
Notification channels. Each one either returns a DeliveryAck or raises a
ChannelError subclass; the dispatcher decides what that means for the caller.
"""
import logging
import smtplib
from typing import Callable, Dict, Optional

from medreminder.services import push_service
from medreminder.services.email_service import EmailNotConfigured, EmailService

from .exceptions import ChannelNotConfigured, ChannelTransportError, InvalidRecipient
from .schemas import DeliveryAck

logger = logging.getLogger(__name__)


class PushChannel:
    name = "push"

    def __init__(
        self,
        send_func: Callable[..., str] = push_service.send_push,
        is_configured: Callable[[], bool] = push_service.is_configured,
    ):
        self._send = send_func
        self._is_configured = is_configured

    def send(self, recipient: Optional[str], title: str, body: str,
             metadata: Optional[Dict[str, str]] = None) -> DeliveryAck:
        if not recipient:
            # A user without a registered device is normal, not an error
            raise ChannelNotConfigured(self.name, "no device token registered for user")
        if not self._is_configured():
            raise ChannelNotConfigured(self.name, "push transport not configured")
        try:
            message_id = self._send(recipient, title, body, metadata or {})
        except Exception as e:
            if "registration-token-not-registered" in str(e):
                logger.warning(f"[FCM] Token {recipient[:20]}... is no longer registered and should be cleaned up")
            raise ChannelTransportError(self.name, f"FCM send failed: {e}") from e
        return DeliveryAck(channel=self.name, message_id=message_id)


class EmailChannel:
    name = "email"

    def __init__(self, service_factory: Callable[[], EmailService] = EmailService):
        self._service_factory = service_factory

    def send(self, recipient: Optional[str], title: str, body: str,
             metadata: Optional[Dict[str, str]] = None) -> DeliveryAck:
        if not recipient or "@" not in recipient:
            raise InvalidRecipient(self.name, f"invalid email address: {recipient!r}")
        try:
            service = self._service_factory()
        except EmailNotConfigured as e:
            raise ChannelNotConfigured(self.name, str(e)) from e

        meta = metadata or {}
        try:
            if meta.get("type") == "profile_change":
                service.send_notification(
                    to_email=recipient,
                    subject=title,
                    message=body,
                    user_name=meta.get("user_name"),
                )
            else:
                service.send_medication_reminder(
                    to_email=recipient,
                    subject=title,
                    message=body,
                    medication_name=meta.get("medication_name"),
                    dosage=meta.get("dosage"),
                    instructions=meta.get("instructions"),
                    user_name=meta.get("user_name"),
                )
        except (smtplib.SMTPException, OSError) as e:
            if "553" in str(e) or "relay" in str(e).lower():
                logger.warning("[Email] Relay refused - FROM_EMAIL most likely differs from SMTP_USERNAME")
            raise ChannelTransportError(self.name, f"SMTP send failed: {e}") from e
        return DeliveryAck(channel=self.name, message_id=None)
