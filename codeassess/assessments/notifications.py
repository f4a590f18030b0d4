"""
Invitation Notifications

This module renders assessment invitations and delivers them through a
mailer. Delivery failures are reported to the caller as NotificationError so
they can be logged per recipient without aborting a batch.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.message import EmailMessage
from functools import partial
from typing import Dict, List, Optional

from codeassess.common.exceptions import NotificationError
from codeassess.common.logger import app_logger
from codeassess.config import Settings, settings as default_settings

logger = app_logger.getChild("notifications")

TEMPLATES: Dict[str, Dict[str, str]] = {
    "en": {
        "subject": "You are invited to the {title} assessment",
        "body": (
            "Hello,\n\n"
            "{company} has invited you to take the coding assessment \"{title}\".\n"
            "{description}\n\n"
            "Start the assessment here: {link}\n"
        ),
    },
    "ja": {
        "subject": "{title} のアセスメントに招待されました",
        "body": (
            "こんにちは。\n\n"
            "{company} からコーディングアセスメント「{title}」への招待が届いています。\n"
            "{description}\n\n"
            "こちらから開始してください: {link}\n"
        ),
    },
}


@dataclass
class InvitationContent:
    """What an invitation says, independent of its locale."""

    assessment_id: str
    title: str
    description: str
    link: str
    company: str


@dataclass
class DeliveryResult:
    """Outcome reported by the mail transport for one invitation."""

    accepted: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    status_code: int = 250
    error_message: str = ""


def invitation_link(app_url: str, assessment_id: str, token: Optional[str] = None) -> str:
    link = f"{app_url.rstrip('/')}/assessments/{assessment_id}/accept"
    return f"{link}?token={token}" if token else link


def render_invitation(content: InvitationContent, locale: Optional[str] = None) -> Dict[str, str]:
    """
    Render the subject and body of an invitation.

    Unknown locales fall back to English.

    Returns:
        Mapping with ``subject`` and ``body``
    """
    template = TEMPLATES.get(locale or "en", TEMPLATES["en"])
    values = {
        "title": content.title,
        "description": content.description,
        "link": content.link,
        "company": content.company,
    }
    return {key: text.format(**values) for key, text in template.items()}


class InvitationMailer(ABC):
    """Transport for assessment invitations."""

    @abstractmethod
    async def send_invitation(
        self,
        recipient: str,
        locale: Optional[str],
        content: InvitationContent
    ) -> DeliveryResult:
        """
        Deliver one invitation.

        Raises:
            NotificationError: If the transport refuses or fails to deliver
        """
        pass


class SmtpInvitationMailer(InvitationMailer):
    """Delivers invitations through an SMTP relay."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def _build_message(self, recipient: str, locale: Optional[str], content: InvitationContent) -> EmailMessage:
        rendered = render_invitation(content, locale)
        message = EmailMessage()
        message["From"] = self.settings.SMTP_SENDER
        message["To"] = recipient
        message["Subject"] = rendered["subject"]
        message.set_content(rendered["body"])
        return message

    def _deliver(self, message: EmailMessage) -> Dict[str, tuple]:
        with smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT,
                          timeout=self.settings.SMTP_TIMEOUT) as client:
            if self.settings.SMTP_USE_TLS:
                client.starttls()
            if self.settings.SMTP_USER:
                client.login(self.settings.SMTP_USER, self.settings.SMTP_PASSWORD or "")
            return client.send_message(message)

    async def send_invitation(
        self,
        recipient: str,
        locale: Optional[str],
        content: InvitationContent
    ) -> DeliveryResult:
        loop = asyncio.get_event_loop()
        try:
            message = self._build_message(recipient, locale, content)
            refused = await loop.run_in_executor(None, partial(self._deliver, message))
        except ValueError as e:
            # Malformed address or header
            raise NotificationError(str(e), recipient, 400, e)
        except smtplib.SMTPRecipientsRefused as e:
            code, reason = e.recipients.get(recipient, (550, b"recipient refused"))
            raise NotificationError(_decode(reason), recipient, code, e)
        except smtplib.SMTPResponseException as e:
            raise NotificationError(_decode(e.smtp_error), recipient, e.smtp_code, e)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(str(e), recipient, 500, e)

        if recipient in refused:
            code, reason = refused[recipient]
            raise NotificationError(_decode(reason), recipient, code)

        logger.debug(f"Invitation for assessment {content.assessment_id} sent to {recipient}")
        return DeliveryResult(accepted=[recipient])


def _decode(reason) -> str:
    if isinstance(reason, bytes):
        return reason.decode("utf-8", errors="replace")
    return str(reason)
