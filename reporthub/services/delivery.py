"""
Email delivery collaborator.

Routes receive a ``Mailer`` through ``Depends(get_mailer)``; nothing in the
service layer reaches for a module-level transport.
"""
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import List, Optional, Sequence

import structlog

from ..config import settings
from ..errors import DeliveryError


logger = structlog.get_logger(__name__)


@dataclass
class Attachment:
    filename: str
    content: bytes
    mime_type: str = "application/octet-stream"


class Mailer:
    def send(self, to_email: str, subject: str, html_body: str, attachments: Sequence[Attachment] = ()) -> None:
        raise NotImplementedError


class SmtpMailer(Mailer):
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        mail_from: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.mail_from = mail_from or username
        self.timeout = timeout

    def build_message(self, to_email: str, subject: str, html_body: str, attachments: Sequence[Attachment] = ()) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.mail_from
        msg["To"] = to_email
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(html_body, subtype="html")
        for att in attachments:
            maintype, _, subtype = (att.mime_type or "application/octet-stream").partition("/")
            msg.add_attachment(att.content, maintype=maintype, subtype=subtype or "octet-stream", filename=att.filename)
        return msg

    def send(self, to_email: str, subject: str, html_body: str, attachments: Sequence[Attachment] = ()) -> None:
        msg = self.build_message(to_email, subject, html_body, attachments)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as s:
                if self.use_tls:
                    s.starttls()
                if self.username and self.password:
                    s.login(self.username, self.password)
                s.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("email_delivery_failed", to=to_email, subject=subject, error=str(e))
            raise DeliveryError(f"Failed to send email to {to_email}")
        logger.info("email_sent", to=to_email, subject=subject, attachments=len(attachments))


class NullMailer(Mailer):
    """Used when SMTP is not configured; every send fails as undeliverable."""

    def send(self, to_email: str, subject: str, html_body: str, attachments: Sequence[Attachment] = ()) -> None:
        logger.warning("email_transport_not_configured", to=to_email, subject=subject)
        raise DeliveryError("Mail transport not configured")


def get_mailer() -> Mailer:
    if settings.smtp_host:
        return SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_tls,
            mail_from=settings.mail_from,
            timeout=settings.smtp_timeout_seconds,
        )
    return NullMailer()


def render_list(items: List[str]) -> str:
    return "".join(f"<li>{item}</li>" for item in items if item)
