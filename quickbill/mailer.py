import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from pathlib import Path
from typing import Dict, Optional, Protocol, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

templates = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


class Mailer(Protocol):
    def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachments: Sequence[Attachment] = (),
        timeout: Optional[float] = None,
        from_name: str = "",
    ) -> bool:
        ...


def render_email(template_name: str, context: Dict) -> str:
    return templates.get_template(f"emails/{template_name}").render(**context)


class SMTPMailer:
    """Delivers HTML mail through an SMTP relay. Never raises on transport errors."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def build_message(
        self, recipient: str, subject: str, body: str, attachments: Sequence[Attachment], from_name: str = ""
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f'"{from_name}" <{self.settings.mail_from}>' if from_name else self.settings.mail_from
        msg["To"] = recipient
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(body, subtype="html")
        for attachment in attachments:
            maintype, subtype = attachment.content_type.split("/", 1)
            msg.add_attachment(
                attachment.content, maintype=maintype, subtype=subtype, filename=attachment.filename
            )
        return msg

    def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachments: Sequence[Attachment] = (),
        timeout: Optional[float] = None,
        from_name: str = "",
    ) -> bool:
        settings = self.settings
        if not settings.smtp_host:
            logger.warning("SMTP is not configured; message to %s not sent", recipient)
            return False

        msg = self.build_message(recipient, subject, body, attachments, from_name)
        try:
            with smtplib.SMTP(
                settings.smtp_host, settings.smtp_port, timeout=timeout or settings.smtp_timeout
            ) as server:
                if settings.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
                if settings.smtp_user:
                    server.login(settings.smtp_user, settings.smtp_password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("Sending mail to %s failed: %s", recipient, exc)
            return False
        logger.info("Mail '%s' delivered to %s", subject, recipient)
        return True


def get_mailer() -> Mailer:
    return SMTPMailer()
