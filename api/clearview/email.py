import logging
import os
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Iterable, Optional, Union

from .errors import EmailDeliveryError

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("EMAIL_PORT", "587"))
SMTP_USER = os.getenv("EMAIL_USER")
SMTP_PASSWORD = os.getenv("EMAIL_PASSWORD")
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", SMTP_USER or "noreply@example.com")
DEFAULT_SENDER_NAME = os.getenv("EMAIL_SENDER_NAME", "Clearview")
DEFAULT_REPLY_TO = os.getenv("EMAIL_REPLY_TO")


def format_sender_name(requester_name: Optional[str] = None) -> str:
    base_label = (DEFAULT_SENDER_NAME or "Clearview").strip() or "Clearview"
    if requester_name:
        plain = requester_name.strip()
        if plain:
            return f"{plain} via {base_label}"
    return base_label


class Mailer:
    """Transactional email over SMTP.

    Without credentials the message is logged instead of delivered, which is
    what local development and previews run with. No retries: callers decide
    whether an :class:`EmailDeliveryError` is fatal.
    """

    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        user: Optional[str] = SMTP_USER,
        password: Optional[str] = SMTP_PASSWORD,
        sender: str = DEFAULT_SENDER,
        sender_name: str = DEFAULT_SENDER_NAME,
        reply_to: Optional[str] = DEFAULT_REPLY_TO,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.sender_name = sender_name
        self.reply_to = reply_to

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password)

    def send(
        self,
        to: Union[str, Iterable[str]],
        subject: str,
        html: str,
        text: str,
        attachments: Optional[list] = None,
        sender_name: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        recipients = [to] if isinstance(to, str) else list(to)
        if not recipients:
            return
        attachments = attachments or []
        display_name = (sender_name or self.sender_name or "").strip()
        from_value = formataddr((display_name, self.sender)) if display_name else self.sender
        reply_to = reply_to or self.reply_to

        if not self.configured:
            logger.info(
                "EMAIL (stub) from=%s reply_to=%s to=%s subject=%r attachments=%d\n%s",
                from_value, reply_to or "(not set)", ", ".join(recipients), subject, len(attachments), text,
            )
            return

        msg = EmailMessage()
        msg["From"] = from_value
        if reply_to:
            msg["Reply-To"] = reply_to
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.set_content(text or "")
        if html:
            msg.add_alternative(html, subtype="html")
        for attachment in attachments:
            if not attachment or attachment.get("content") is None:
                continue
            msg.add_attachment(
                attachment["content"],
                maintype=attachment.get("maintype", "application"),
                subtype=attachment.get("subtype", "octet-stream"),
                filename=attachment.get("filename") or "attachment",
            )
        try:
            with smtplib.SMTP(self.host, self.port) as smtp:
                smtp.starttls()
                smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s failed: %s", recipients, exc)
            raise EmailDeliveryError(f"Failed to send email: {exc}") from exc


_mailer: Optional[Mailer] = None

def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = Mailer()
    return _mailer
