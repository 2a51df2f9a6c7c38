# ruo/services/mailer.py
import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import List, Optional

from ruo import config
from ruo.errors import ExternalServiceError

logger = logging.getLogger(__name__)


@dataclass
class Attachment:
    filename: str
    content: bytes
    mime_type: str = "application/octet-stream"


@dataclass
class OutboundMessage:
    sender: str
    reply_to: str
    recipient: str
    subject: str
    body: str
    sender_name: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)

    def to_email(self) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self.sender_name, self.sender)) if self.sender_name else self.sender
        msg["To"] = self.recipient
        msg["Reply-To"] = self.reply_to
        msg["Subject"] = self.subject
        msg["Message-ID"] = make_msgid(domain=self.sender.rpartition("@")[2] or None)
        msg.set_content(self.body)
        for a in self.attachments:
            maintype, _, subtype = (a.mime_type or "application/octet-stream").partition("/")
            msg.add_attachment(
                a.content,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=a.filename,
            )
        return msg


class Mailer(ABC):
    """
    Livraison synchrone: `send` retourne quand le serveur a accepté le message,
    lève ExternalServiceError sinon. Aucune relance automatique.
    """

    @abstractmethod
    async def send(self, message: OutboundMessage) -> None:
        raise NotImplementedError


class SmtpMailer(Mailer):
    def __init__(
        self,
        *,
        host: str = config.SMTP_HOST,
        port: int = config.SMTP_PORT,
        user: str = config.SMTP_USER,
        password: str = config.SMTP_PASS,
        starttls: bool = config.SMTP_STARTTLS,
        timeout: float = config.MAIL_TIMEOUT_SEC,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def _send_blocking(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.user:
                smtp.login(self.user, self.password)
            smtp.send_message(msg)

    async def send(self, message: OutboundMessage) -> None:
        if not self.host:
            raise ExternalServiceError("mail delivery not configured")
        msg = message.to_email()
        try:
            await asyncio.to_thread(self._send_blocking, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("[mail] delivery to %s failed: %s", message.recipient, e)
            raise ExternalServiceError("mail delivery failed", detail=str(e)) from e
        logger.info("[mail] sent %r to %s (%d attachments)",
                    message.subject, message.recipient, len(message.attachments))
