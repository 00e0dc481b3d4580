"""
SMTP Mail Transport

DESIGN DECISION: Plain SMTP through the standard library, because every mail
provider the deployment might use (Gmail app passwords, SES, Postmark)
speaks it and it needs no extra client.

smtplib is blocking, so each send runs in a worker thread. Only transient
failures (dropped connections, 4xx replies, socket errors) are retried.
A 5xx reply or an authentication failure is final.
"""

import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Optional

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lastwish.config import get_settings
from lastwish.config.settings import (
    SMTP_RETRY_MAX_WAIT_SECONDS,
    SMTP_SEND_ATTEMPTS,
    SMTPSettings,
)
from lastwish.services.mail.interface import (
    MailNotConfiguredError,
    MailTransport,
    OutgoingEmail,
    PermanentMailError,
    SendReceipt,
    TransientMailError,
)


logger = structlog.get_logger()


def build_message(email: OutgoingEmail, sender: str, message_id: str) -> EmailMessage:
    """Build a multipart/alternative message with attachments."""
    msg = EmailMessage()
    msg["Subject"] = email.subject
    msg["From"] = sender
    msg["To"] = formataddr((email.to_name, email.to_address)) if email.to_name else email.to_address
    msg["Message-ID"] = message_id
    msg.set_content(email.text_body)
    msg.add_alternative(email.html_body, subtype="html")
    for attachment in email.attachments:
        msg.add_attachment(
            attachment.content,
            maintype=attachment.maintype,
            subtype=attachment.subtype,
            filename=attachment.filename,
        )
    return msg


class SMTPMailTransport(MailTransport):
    """
    Sends email over SMTP with STARTTLS or implicit TLS.
    """

    def __init__(self, settings: Optional[SMTPSettings] = None):
        self._settings = settings or get_settings().smtp

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured

    def _send_sync(self, msg: EmailMessage) -> None:
        s = self._settings
        try:
            if s.use_ssl:
                with smtplib.SMTP_SSL(s.host, s.port, timeout=s.timeout_seconds) as server:
                    server.login(s.user, s.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(s.host, s.port, timeout=s.timeout_seconds) as server:
                    if s.use_tls:
                        server.starttls()
                    server.login(s.user, s.password)
                    server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            raise PermanentMailError(f"SMTP authentication failed: {e.smtp_code}")
        except smtplib.SMTPRecipientsRefused as e:
            raise PermanentMailError(f"Recipient refused: {', '.join(e.recipients)}")
        except (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError) as e:
            raise TransientMailError(f"SMTP connection failed: {e}")
        except smtplib.SMTPResponseException as e:
            if 400 <= e.smtp_code < 500:
                raise TransientMailError(f"SMTP {e.smtp_code}: {e.smtp_error!r}")
            raise PermanentMailError(f"SMTP {e.smtp_code}: {e.smtp_error!r}")
        except smtplib.SMTPException as e:
            raise PermanentMailError(f"SMTP error: {e}")
        except OSError as e:
            # Socket timeouts and refused connections
            raise TransientMailError(f"Network error talking to {s.host}:{s.port}: {e}")

    @retry(
        retry=retry_if_exception_type(TransientMailError),
        stop=stop_after_attempt(SMTP_SEND_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=2, max=SMTP_RETRY_MAX_WAIT_SECONDS),
        reraise=True,
    )
    async def _send_with_retry(self, msg: EmailMessage) -> None:
        await asyncio.to_thread(self._send_sync, msg)

    async def send(self, email: OutgoingEmail) -> SendReceipt:
        """
        Send one email.

        Raises:
            MailNotConfiguredError: If SMTP credentials are missing
            TransientMailError: If the server stayed unreachable
            PermanentMailError: If the server rejected the message
        """
        if not self._settings.is_configured:
            raise MailNotConfiguredError("SMTP_USER and SMTP_PASSWORD must be set")

        sender = self._settings.sender
        domain = sender.rsplit("@", 1)[-1] if "@" in sender else None
        message_id = make_msgid(domain=domain)
        msg = build_message(email, sender, message_id)

        await self._send_with_retry(msg)
        logger.info("smtp_message_sent", to=email.to_address, message_id=message_id)
        return SendReceipt(message_id=message_id)
