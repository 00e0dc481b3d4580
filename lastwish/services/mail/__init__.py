"""Mail services package."""

from lastwish.services.mail.interface import (
    MailAttachment,
    MailError,
    MailNotConfiguredError,
    MailTimeoutError,
    MailTransport,
    OutgoingEmail,
    PermanentMailError,
    SendReceipt,
    TransientMailError,
)
from lastwish.services.mail.smtp import SMTPMailTransport, build_message

__all__ = [
    "MailAttachment",
    "MailError",
    "MailNotConfiguredError",
    "MailTimeoutError",
    "MailTransport",
    "OutgoingEmail",
    "PermanentMailError",
    "SendReceipt",
    "SMTPMailTransport",
    "TransientMailError",
    "build_message",
]
