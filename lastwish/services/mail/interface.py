"""
Mail Transport Interface

The dispatcher only knows how to hand an OutgoingEmail to a MailTransport.
How it travels (SMTP today) is behind this interface, which also lets the
tests record sends instead of making them.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, Field


class MailAttachment(BaseModel):
    """A file attached to an outgoing email."""

    filename: str
    content: bytes
    maintype: str = "application"
    subtype: str = "json"


class OutgoingEmail(BaseModel):
    """A fully rendered email, ready for any transport."""

    to_address: str = Field(
        ...,
        min_length=3,
        description="Recipient address"
    )
    to_name: str = Field(
        default="",
        description="Recipient display name"
    )
    subject: str
    html_body: str
    text_body: str
    attachments: list[MailAttachment] = Field(default_factory=list)


class SendReceipt(BaseModel):
    """Proof of a successful hand-off to the mail server."""

    message_id: Optional[str] = None


class MailTransport(ABC):
    """
    Abstract interface for sending email.

    Implementations retry transient failures themselves and raise
    a MailError subclass once they give up.
    """

    @abstractmethod
    async def send(self, email: OutgoingEmail) -> SendReceipt:
        """
        Send one email.

        Args:
            email: The rendered email

        Returns:
            SendReceipt with the message id, when known

        Raises:
            TransientMailError: Temporary failure that outlived the retries
            PermanentMailError: Rejected (bad address, auth failure, ...)
            MailNotConfiguredError: No credentials configured
        """
        pass


class MailError(Exception):
    """Base exception for mail delivery."""
    pass


class TransientMailError(MailError):
    """Temporary failure (connection dropped, 4xx reply)."""
    pass


class PermanentMailError(MailError):
    """The server refused the message for good."""
    pass


class MailTimeoutError(MailError):
    """A send did not finish within its time limit."""
    pass


class MailNotConfiguredError(MailError):
    """SMTP credentials are missing."""
    pass
