"""
Email Rendering

Turns an ExportPayload into an OutgoingEmail for one recipient: an HTML body,
a plain-text alternative and the JSON export as an attachment.

The owner's message is user input. The HTML template autoescapes it and
keeps its line breaks.
"""

from typing import Optional

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape
from markupsafe import Markup, escape

from lastwish.models.delivery import ExportPayload
from lastwish.models.settings import DataCategory, Recipient
from lastwish.services.mail import MailAttachment, OutgoingEmail


CATEGORY_LABELS: dict[DataCategory, str] = {
    DataCategory.ACCOUNTS: "Accounts",
    DataCategory.TRANSACTIONS: "Transactions",
    DataCategory.PURCHASES: "Purchases",
    DataCategory.LEND_BORROW: "Lend/Borrow Records",
    DataCategory.SAVINGS: "Savings Records",
    DataCategory.ANALYTICS: "Analytics",
}


def nl2br(value: str) -> Markup:
    """Escape text and turn its newlines into <br> tags."""
    lines = str(value).replace("\r\n", "\n").split("\n")
    return Markup("<br>\n").join(escape(line) for line in lines)


def build_environment() -> Environment:
    env = Environment(
        loader=PackageLoader("lastwish", "templates"),
        autoescape=select_autoescape(["html"]),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
    env.filters["nl2br"] = nl2br
    return env


class EmailRenderer:
    """Renders delivery emails from the packaged templates."""

    def __init__(self, product_name: str = "Last Wish", env: Optional[Environment] = None):
        self._product_name = product_name
        self._env = env or build_environment()

    def subject(self, payload: ExportPayload, test_mode: bool = False) -> str:
        prefix = "Test Email - " if test_mode else ""
        return f"{prefix}Important: Financial Data from {payload.owner_label} - {self._product_name}"

    def _context(self, payload: ExportPayload, recipient: Recipient, test_mode: bool) -> dict:
        summary = [
            (CATEGORY_LABELS[category], len(records))
            for category, records in payload.sections.items()
        ]
        return {
            "product_name": self._product_name,
            "test_mode": test_mode,
            "owner": payload.owner_label,
            "recipient_name": recipient.name,
            "message": payload.message,
            "summary": summary,
            "omitted": [CATEGORY_LABELS[category] for category in payload.omitted],
            "attachment_filename": payload.attachment_filename(test_mode),
            "delivery_date": payload.generated_at.strftime("%B %d, %Y"),
        }

    def render(
        self,
        payload: ExportPayload,
        recipient: Recipient,
        test_mode: bool = False,
    ) -> OutgoingEmail:
        """Render the email for one recipient."""
        context = self._context(payload, recipient, test_mode)
        return OutgoingEmail(
            to_address=recipient.email,
            to_name=recipient.name,
            subject=self.subject(payload, test_mode),
            html_body=self._env.get_template("delivery_email.html").render(**context),
            text_body=self._env.get_template("delivery_email.txt").render(**context),
            attachments=[MailAttachment(
                filename=payload.attachment_filename(test_mode),
                content=payload.to_json_document(),
            )],
        )
