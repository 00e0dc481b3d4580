"""
Delivery Readiness Validation

DESIGN DECISION: An overdue user is validated twice:

PRE-CLAIM (scan snapshot):
- A user with no recipients is never claimed. Claiming would mark the
  episode as delivered while nothing could be sent.

POST-CLAIM (fresh read):
- Settings may have changed between the scan and the claim. If the
  recipients vanished in that window, the claim is released.

Only ERRORS block a delivery. Warnings (odd addresses, duplicates,
nothing selected) are reported and audited, but the owner's wish is
still carried out: a recipient with a broken address simply fails.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them.
"""

import re
from typing import Optional

from lastwish.models.settings import (
    CheckInSettings,
    ReadinessResult,
    ValidationIssue,
)


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class DeliveryReadinessValidator:
    """
    Checks whether a user's settings can be delivered.

    Stateless; safe to share between concurrent runs.
    """

    def _check_recipients(
        self,
        settings: CheckInSettings,
        owner_email: Optional[str],
    ) -> list[ValidationIssue]:
        issues = []

        if not settings.recipients:
            issues.append(ValidationIssue(
                field="recipients",
                issue_type="missing",
                message="No recipients are configured",
                severity="error",
            ))
            return issues

        seen: set[str] = set()
        for index, recipient in enumerate(settings.recipients):
            if not EMAIL_PATTERN.match(recipient.email):
                issues.append(ValidationIssue(
                    field=f"recipients[{index}].email",
                    issue_type="invalid_format",
                    message=f"Recipient address '{recipient.email}' does not look like an email",
                    severity="warning",
                ))

            if recipient.email in seen:
                issues.append(ValidationIssue(
                    field=f"recipients[{index}].email",
                    issue_type="duplicate",
                    message=f"Recipient {recipient.email} is listed more than once",
                    severity="warning",
                ))
            seen.add(recipient.email)

            if owner_email and recipient.email == owner_email.strip().lower():
                issues.append(ValidationIssue(
                    field=f"recipients[{index}].email",
                    issue_type="owner_recipient",
                    message="The account owner is listed as a recipient",
                    severity="warning",
                ))

        return issues

    def _check_categories(self, settings: CheckInSettings) -> list[ValidationIssue]:
        if settings.include_data.selected():
            return []
        return [ValidationIssue(
            field="include_data",
            issue_type="empty",
            message="No data categories are selected; only the message will be sent",
            severity="warning",
        )]

    def validate(
        self,
        settings: CheckInSettings,
        owner_email: Optional[str] = None,
    ) -> ReadinessResult:
        """
        Validate a settings snapshot.

        Args:
            settings: Parsed settings of one user
            owner_email: Account email, for the owner-as-recipient check

        Returns:
            ReadinessResult; `is_ready` is False only when an error was found
        """
        issues = self._check_recipients(settings, owner_email)
        issues.extend(self._check_categories(settings))

        return ReadinessResult(
            user_id=settings.user_id,
            is_ready=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )
