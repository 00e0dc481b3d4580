"""
Last Wish - Delivery Engine

A dead-man's switch for a personal-finance application. Users check in
periodically; when one goes silent past their deadline, an export of their
selected financial data is delivered once to the people they chose.

DESIGN PRINCIPLES:
1. Never deliver early (strict deadline comparison)
2. Never deliver twice (one atomic claim per overdue episode)
3. Never lose a delivery to a misconfiguration (no recipients, no claim)
4. Every step must be auditable
5. Storage and mail transport are swappable
"""

__version__ = "1.0.0"
__author__ = "Last Wish Team"
