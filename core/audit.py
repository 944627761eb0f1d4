"""
core/audit.py -- Security audit events.

Audit events go to their own logger ("authgate.audit") so operators can route
them to a separate sink from general operational logs. Each record carries
`audit=True` and `event=<name>` as LogRecord attributes plus the detail
fields, which the JSON formatter in api/main.py renders as top-level keys.

Never pass a password (or any credential) as a detail field.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging

audit_logger = logging.getLogger("authgate.audit")

# Event names
UNKNOWN_USER = "unknown_user"
ACCOUNT_LOCKED = "account_locked"
ACCOUNT_INACTIVE = "account_inactive"
BAD_PASSWORD = "bad_password"
RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


def log_security_event(event: str, **details) -> None:
    """Emit one audit record at WARNING level."""
    rendered = " ".join(f"{k}={v}" for k, v in details.items())
    audit_logger.warning(
        "Security event: %s %s",
        event,
        rendered,
        extra={"audit": True, "event": event, "details": details},
    )
