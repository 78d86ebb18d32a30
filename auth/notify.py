"""
auth/notify.py -- Outbound account notifications.

AuthService hands raw one-time tokens to a Notifier exactly once, right after
creating them. Message formatting and transport (SMTP, a mail API, a queue)
belong to the Notifier implementation, not to the auth core.

LogNotifier is the default: it records that a message would have been sent
and to whom, without the token itself. Deployments that need real delivery
pass their own Notifier to AuthService.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

logger = logging.getLogger("warden.auth.notify")


class Notifier(Protocol):
    def send_verification(self, email: str, token: str, first_name: Optional[str] = None) -> None: ...
    def send_password_reset(self, email: str, token: str, first_name: Optional[str] = None) -> None: ...
    def send_password_changed(self, email: str, first_name: Optional[str] = None, origin: Optional[str] = None) -> None: ...
    def send_welcome(self, email: str, first_name: Optional[str] = None) -> None: ...


class LogNotifier:
    def send_verification(self, email: str, token: str, first_name: Optional[str] = None) -> None:
        logger.info("Email verification requested for %s (no mail transport configured)", email)

    def send_password_reset(self, email: str, token: str, first_name: Optional[str] = None) -> None:
        logger.info("Password reset requested for %s (no mail transport configured)", email)

    def send_password_changed(self, email: str, first_name: Optional[str] = None, origin: Optional[str] = None) -> None:
        logger.info("Password changed for %s from %s", email, origin or "unknown")

    def send_welcome(self, email: str, first_name: Optional[str] = None) -> None:
        logger.info("Account %s verified", email)
