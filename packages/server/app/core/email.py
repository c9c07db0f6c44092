"""
Outbound email seam.

Delivery and templating live outside this service. The default sender only
logs what would have gone out; deployments swap in a real sender on
``app.state.email_sender``.
"""

from __future__ import annotations

from typing import Protocol

import structlog
from fastapi import Request

from app.core.config import get_settings

log = structlog.get_logger()
settings = get_settings()


class EmailSender(Protocol):
    async def send_verification(self, email: str, first_name: str, token: str) -> None: ...

    async def send_password_reset(self, email: str, first_name: str, token: str) -> None: ...

    async def send_invitation(
        self, email: str, organization_name: str, inviter_name: str, token: str
    ) -> None: ...


class LoggingEmailSender:
    """Logs outgoing mail instead of sending it. Tokens are never logged."""

    async def send_verification(self, email: str, first_name: str, token: str) -> None:
        log.info("email.verification", to=email, link=f"{settings.frontend_url}/verify-email")

    async def send_password_reset(self, email: str, first_name: str, token: str) -> None:
        log.info("email.password_reset", to=email, link=f"{settings.frontend_url}/reset-password")

    async def send_invitation(
        self, email: str, organization_name: str, inviter_name: str, token: str
    ) -> None:
        log.info(
            "email.invitation",
            to=email,
            organization=organization_name,
            inviter=inviter_name,
            link=f"{settings.frontend_url}/accept-invitation",
        )


def get_email_sender(request: Request) -> EmailSender:
    """Dependency: the sender configured on the app, or the logging default."""
    return getattr(request.app.state, "email_sender", None) or LoggingEmailSender()
