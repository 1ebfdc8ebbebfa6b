# app/notifications/email/base.py
import logging
from typing import Optional

from app.core.config import get_settings

logger = logging.getLogger(__name__)


def send_email(
    to_email: str,
    subject: str,
    body: str,
    *,
    reason: Optional[str] = None,
    html: bool = False,
) -> None:
    """
    Unified email sending abstraction supporting SMTP, Resend and a console
    backend that only logs.

    - If email_sandbox_mode is True:
        all emails are sent to EMAIL_TEST_RECIPIENT (if set).
    - Otherwise:
        uses EMAIL_BACKEND to choose the transport.

    Raises on delivery failure; callers record the outcome.
    """
    settings = get_settings()
    debug_reason = f" [{reason}]" if reason else ""

    # Apply sandbox mode
    actual_recipient = to_email
    if settings.email_sandbox_mode:
        actual_recipient = str(settings.email_test_recipient or settings.email_from)
        logger.info(
            "[EMAIL SANDBOX%s] Original: %s, Redirected to: %s, Subject: %r",
            debug_reason,
            to_email,
            actual_recipient,
            subject,
        )

    backend = settings.email_backend.lower()
    if backend == "console":
        logger.info("[EMAIL CONSOLE%s] To: %s, Subject: %r\n%s", debug_reason, actual_recipient, subject, body)
        return

    if backend == "resend":
        from app.notifications.email.resend_client import send_via_resend

        send_via_resend(
            from_email=str(settings.email_from),
            to_email=actual_recipient,
            subject=subject,
            html_body=body if html else f"<pre>{body}</pre>",
        )
    else:
        from app.notifications.email.smtp_client import send_via_smtp

        send_via_smtp(
            from_email=str(settings.email_from),
            to_email=actual_recipient,
            subject=subject,
            body=body,
            html=html,
        )

    logger.info("[EMAIL SENT%s] To: %s (original: %s), Subject: %r", debug_reason, actual_recipient, to_email, subject)
