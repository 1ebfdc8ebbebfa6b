# app/notifications/email/smtp_client.py
import logging
import smtplib
from email.message import EmailMessage

from app.core.config import get_settings

logger = logging.getLogger(__name__)


def send_via_smtp(
    from_email: str,
    to_email: str,
    subject: str,
    body: str,
    *,
    html: bool = False,
) -> None:
    """
    Minimal SMTP client using Python's standard library.

    It respects:
        - settings.email_smtp_host
        - settings.email_smtp_port
        - settings.email_smtp_username
        - settings.email_smtp_password
    """
    settings = get_settings()

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject

    if html:
        msg.set_content(body, subtype="html")
    else:
        msg.set_content(body)

    host = settings.email_smtp_host
    port = settings.email_smtp_port
    username = settings.email_smtp_username
    password = settings.email_smtp_password

    try:
        with smtplib.SMTP(host, port, timeout=10) as server:
            server.ehlo()
            try:
                server.starttls()
                server.ehlo()
            except smtplib.SMTPException:
                # TLS not available, continue without it
                pass

            if username and password:
                server.login(username, password)

            server.send_message(msg)
    except (OSError, smtplib.SMTPException) as exc:
        logger.warning("[EMAIL ERROR] Failed to send email to %s: %s", to_email, exc)
        raise
