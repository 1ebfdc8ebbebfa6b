# app/notifications/sms/base.py
import logging
from typing import Optional

from app.core.config import get_settings

logger = logging.getLogger(__name__)


def send_sms(
    phone: str,
    message: str,
    *,
    reason: Optional[str] = None,
) -> None:
    """
    SMS sending stub.

    - If settings.sms_enabled is False:
        just log that the SMS would have been sent.
    - No gateway is wired up yet; enabled sends are logged under the
      configured sms_provider name.

    `reason` is a free-text label like:
      - "REFILL_REMINDER"
      - "AUTO_REFILL_RESULT"
    """
    settings = get_settings()
    debug_reason = f" [{reason}]" if reason else ""

    if not settings.sms_enabled:
        logger.info("[SMS DISABLED%s] To: %s, Message: %s", debug_reason, phone, message)
        return

    logger.info("[SMS SENT via %s%s] To: %s, Message: %s", settings.sms_provider, debug_reason, phone, message)
