import logging

from app.core.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    """
    Install a single stream handler on the root logger.
    Safe to call more than once (app startup and scripts both call it).
    """
    settings = get_settings()
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())

    if any(getattr(h, "_pharmacy_handler", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._pharmacy_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
