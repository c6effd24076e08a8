import logging, sys

from artifact_gatherer.config import settings

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def setup_logging(level: str | None = None) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())
    if not any(getattr(h, "_gatherer_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._gatherer_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    return logging.getLogger(settings.SERVICE_NAME)
