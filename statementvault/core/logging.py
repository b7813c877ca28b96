from __future__ import annotations

import logging

from statementvault.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging() -> None:
    # Configure the root logger once per process; repeated calls only adjust the level.
    global _configured
    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)
    if not _configured:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
        # Keep SQL echo and botocore chatter out of application logs.
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
        logging.getLogger("botocore").setLevel(logging.WARNING)
        _configured = True
    logging.getLogger().setLevel(level)
