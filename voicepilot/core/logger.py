from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

# Libraries that log every HTTP request or locale lookup at INFO.
_CHATTY = ("urllib3", "requests", "dateparser", "faster_whisper")


def setup_logging(log_dir: str = "logs", level: int = logging.INFO, *, console: bool = True) -> logging.Logger:
    """
    Configure the `voicepilot` logger: a rotating `voicepilot.log` under `log_dir`
    plus a bare console handler. Safe to call more than once.
    """
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger("voicepilot")
    logger.setLevel(level)
    logger.propagate = False

    log_path = os.path.abspath(os.path.join(log_dir, "voicepilot.log"))
    for h in list(logger.handlers):
        # a second call with a new log_dir moves the file handler
        if isinstance(h, RotatingFileHandler) and h.baseFilename != log_path:
            logger.removeHandler(h)
            h.close()
    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        fh = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
        fh.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        logger.addHandler(fh)

    streams = [h for h in logger.handlers if type(h) is logging.StreamHandler]
    if console and not streams:
        sh = logging.StreamHandler()
        sh.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        logger.addHandler(sh)
    elif not console:
        for h in streams:
            logger.removeHandler(h)

    for name in _CHATTY:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return logger
