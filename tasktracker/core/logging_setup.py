import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(level: str | int = logging.INFO) -> None:
    """
    Configure root logging once, early in startup.

    Application loggers follow `level`; chatty third-party libraries are
    held at WARNING so request logs stay readable.
    """
    root = logging.getLogger()
    if any(getattr(h, "_tasktracker", False) for h in root.handlers):
        root.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._tasktracker = True  # marks our handler so repeated calls don't stack
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("httpx", "openai", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
