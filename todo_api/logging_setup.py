import logging
import sys

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """
    Configure root logging with a single stderr handler.

    Safe to call more than once (serverless cold starts, reloads): the handler
    is only installed the first time.
    """
    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, "_todo_api", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._todo_api = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    # SQL echo is noisy; keep engine logs to warnings.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
