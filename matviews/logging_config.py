import json
import logging
from typing import Optional

from matviews.config import settings


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> logging.Logger:
    """
    Install a single stream handler on the root logger.

    Args:
        level: Log level name, defaults to ``settings.log_level``
        json_output: Emit one JSON object per line, defaults to ``settings.log_json``

    Returns:
        The configured root logger
    """
    level = (level or settings.log_level).upper()
    if json_output is None:
        json_output = settings.log_json

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    return root
