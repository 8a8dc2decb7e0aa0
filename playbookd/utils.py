import json
import logging
import re
import uuid
from datetime import UTC, datetime
from typing import Any

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Convert a name to a URL-safe slug."""
    slug = name.strip().lower()
    slug = _NON_ALPHANUMERIC.sub("-", slug)
    return slug.strip("-")


def generate_id() -> str:
    """Random unique identifier for playbooks, executions and lessons."""
    return str(uuid.uuid4())


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        event_data = getattr(record, "event_data", None)
        if event_data:
            log_obj.update(event_data)
        return json.dumps(log_obj, default=str)


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Configure structured JSON logging"""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    logging.root.handlers = []
    logging.root.addHandler(handler)
    logging.root.setLevel(log_level)


def log_event(event_type: str, data: dict[str, Any]) -> None:
    """Log structured event with metadata"""
    logger = logging.getLogger("playbookd.events")
    event_data = {"event_type": event_type, **data}
    logger.info(event_type, extra={"event_data": event_data})
