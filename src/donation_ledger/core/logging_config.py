import logging
import sys
import json

# Attributes passed through `extra=` that end up as top-level JSON keys.
CONTEXT_FIELDS = ("campaign_id", "payment_ref", "provider", "outcome", "event_type")

QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore", "stripe")


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, with donation context lifted out of `extra`.
    """
    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


def configure_logging(level: str = "INFO") -> None:
    """
    Routes the root logger to stdout as JSON, which CloudWatch picks up from Lambda.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
