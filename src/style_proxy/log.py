"""Logging configuration with credential redaction."""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Iterable

from style_proxy.credentials import CREDENTIAL_PARAMS

REDACTED = "[REDACTED]"


class RedactingFilter(logging.Filter):
    """Scrub API keys from every record before it is formatted.

    Credential-like query parameters get their value replaced, and any
    configured secret value is replaced wherever it appears.
    """

    def __init__(self, param_names: Iterable[str] = CREDENTIAL_PARAMS, secrets: Iterable[str] = ()):
        super().__init__()
        names = sorted({n.lower() for n in param_names}, key=len, reverse=True)
        self._param_pattern = re.compile(
            r"([?&](?:" + "|".join(re.escape(n) for n in names) + r")=)[^&#\s\"']*",
            re.IGNORECASE,
        )
        self._secrets = [s for s in secrets if s]

    def redact(self, text: str) -> str:
        text = self._param_pattern.sub(r"\1" + REDACTED, text)
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        if record.exc_info and record.exc_info[1] is not None:
            # Formatted tracebacks could carry URLs; keep only the scrubbed summary.
            record.exc_text = self.redact(logging.Formatter().formatException(record.exc_info))
            record.exc_info = None
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_text:
            entry["exception"] = record.exc_text
        return json.dumps(entry)


class ConsoleFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s", datefmt="%H:%M:%S")


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    param_names: Iterable[str] = CREDENTIAL_PARAMS,
    secrets: Iterable[str] = (),
) -> None:
    """Configure application logging."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if json_output else ConsoleFormatter())
    handler.addFilter(RedactingFilter(param_names, secrets))
    root_logger.addHandler(handler)

    # Quiet noisy loggers; httpx logs full request URLs at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
