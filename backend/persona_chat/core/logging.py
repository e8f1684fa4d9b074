from __future__ import annotations

import logging

from persona_chat.core.security import redact_secrets


class RedactionFilter(logging.Filter):
    """Log filter that masks provider credentials before output."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_secrets(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                redact_secrets(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


def setup_logging(level: str) -> None:
    """Configure root logging and attach the redaction filter to its handlers."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    root = logging.getLogger()
    for handler in root.handlers:
        if not any(isinstance(item, RedactionFilter) for item in handler.filters):
            handler.addFilter(RedactionFilter())
    # httpx logs every request line at INFO, including streaming endpoints.
    logging.getLogger("httpx").setLevel(logging.WARNING)
