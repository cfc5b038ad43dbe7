"""Logging setup: one stream handler, key=value messages, secrets masked."""

import logging
import re

_CONTROL_CHARS = re.compile(r"[\r\n\t\x00-\x1f\x7f]")

_SENSITIVE_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"(bearer\s+)([A-Za-z0-9_\-\.]{16,})", re.IGNORECASE), r"\1***"),
    (re.compile(r"(x-api-key\s*[:=]\s*)(\S+)", re.IGNORECASE), r"\1***"),
    (re.compile(r"(password\s*[:=]\s*['\"]?)([^'\"\s]+)", re.IGNORECASE), r"\1***"),
    (re.compile(r"(session_?id\s*[:=]\s*['\"]?)([A-Za-z0-9]{16,})", re.IGNORECASE), r"\1***"),
]


def sanitize_for_logging(value: str | None) -> str:
    """Strip control characters from user-supplied text (log injection)."""
    if not value:
        return ""
    return _CONTROL_CHARS.sub("", value)


def mask_secrets(message: str) -> str:
    for pattern, replacement in _SENSITIVE_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def mask_key(raw_key: str | None) -> str:
    """Show only enough of an API key to tell keys apart in logs."""
    if not raw_key:
        return "-"
    return raw_key[:12] + "***"


class SensitiveDataFilter(logging.Filter):
    """Masks bearer tokens, API keys and passwords in formatted records."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_secrets(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger("gatekeeper")
    if any(isinstance(f, SensitiveDataFilter) for h in root.handlers for f in h.filters):
        root.setLevel(level.upper())
        return

    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)
    root.setLevel(level.upper())
