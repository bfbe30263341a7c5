"""Log stream setup shared by the platform CLIs.

Every line is prefixed with a `[YYYY-MM-DD HH:MM:SS]` timestamp and secret
values (tokens, webhook secret) are masked before they reach the handler.
"""

from __future__ import annotations

import logging
import os
import re
import sys

from scripts.deploy.env_schema import secret_keys

LOG_FORMAT = "[%(asctime)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_MIN_SECRET_LENGTH = 8  # skip short values to avoid false positives

_registered: set[str] = set()


def register_secret(value: str | None) -> None:
    """Mask `value` in all subsequent log output (e.g. a token read from a dotenv file)."""
    v = str(value or "").strip()
    if len(v) >= _MIN_SECRET_LENGTH:
        _registered.add(v)


def _secret_patterns() -> list[re.Pattern]:
    values = set(_registered)
    for key in secret_keys():
        val = os.environ.get(key, "")
        if len(val) >= _MIN_SECRET_LENGTH:
            values.add(val)
    # Longer values first so a secret containing another is masked whole.
    return [re.compile(re.escape(v)) for v in sorted(values, key=len, reverse=True)]


def redact_secrets(text: str) -> str:
    """Replace known secret values with '***'."""
    for pattern in _secret_patterns():
        text = pattern.sub("***", text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Handler filter that formats the record message once and masks secrets in it."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(*, verbose: bool = False) -> None:
    """Configure the root logger with the timestamped format on stdout."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)
