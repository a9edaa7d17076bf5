# src/taskminder/logging_setup.py

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path

_EMAIL_RE = re.compile(r"([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})")
_PHONE_RE = re.compile(r"\+\d{7,15}\b|\(?\b\d{3}\)?[-.\s]\d{3}[-.\s]\d{4}\b")
_BEARER_RE = re.compile(r"Bearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)


def _mask_local(local: str) -> str:
    if len(local) <= 2:
        return "***"
    return local[0] + "*" * (len(local) - 2) + local[-1]


def redact(text: str) -> str:
    """Mask e-mail local parts, phone numbers and bearer tokens in a log line."""
    text = _BEARER_RE.sub("Bearer [REDACTED_TOKEN]", text)
    text = _EMAIL_RE.sub(lambda m: f"{_mask_local(m.group(1))}@{m.group(2)}", text)
    return _PHONE_RE.sub("[REDACTED_PHONE]", text)


class RedactingFilter(logging.Filter):
    """
    Rewrite the rendered message so recipient contact data never reaches a handler.

    Args are merged into msg here; handlers see the final, redacted string.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            rendered = record.getMessage()
        except Exception:
            return True
        record.msg = redact(rendered)
        record.args = None
        return True


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable:
    - allow all taskminder logs
    - suppress Python warnings (captured as 'py.warnings') unless ERROR+
    - any other third-party logger only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name == "taskminder" or name.startswith("taskminder."):
            return True

        if name == "py.warnings":
            return record.levelno >= logging.ERROR

        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskminder",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> None:
    """
    Configure logging with:
    - Console handler: filtered for interactive use
    - File handler: full logs for debugging
    Both handlers redact contact data.

    Call this ONCE, very early (before first logger.info).
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "taskminder.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Remove any pre-existing handlers to avoid duplicates.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    redacting = RedactingFilter()

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(redacting)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    fh.addFilter(redacting)
    root.addHandler(fh)

    logging.captureWarnings(True)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
