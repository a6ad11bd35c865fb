"""Logging setup -- a timestamped log file per run plus console output.

Each run writes ``logs/taskrunner_<timestamp>.log`` with a ``latest.log``
symlink next to it; older files beyond ``_MAX_LOG_FILES`` are pruned.
Every handler carries a RedactingFilter so provider API keys and bearer
tokens never reach disk or the terminal.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from pathlib import Path

_LOG_PREFIX = "taskrunner_"
_MAX_LOG_FILES = 10
_FMT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at INFO
_NOISY_LOGGERS = ("LiteLLM", "litellm", "httpx", "httpcore")

_configured = False

_REDACT_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(api[_-]?key|token|secret|password|authorization)\s*[:=]\s*\S+", re.I),
    re.compile(r"(sk-[a-zA-Z0-9_\-]{20,})"),
    re.compile(r"(Bearer\s+[a-zA-Z0-9._\-]+)", re.I),
]

_REDACTED = "[REDACTED]"


def redact(text: str) -> str:
    for pattern in _REDACT_PATTERNS:
        text = pattern.sub(_REDACTED, text)
    return text


class RedactingFilter(logging.Filter):
    """Strip sensitive patterns from log records before output."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if record.args:
            args = record.args if isinstance(record.args, tuple) else (record.args,)
            new_args = tuple(redact(a) if isinstance(a, str) else a for a in args)
            record.args = new_args if isinstance(record.args, tuple) else new_args[0]  # type: ignore[assignment]
        return True


def _cleanup_old_logs(log_dir: Path) -> None:
    log_files = sorted(
        (f for f in log_dir.iterdir() if f.name.startswith(_LOG_PREFIX) and f.suffix == ".log"),
        key=lambda f: f.stat().st_mtime,
    )
    while len(log_files) > _MAX_LOG_FILES:
        log_files.pop(0).unlink(missing_ok=True)


def setup_logging(*, debug: bool = False, log_dir: Path | str = "logs") -> Path | None:
    """Configure the root logger. Returns the log file path.

    Safe to call more than once; later calls are no-ops and return None.
    """
    global _configured
    if _configured:
        return None
    _configured = True

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_file = log_dir / f"{_LOG_PREFIX}{timestamp}.log"

    latest_link = log_dir / "latest.log"
    try:
        if latest_link.is_symlink() or latest_link.exists():
            latest_link.unlink()
        os.symlink(log_file.name, latest_link)
    except OSError:
        pass  # no symlinks on this platform

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    fmt = logging.Formatter(_FMT, datefmt=_DATE_FMT)
    redact_filter = RedactingFilter()

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(fmt)
    fh.addFilter(redact_filter)
    root.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if debug else logging.WARNING)
    ch.setFormatter(fmt)
    ch.addFilter(redact_filter)
    root.addHandler(ch)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _cleanup_old_logs(log_dir)
    return log_file
