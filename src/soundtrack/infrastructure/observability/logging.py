"""Structured logging: JSON or compact text, every line tagged with its sync run."""

import contextvars
import logging
import sys
import traceback
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

# Hey future me, there is no HTTP request here to hang a request id on - the "request" is one
# scheduler cycle or one user's sync. contextvars give every asyncio task its own copy, so
# concurrent syncs (Semaphore pool) never see each other's id.
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

# Third-party loggers that drown our own output at INFO/DEBUG
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosqlite", "sqlalchemy.engine")

# Credential values that must never reach a log line, even if someone passes them as `extra`
_CREDENTIAL_FIELDS = frozenset(
    {"access_token", "refresh_token", "code", "client_secret", "authorization"}
)
_MASK = "***"


def get_correlation_id() -> str:
    """Get the current correlation ID from context.

    Returns:
        Current correlation ID or empty string if not set
    """
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID in context (generates a UUID if None) and return it."""
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    correlation_id_var.set(correlation_id)
    return correlation_id


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Run a block under its own correlation ID and restore the previous one afterwards.

    Example:
        >>> with correlation_scope() as cid:
        ...     logger.info("history_sync.started")  # carries cid
    """
    token = correlation_id_var.set(correlation_id or str(uuid.uuid4()))
    try:
        yield correlation_id_var.get()
    finally:
        correlation_id_var.reset(token)


class SyncContextFilter(logging.Filter):
    """Tag records with the app name and the sync run they belong to.

    `sync_ref` is the first 8 chars of the correlation id ("-" outside a run). That's
    enough to grep one user's sync out of a busy terminal.
    """

    def __init__(self, app_name: str = "soundtrack") -> None:
        super().__init__()
        self.app_name = app_name

    def filter(self, record: logging.LogRecord) -> bool:
        correlation_id = get_correlation_id()
        record.correlation_id = correlation_id
        record.sync_ref = correlation_id[:8] if correlation_id else "-"
        record.app_name = self.app_name
        return True


class CompactExceptionFormatter(logging.Formatter):
    """Text formatter that shows exception chains compactly, root cause first.

    Only frames from our own package are printed - httpx/sqlalchemy internals are noise.

    Example output:
    12:00:01 │ ERROR   │ 3f2a9c1d │ ...history_sync_worker:206 │ history_sync.failed
    ╰─► ConnectError: All connection attempts failed
        File "spotify_client.py", line 140, in _send
          response = await client.request(method, url, **kwargs)
    ╰─► ProviderError: Status 503: upstream unavailable
    """

    package_marker = "soundtrack"

    def formatException(self, ei: Any) -> str:
        _, exc_value, _ = ei
        if exc_value is None:
            return ""

        chain: list[BaseException] = []
        current: BaseException | None = exc_value
        while current is not None and current not in chain:
            chain.append(current)
            current = current.__cause__ or current.__context__
        chain.reverse()

        lines: list[str] = []
        for exc in chain:
            lines.append(f"╰─► {exc.__class__.__name__}: {exc}")
            if exc.__traceback__ is None:
                continue
            for frame in traceback.extract_tb(exc.__traceback__):
                if "/site-packages/" in frame.filename:
                    continue
                if self.package_marker not in frame.filename:
                    continue
                lines.append(
                    f'    File "{Path(frame.filename).name}", line {frame.lineno}, in {frame.name}'
                )
                if frame.line:
                    lines.append(f"      {frame.line.strip()}")
        return "\n".join(lines)


class CustomJsonFormatter(jsonlogger.JsonFormatter):  # type: ignore[misc]
    """One JSON object per line for log shipping.

    Extras (user_id, artist_id, fetched, inserted, ...) become top-level keys. Credential
    fields are masked.
    """

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["app"] = getattr(record, "app_name", None) or "soundtrack"

        correlation_id = getattr(record, "correlation_id", "")
        if correlation_id:
            log_record["correlation_id"] = correlation_id
        # sync_ref/app_name are for the text format only
        log_record.pop("sync_ref", None)
        log_record.pop("app_name", None)

        for key in _CREDENTIAL_FIELDS.intersection(log_record):
            if log_record[key]:
                log_record[key] = _MASK

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)


# Listen future me, call this ONCE at startup (lifespan does it). It replaces all root handlers,
# so calling it again in tests is safe. json_format=True for production log shipping,
# False for a terminal.
def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "soundtrack",
) -> None:
    """Configure root logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines instead of the compact text format
        app_name: Application name attached to every record
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(SyncContextFilter(app_name))

    if json_format:
        formatter: logging.Formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = CompactExceptionFormatter(
            fmt="%(asctime)s │ %(levelname)-7s │ %(sync_ref)s │ "
            "%(name)s:%(lineno)d │ %(message)s",
            datefmt="%H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "logging.configured",
        extra={"log_level": log_level, "json_format": json_format},
    )
