import logging
import re
from typing import Any, Literal, TypeGuard, overload

from pythonjsonlogger.json import JsonFormatter

__all__ = (
    "LogFormat",
    "RedactingFormatter",
    "S3JsonFormatter",
    "init_logging",
    "is_valid_log_format",
    "redact",
)

LogFormat = Literal["json", "console"]

_LOG_FMT = "%(asctime)s [%(levelname)s] %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"

_SECRET_RE = re.compile(
    r"(?P<name>X-Amz-Signature=|X-Amz-Credential=|x-amz-signature['\"]?\s*[:,]\s*['\"]?|Signature=|Credential=)"
    r"(?P<value>[^&\s,'\"]+)",
    re.IGNORECASE,
)


def redact(text: str) -> str:
    """Mask signatures and credentials found in presigned URLs or Authorization headers."""
    return _SECRET_RE.sub(lambda m: f"{m.group('name')}***", text)


class RedactingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


class S3JsonFormatter(JsonFormatter):
    def __init__(self, version: str, *args, **kwargs):
        self.version: str = version
        super().__init__(*args, **kwargs)

    def add_fields(self, log_data: dict[str, Any], record: logging.LogRecord, message_dict: dict[str, Any]):
        super().add_fields(log_data, record, message_dict)

        log_data.pop("color_message", None)
        if isinstance(log_data.get("message"), str):
            log_data["message"] = redact(log_data["message"])
        if not log_data.get("version"):
            log_data["version"] = self.version


@overload
def init_logging(
    logger: logging.Logger,
    log_format: Literal["json"],
    version: str,
    *,
    stream_handler: logging.StreamHandler | None = None,
) -> tuple[S3JsonFormatter, logging.StreamHandler]: ...


@overload
def init_logging(
    logger: logging.Logger,
    log_format: Literal["console"],
    version: str,
    *,
    stream_handler: logging.StreamHandler | None = None,
) -> tuple[RedactingFormatter, logging.StreamHandler]: ...


def init_logging(
    logger: logging.Logger, log_format: LogFormat, version: str, *, stream_handler: logging.StreamHandler | None = None
):
    """
    Attach a handler to `logger` (usually `logging.getLogger("s3req")`).

    Signatures and credentials are masked in both formats.
    """
    _stream_handler = stream_handler or logging.StreamHandler()
    match log_format:
        case "json":
            formatter = S3JsonFormatter(version, _LOG_FMT, datefmt=_DATE_FMT)
        case "console":
            formatter = RedactingFormatter(_LOG_FMT, datefmt=_DATE_FMT)
        case _:
            raise NotImplementedError(f"Invalid log format {log_format!r}")

    _stream_handler.setFormatter(formatter)
    logger.addHandler(_stream_handler)

    return formatter, _stream_handler


def is_valid_log_format(log_format: str) -> TypeGuard[LogFormat]:
    return log_format in {"json", "console"}
