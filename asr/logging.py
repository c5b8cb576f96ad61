from __future__ import annotations

import json
import logging
import os
import re
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from typing import Any, Mapping, MutableMapping, Optional

from asr.registry.keys import AccountId, Keypair


@dataclass(frozen=True)
class LoggingOptions:
    level: str = "INFO"
    format: str = "text"  # text | json
    file: Optional[str] = None
    redact: bool = True


_SECRET_KEY_FRAGMENTS = (
    "keypair",
    "mnemonic",
    "password",
    "private_key",
    "secret",
    "seed_phrase",
    "signing_key",
)

# Account ids are public but long; logs keep the same 16-char prefix the
# registry uses in its own messages.
ACCOUNT_ID_PREFIX = 16
_RE_ACCOUNT_HEX = re.compile(r"^[0-9a-f]{64}$")

_RE_KV = re.compile(
    r"(?P<key>private[_-]?key|secret|seed[_-]?phrase|signing[_-]?key)\s*[:=]\s*(?P<value>[^\s,;]+)",
    flags=re.IGNORECASE,
)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context is not None:
            payload["context"] = context
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _looks_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SECRET_KEY_FRAGMENTS)


def _redact_str(value: str) -> str:
    def _sub(match: re.Match[str]) -> str:
        key = match.group("key")
        return f"{key}=[REDACTED]"

    return _RE_KV.sub(_sub, value)


def _redact_any(value: Any, *, depth: int, max_depth: int) -> Any:
    """Redact secret-like values in nested structures.

    Preconditions:
        - max_depth >= 0

    Postconditions:
        - Secret-like keys have their values replaced with "[REDACTED]"
        - Raw bytes and Keypair objects never reach a handler
        - Account ids (objects or 64-char hex) are cut to their prefix

    Invariants:
        - Does not recurse beyond max_depth
    """
    if depth > max_depth:
        return "[REDACTED]"

    if isinstance(value, Keypair):
        return "[REDACTED]"

    if isinstance(value, AccountId):
        return value.hex()[:ACCOUNT_ID_PREFIX]

    if isinstance(value, str):
        if _RE_ACCOUNT_HEX.match(value):
            return value[:ACCOUNT_ID_PREFIX]
        return _redact_str(value)

    if isinstance(value, bytes):
        return "[REDACTED]"

    if isinstance(value, Mapping):
        redacted: dict[Any, Any] = {}
        for k, v in value.items():
            if isinstance(k, str) and _looks_secret_key(k):
                redacted[k] = "[REDACTED]"
                continue
            redacted[k] = _redact_any(v, depth=depth + 1, max_depth=max_depth)
        return redacted

    if isinstance(value, (list, tuple)):
        return [_redact_any(v, depth=depth + 1, max_depth=max_depth) for v in value]

    return value


class RedactionFilter(logging.Filter):
    def __init__(self, *, max_depth: int = 4):
        super().__init__()
        self._max_depth = max_depth

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _redact_str(record.msg)

        context = getattr(record, "context", None)
        if isinstance(context, MutableMapping):
            record.context = _redact_any(context, depth=0, max_depth=self._max_depth)

        return True


def _normalize_level(level: str) -> str:
    return level.strip().upper()


def _normalize_format(fmt: str) -> str:
    lowered = fmt.strip().lower()
    if lowered in {"text", "json"}:
        return lowered
    raise ValueError(f"Invalid log format: {fmt}")


def load_logging_options_from_env() -> LoggingOptions:
    """Load logging options from environment.

    Env vars:
        - ASR_LOG_LEVEL
        - ASR_LOG_FORMAT
        - ASR_LOG_FILE
        - ASR_LOG_REDACT ("0" disables redaction)
    """
    level = os.getenv("ASR_LOG_LEVEL", "INFO")
    fmt = os.getenv("ASR_LOG_FORMAT", "text")
    file = os.getenv("ASR_LOG_FILE")
    redact_env = os.getenv("ASR_LOG_REDACT", "1")
    redact = redact_env not in {"0", "false", "FALSE"}
    return LoggingOptions(level=level, format=fmt, file=file, redact=redact)


def _build_formatter(fmt: str, *, with_time: bool) -> logging.Formatter:
    if _normalize_format(fmt) == "json":
        return JSONFormatter()
    if with_time:
        return logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    return logging.Formatter("%(levelname)s %(name)s: %(message)s")


def configure_logging(options: LoggingOptions) -> None:
    """Configure logging for the registry.

    Preconditions:
        - options.level is a valid logging level name
        - options.format in {"text", "json"}

    Postconditions:
        - Logger hierarchy under "asr" is configured
        - Logs emit to stderr (and optional rotating file)
        - Redaction filter attached unless options.redact is False
    """
    logger = logging.getLogger("asr")
    logger.setLevel(getattr(logging, _normalize_level(options.level), logging.INFO))

    logger.handlers.clear()
    logger.propagate = False

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_build_formatter(options.format, with_time=False))
    if options.redact:
        handler.addFilter(RedactionFilter())
    logger.addHandler(handler)

    if options.file:
        file_handler = RotatingFileHandler(
            options.file,
            maxBytes=10 * 1024 * 1024,
            backupCount=3,
        )
        file_handler.setFormatter(_build_formatter(options.format, with_time=True))
        if options.redact:
            file_handler.addFilter(RedactionFilter())
        logger.addHandler(file_handler)
