"""
Logging utilities with sensitive data masking.

Payment credentials, OAuth secrets and bearer tokens pass through this
service; everything that reaches a log record goes through these helpers
first.

Usage:
    from ucp_gateway.logging import mask_sensitive_data, configure_logging

    configure_logging(level=logging.INFO, json_format=True)
    logger.info("Tokenizing credential", extra={"data": mask_sensitive_data(body)})
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from .constants import LoggingConfig


def mask_value(value: str, show_chars: int = 4) -> str:
    """Mask a sensitive value, showing only the first/last characters."""
    if not value or len(value) <= show_chars * 2:
        return LoggingConfig.MASK_PATTERN

    return f"{value[:show_chars]}...{value[-show_chars:]}"


def mask_card_number(pan: str) -> str:
    """Render a PAN as ``**** 1234``."""
    digits = re.sub(r"\D", "", pan or "")
    if len(digits) < 4:
        return LoggingConfig.MASK_PATTERN
    return f"**** {digits[-4:]}"


def is_sensitive_key(key: str) -> bool:
    key_lower = key.lower().replace("-", "_")
    return key in LoggingConfig.SENSITIVE_FIELDS or key_lower in LoggingConfig.SENSITIVE_FIELDS or any(
        sensitive in key_lower
        for sensitive in ("secret", "password", "token", "verifier", "credential", "authorization")
    )


def mask_sensitive_data(
    data: Any,
    additional_fields: Optional[Sequence[str]] = None,
    mask_pattern: str = LoggingConfig.MASK_PATTERN,
    _depth: int = 0,
    _max_depth: int = 10,
) -> Any:
    """Recursively mask sensitive data in a data structure.

    Args:
        data: The data structure to mask (dict, list, or scalar)
        additional_fields: Additional field names to mask
        mask_pattern: Pattern to replace sensitive values with

    Returns:
        Copy of data with sensitive values masked
    """
    if _depth > _max_depth:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if is_sensitive_key(str(key)) or (additional_fields and key in additional_fields):
                result[key] = mask_pattern
            else:
                result[key] = mask_sensitive_data(
                    value, additional_fields, mask_pattern, _depth + 1, _max_depth
                )
        return result

    if isinstance(data, (list, tuple)):
        return type(data)(
            mask_sensitive_data(item, additional_fields, mask_pattern, _depth + 1, _max_depth)
            for item in data
        )

    if isinstance(data, str):
        return _mask_inline_patterns(data)

    return data


_INLINE_PATTERNS = [
    (re.compile(r"(Bearer\s+)[a-zA-Z0-9._~+/=-]+", re.IGNORECASE), r"\1***"),
    (re.compile(r"(Basic\s+)[a-zA-Z0-9+/=]+", re.IGNORECASE), r"\1***"),
    (re.compile(r"\beyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\b"), "***JWT***"),
    (re.compile(r"\b(rt_|tok_|wix_tok_|ntok_)[a-zA-Z0-9]+\b"), r"\1***"),
    # 13-19 digit runs look like card numbers
    (re.compile(r"\b\d{9,15}(\d{4})\b"), r"****\1"),
    (re.compile(r"(https?://)[^:/\s]+:[^@\s]+@"), r"\1***:***@"),
]


def _mask_inline_patterns(text: str) -> str:
    if len(text) > LoggingConfig.MAX_LOG_MESSAGE_LENGTH:
        text = text[: LoggingConfig.MAX_LOG_MESSAGE_LENGTH] + "...[truncated]"
    for pattern, replacement in _INLINE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SensitiveDataFilter(logging.Filter):
    """Masks tokens, secrets and card numbers in the rendered message.

    Attached to the root handler so both plain and JSON output are covered.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = _mask_inline_patterns(record.getMessage())
        record.args = None
        return True


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _mask_inline_patterns(record.getMessage()),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        data = getattr(record, "data", None)
        if data:
            log_data["data"] = mask_sensitive_data(data)

        return json.dumps(log_data, default=str)


def configure_logging(level: int | str = logging.INFO, json_format: bool = False) -> None:
    """Configure root logging for the gateway process."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.addFilter(SensitiveDataFilter())
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    logging.basicConfig(level=level, handlers=[handler], force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


__all__ = [
    "mask_value",
    "mask_card_number",
    "is_sensitive_key",
    "mask_sensitive_data",
    "SensitiveDataFilter",
    "JsonFormatter",
    "configure_logging",
]
