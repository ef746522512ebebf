"""SchoolSync logging infrastructure.

- Structured JSON logging for production
- Rich console output for development
- Correlation id and tenant scope carried across awaits
- Masking of bearer tokens and secrets

Usage:
    from schoolsync.logutils import get_logger, with_context

    logger = get_logger(__name__)

    with with_context(operation="revalidate", school_id="s1"):
        logger.info("Revalidating", extra={"extra_data": {"keys": 3}})
"""

from .config import Environment, LogConfig, LogOutput, get_config, reset_config, set_config
from .context import LogContext, clear_context, get_context, get_correlation_id, with_context
from .formatters import CompactFormatter, JSONFormatter, StandardFormatter
from .logger import get_logger, reset_logging
from .masking import MASK, is_sensitive_key, mask_dict, mask_sensitive_string

__all__ = [
    "get_logger",
    "reset_logging",
    "with_context",
    "get_context",
    "clear_context",
    "get_correlation_id",
    "LogContext",
    "LogConfig",
    "LogOutput",
    "Environment",
    "get_config",
    "set_config",
    "reset_config",
    "JSONFormatter",
    "StandardFormatter",
    "CompactFormatter",
    "mask_sensitive_string",
    "mask_dict",
    "is_sensitive_key",
    "MASK",
]
