"""Structured logging setup for the event stream service."""

import logging
import json
import sys
from datetime import datetime, timezone

from ..config.settings import LoggingConfig


_RESERVED_RECORD_KEYS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName',
    'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'taskName', 'message', 'asctime', 'getMessage'
}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        # Extra fields (service name, ctx_* values)
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Text formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
        'RESET': '\033[0m'
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as colored text."""
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
        level = record.levelname

        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level}{self.COLORS['RESET']}"

        formatted = f"{timestamp} [{level}] {record.name}: {record.getMessage()}"

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


class ServiceContextFilter(logging.Filter):
    """Stamp every record with the service name."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        return True


def parse_level(level: str):
    """Map a level name to a logging level, or None if it is not one."""
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else None


def setup_logging(config: LoggingConfig, service_name: str = "ari-events") -> logging.Handler:
    """
    Setup logging configuration for the service.

    An unrecognised level falls back to DEBUG and the problem is logged once
    the handler is in place.

    Args:
        config: Logging configuration
        service_name: Name of the service for log context

    Returns:
        The handler installed on the root logger
    """
    if config.format.lower() == 'json':
        formatter = JSONFormatter()
    else:
        formatter = TextFormatter(use_colors=config.output.lower() in ('stdout', 'stderr'))

    if config.output.lower() == 'stdout':
        handler = logging.StreamHandler(sys.stdout)
    elif config.output.lower() == 'stderr':
        handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.FileHandler(config.output)

    handler.setFormatter(formatter)
    handler.addFilter(ServiceContextFilter(service_name))

    level = parse_level(config.level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level if level is not None else logging.DEBUG)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Frame-level chatter from the transport library
    logging.getLogger('websockets').setLevel(logging.INFO)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    if level is None:
        logger.error(f"Failed to parse log level {config.level!r}; using DEBUG")
    logger.info(
        f"Logging configured: level={logging.getLevelName(root_logger.level)}, "
        f"format={config.format}, output={config.output}, service={service_name}"
    )
    return handler


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional ctx_* fields."""
    extra = {f"ctx_{key}": value for key, value in context.items()}
    logger.log(level, message, extra=extra)
