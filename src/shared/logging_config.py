"""
Logging configuration for the hosting system service.

Every log record is tagged with the cache execution it belongs to (one per
web request, REST call or CLI run), the request id when there is one, and
the execution source. structlog loggers are routed through the standard
library so both kinds of logger share the same handlers.
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

import structlog

# Execution context carried through async tasks
execution_id: ContextVar[Optional[str]] = ContextVar('execution_id', default=None)
request_id: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
execution_source: ContextVar[Optional[str]] = ContextVar('execution_source', default=None)

CONTEXT_FIELDS = ('execution_id', 'request_id', 'source')


class ExecutionContextFilter(logging.Filter):
    """Copy the current execution context onto each record."""

    def filter(self, record):
        record.execution_id = execution_id.get() or '-'
        record.request_id = request_id.get() or '-'
        record.source = execution_source.get() or '-'
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    # Attributes every LogRecord carries
    STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {'message', 'asctime'}

    def __init__(self, include_extra=True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record):
        entry = {
            'ts': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname.lower(),
            'logger': record.name,
            'event': record.getMessage(),
            'location': f"{record.module}:{record.funcName}:{record.lineno}",
            'pid': record.process,
        }
        for name in CONTEXT_FIELDS:
            entry[name] = getattr(record, name, '-')

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            entry['error'] = {
                'type': exc_type.__name__,
                'message': str(exc_value),
                'traceback': traceback.format_exception(exc_type, exc_value, exc_tb),
            }

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key in entry or key in self.STANDARD_ATTRS or key.startswith('_'):
                    continue
                entry[key] = value if isinstance(value, (str, int, float, bool, type(None))) else repr(value)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human readable output, colored by level when writing to a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: '\033[2m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[1;31m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt=None, colors: bool = True):
        super().__init__(fmt)
        self.colors = colors

    def format(self, record):
        line = super().format(record)

        execution = getattr(record, 'execution_id', '-')
        if execution != '-':
            line = f"{line} [{getattr(record, 'source', '-')}:{execution}]"

        color = self.LEVEL_COLORS.get(record.levelno) if self.colors else None
        return f"{color}{line}{self.RESET}" if color else line


class LoggingConfig:
    """Process-wide logging setup for the API service and the CLI."""

    DEFAULT_FORMAT = '%(asctime)s %(levelname)-8s %(name)s: %(message)s'
    FORMATS = ('json', 'colored', 'standard')

    COMPONENT_LOGGERS = ('src.cache_control', 'src.system_api', 'src.cli', 'src.shared')

    # Libraries that are too chatty below WARNING
    QUIET_LOGGERS = ('uvicorn.access', 'httpx', 'httpcore', 'sqlalchemy.engine', 'aiosqlite', 'asyncio')

    @classmethod
    def build_formatter(cls, format_type: str) -> logging.Formatter:
        if format_type == 'json':
            return JSONFormatter()
        if format_type == 'colored':
            return ConsoleFormatter(cls.DEFAULT_FORMAT)
        return ConsoleFormatter(cls.DEFAULT_FORMAT, colors=False)

    @classmethod
    def setup_logging(
        cls,
        level: Union[str, int] = logging.INFO,
        format_type: str = 'colored',
        log_file: Optional[str] = None,
        console_output: bool = True,
        stream=None
    ):
        """
        Replace the root handlers with this service's handlers.

        Args:
            level: Root level
            format_type: One of FORMATS, for the console handler
            log_file: Optional file that receives JSON lines
            console_output: Attach the console handler
            stream: Console stream. stderr by default so CLI results on stdout stay clean
        """
        handlers: List[logging.Handler] = []

        if console_output:
            console = logging.StreamHandler(stream or sys.stderr)
            console.setFormatter(cls.build_formatter(format_type))
            handlers.append(console)

        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(JSONFormatter())
            handlers.append(file_handler)

        context_filter = ExecutionContextFilter()
        for handler in handlers:
            handler.setLevel(level)
            handler.addFilter(context_filter)

        root = logging.getLogger()
        root.handlers[:] = handlers
        root.setLevel(level)

        for name in cls.QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        configure_structlog()

        structlog.get_logger(__name__).debug(
            "Logging configured",
            format_type=format_type,
            log_file=log_file
        )

    @classmethod
    def get_config_dict(
        cls,
        level: str = 'INFO',
        format_type: str = 'colored',
        log_file: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        dictConfig equivalent of setup_logging, handed to uvicorn.

        Args:
            level: Root level
            format_type: One of FORMATS
            log_file: Optional file that receives JSON lines

        Returns:
            Logging configuration dictionary
        """
        handlers = {
            'console': {
                'class': 'logging.StreamHandler',
                'level': level,
                'formatter': format_type,
                'filters': ['execution'],
                'stream': 'ext://sys.stderr'
            }
        }
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handlers['file'] = {
                'class': 'logging.FileHandler',
                'level': level,
                'formatter': 'json',
                'filters': ['execution'],
                'filename': log_file
            }

        return {
            'version': 1,
            'disable_existing_loggers': False,
            'filters': {
                'execution': {'()': ExecutionContextFilter}
            },
            'formatters': {
                'json': {'()': JSONFormatter},
                'colored': {'()': ConsoleFormatter, 'fmt': cls.DEFAULT_FORMAT},
                'standard': {'()': ConsoleFormatter, 'fmt': cls.DEFAULT_FORMAT, 'colors': False},
            },
            'handlers': handlers,
            'loggers': {
                **{name: {'level': level} for name in cls.COMPONENT_LOGGERS},
                **{name: {'level': 'WARNING'} for name in cls.QUIET_LOGGERS},
            },
            'root': {'level': level, 'handlers': list(handlers)}
        }


def configure_structlog() -> None:
    """Route structlog through the standard library handlers."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=['event'], drop_missing=True),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class ExecutionContext:
    """
    Bind an execution to the current context.

    Usage:
        with ExecutionContext(source="cli") as context:
            logger.info("Cache flushed")  # tagged with context.execution_id
    """

    def __init__(self, execution_id_value: Optional[str] = None, request_id_value: Optional[str] = None,
                 source: Optional[str] = None):
        self.execution_id_value = execution_id_value or uuid4().hex[:12]
        self.request_id_value = request_id_value
        self.source = source
        self._tokens = []

    def __enter__(self):
        self._tokens.append((execution_id, execution_id.set(self.execution_id_value)))
        if self.request_id_value:
            self._tokens.append((request_id, request_id.set(self.request_id_value)))
        if self.source:
            self._tokens.append((execution_source, execution_source.set(self.source)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


def get_execution_id() -> Optional[str]:
    return execution_id.get()


def get_request_id() -> Optional[str]:
    return request_id.get()


def log_format_for(settings) -> str:
    """Production always logs JSON."""
    return 'json' if settings.is_production() else settings.monitoring.log_format


def initialize_logging(settings=None, level: Optional[Union[str, int]] = None, stream=None):
    """Set up logging from the monitoring settings, optionally overriding the level."""
    if settings is None:
        from .config import get_settings
        settings = get_settings()

    monitoring = settings.monitoring
    LoggingConfig.setup_logging(
        level=level or monitoring.log_level.value,
        format_type=log_format_for(settings),
        log_file=monitoring.log_file,
        stream=stream
    )
