#!/usr/bin/env python3
"""
Doc Medic Configuration & Logging Module
========================================
Centralized configuration, structured logging, and error types.

Version: reads from version.json (module v1.0)
"""

import os
import sys
import json
import logging
import uuid
import time
import functools
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable
from pathlib import Path
from dataclasses import dataclass, field
from contextlib import contextmanager
import threading

# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================
DEFAULT_LOOKUP_PATH = "/lookup"       # Lookup endpoint path on the API host
DEFAULT_LOOKUP_TIMEOUT = 30           # Seconds per HTTP request
DEFAULT_LOOKUP_RETRIES = 3            # Retry attempts for transient failures
DEFAULT_CACHE_TTL_SECONDS = 60 * 60   # Resolver cache lifetime (one hour)
DEFAULT_BREAKER_THRESHOLD = 3         # Consecutive failed lookup attempts that open the breaker
DEFAULT_BREAKER_OPEN_SECONDS = 60     # How long an open breaker rejects lookups
MAX_LOOKUP_TIMEOUT = 300              # Upper bound accepted by validate()
MAX_LOOKUP_RETRIES = 10
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024  # 5MB max per log file
LOG_BACKUP_COUNT = 5                  # Number of log backup files to keep

ENV_PREFIX = "DOCMEDIC_"

# =============================================================================
# VERSION - Read from version.json (Single Source of Truth)
# =============================================================================
def _load_version():
    """Load version from version.json file."""
    version_file = Path(__file__).parent / 'version.json'
    if version_file.exists():
        try:
            with open(version_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
                return data.get('version', '1.0.0')
        except (OSError, ValueError):
            pass
    return '1.0.0'  # Fallback version

__version__ = _load_version()
VERSION = __version__
APP_NAME = "DocMedic"


def _default_workers() -> int:
    return max(1, (os.cpu_count() or 2) - 1)


def _env(name: str, default: str) -> str:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================

@dataclass
class AppConfig:
    """Application configuration with safe defaults."""

    # Lookup API (Power Automate flow in front of The Source)
    lookup_base_url: str = ""
    lookup_path: str = DEFAULT_LOOKUP_PATH
    lookup_timeout: int = DEFAULT_LOOKUP_TIMEOUT
    lookup_retries: int = DEFAULT_LOOKUP_RETRIES
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    breaker_threshold: int = DEFAULT_BREAKER_THRESHOLD
    breaker_open_seconds: int = DEFAULT_BREAKER_OPEN_SECONDS

    # Batch processing
    max_workers: int = field(default_factory=_default_workers)
    allowed_extensions: tuple = ('.docx',)

    # Paths
    log_dir: Path = field(default_factory=lambda: Path.cwd() / 'logs')

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # Options: json, text
    log_to_file: bool = False
    log_to_console: bool = True

    def __post_init__(self):
        """Normalize configuration values."""
        self.log_dir = Path(self.log_dir)
        if self.log_to_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        # Quiet logs in production environment
        if os.environ.get(f'{ENV_PREFIX}ENV', 'development').lower() == 'production':
            self.log_level = "WARNING"

    @property
    def lookup_url(self) -> str:
        """Full URL of the lookup endpoint (empty when not configured)."""
        if not self.lookup_base_url:
            return ""
        return self.lookup_base_url.rstrip('/') + '/' + self.lookup_path.lstrip('/')

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Load configuration from environment variables."""
        return cls(
            lookup_base_url=_env('LOOKUP_BASE_URL', ''),
            lookup_path=_env('LOOKUP_PATH', DEFAULT_LOOKUP_PATH),
            lookup_timeout=int(_env('LOOKUP_TIMEOUT', str(DEFAULT_LOOKUP_TIMEOUT))),
            lookup_retries=int(_env('LOOKUP_RETRIES', str(DEFAULT_LOOKUP_RETRIES))),
            cache_ttl_seconds=int(_env('CACHE_TTL', str(DEFAULT_CACHE_TTL_SECONDS))),
            breaker_threshold=int(_env('BREAKER_THRESHOLD', str(DEFAULT_BREAKER_THRESHOLD))),
            breaker_open_seconds=int(_env('BREAKER_SECONDS', str(DEFAULT_BREAKER_OPEN_SECONDS))),
            max_workers=int(_env('MAX_WORKERS', str(_default_workers()))),
            log_dir=Path(_env('LOG_DIR', str(Path.cwd() / 'logs'))),
            log_level=_env('LOG_LEVEL', 'INFO'),
            log_format=_env('LOG_FORMAT', 'text'),
            log_to_file=_env('LOG_TO_FILE', 'false').lower() == 'true',
        )

    def validate(self) -> tuple:
        """Validate configuration and return (is_valid, errors)."""
        errors = []

        if self.lookup_base_url and not self.lookup_base_url.lower().startswith(('http://', 'https://')):
            errors.append("lookup_base_url must start with http:// or https://")

        if self.lookup_timeout < 1 or self.lookup_timeout > MAX_LOOKUP_TIMEOUT:
            errors.append(f"lookup_timeout must be between 1 and {MAX_LOOKUP_TIMEOUT} seconds")

        if self.lookup_retries < 0 or self.lookup_retries > MAX_LOOKUP_RETRIES:
            errors.append(f"lookup_retries must be between 0 and {MAX_LOOKUP_RETRIES}")

        if self.cache_ttl_seconds < 0:
            errors.append("cache_ttl_seconds cannot be negative")

        if self.breaker_threshold < 1:
            errors.append("breaker_threshold must be at least 1")

        if self.breaker_open_seconds < 0:
            errors.append("breaker_open_seconds cannot be negative")

        if self.max_workers < 1:
            errors.append("max_workers must be at least 1")

        if self.log_format not in ('json', 'text'):
            errors.append(f"Invalid log_format: {self.log_format}. Must be 'json' or 'text'")

        if self.log_level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"Invalid log_level: {self.log_level}")

        return (len(errors) == 0, errors)


# Global config instance
_config: Optional[AppConfig] = None

def get_config() -> AppConfig:
    """Get or create the global configuration."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig):
    """Install an explicit configuration (CLI overrides, tests)."""
    global _config
    _config = config


def reset_config():
    """Reset the global configuration (for testing)."""
    global _config
    _config = None


# =============================================================================
# STRUCTURED LOGGING
# =============================================================================

class StructuredLogger:
    """Thread-safe structured logger with correlation IDs."""

    _local = threading.local()

    def __init__(self, name: str, config: Optional[AppConfig] = None):
        self.name = name
        self.config = config or get_config()
        self._setup_logger()

    def _setup_logger(self):
        """Configure the underlying Python logger."""
        self.logger = logging.getLogger(self.name)
        self.logger.setLevel(getattr(logging, self.config.log_level.upper(), logging.INFO))
        self.logger.handlers.clear()
        self.logger.propagate = False

        if self.config.log_format == 'json':
            formatter = JsonFormatter()
        else:
            formatter = TextFormatter(
                '%(asctime)s [%(levelname)s] %(name)s - %(message)s'
            )

        if self.config.log_to_console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

        # File handler with rotation
        if self.config.log_to_file:
            from logging.handlers import RotatingFileHandler
            self.config.log_dir.mkdir(parents=True, exist_ok=True)
            log_file = self.config.log_dir / f"{self.name.lower()}.log"
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

    @classmethod
    def set_correlation_id(cls, correlation_id: str):
        """Set correlation ID for current thread."""
        cls._local.correlation_id = correlation_id

    @classmethod
    def get_correlation_id(cls) -> str:
        """Get correlation ID for current thread."""
        return getattr(cls._local, 'correlation_id', None) or str(uuid.uuid4())[:8]

    @classmethod
    def new_correlation_id(cls) -> str:
        """Generate and set a new correlation ID."""
        correlation_id = str(uuid.uuid4())[:12]
        cls.set_correlation_id(correlation_id)
        return correlation_id

    def _log(self, level: int, message: str, exc_info: bool = False, **kwargs):
        context = {'correlation_id': self.get_correlation_id(), 'context': kwargs}
        self.logger.log(level, message, exc_info=exc_info, extra=context)

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs):
        """Log error message with optional exception info."""
        self._log(logging.ERROR, message, exc_info=exc_info, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log exception with full traceback."""
        self.error(message, exc_info=True, **kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message."""
        self._log(logging.CRITICAL, message, **kwargs)

    @contextmanager
    def log_operation(self, operation: str, **context):
        """Context manager for logging operation start/end with timing."""
        start_time = time.time()
        self.debug(f"{operation} started", operation=operation, status='started', **context)
        try:
            yield
            duration_ms = (time.time() - start_time) * 1000
            self.info(f"{operation} completed", operation=operation, status='completed',
                      duration_ms=round(duration_ms, 2), **context)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self.error(f"{operation} failed: {e}", operation=operation, status='failed',
                       duration_ms=round(duration_ms, 2), exc_info=True, **context)
            raise


class JsonFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        correlation_id = getattr(record, 'correlation_id', None)
        if correlation_id:
            log_data['correlation_id'] = correlation_id

        log_data.update(getattr(record, 'context', None) or {})

        if record.exc_info:
            log_data['traceback'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Plain text formatter that appends structured context as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = getattr(record, 'context', None)
        if context:
            pairs = ' '.join(f"{k}={v}" for k, v in context.items())
            text = f"{text} | {pairs}"
        return text


# Factory function for getting loggers
def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, get_config())


# =============================================================================
# ERROR HANDLING UTILITIES
# =============================================================================

class DocMedicError(Exception):
    """Base exception for Doc Medic."""

    def __init__(self, message: str, code: str = "UNKNOWN_ERROR",
                 details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to report dict."""
        return {
            'success': False,
            'error': {
                'code': self.code,
                'message': self.message,
                'details': self.details
            }
        }


class ValidationError(DocMedicError):
    """Invalid argument passed to a core operation."""
    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, code="VALIDATION_ERROR",
                         details={'field': field, **kwargs})
        self.field = field


class FileError(DocMedicError):
    """File handling error."""
    def __init__(self, message: str, filename: Optional[str] = None, **kwargs):
        super().__init__(message, code="FILE_ERROR",
                         details={'filename': filename, **kwargs})


class ProcessingError(DocMedicError):
    """Document processing error."""
    def __init__(self, message: str, stage: Optional[str] = None, **kwargs):
        super().__init__(message, code="PROCESSING_ERROR",
                         details={'stage': stage, **kwargs})


class LookupServiceError(DocMedicError):
    """Lookup API transport or response error."""
    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, code="LOOKUP_ERROR",
                         details={'status_code': status_code, **kwargs})
        self.status_code = status_code


def handle_errors(logger: Optional[StructuredLogger] = None):
    """Decorator for standardized error handling."""
    def decorator(func: Callable):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            _logger = logger or get_logger(func.__module__)
            try:
                return func(*args, **kwargs)
            except DocMedicError:
                raise  # Re-raise our custom errors
            except FileNotFoundError as e:
                _logger.error(f"File not found: {e}", exc_info=True)
                raise FileError(f"File not found: {e}", filename=getattr(e, 'filename', None))
            except PermissionError as e:
                _logger.error(f"Permission denied: {e}", exc_info=True)
                raise FileError(f"Permission denied: {e}", filename=getattr(e, 'filename', None))
            except ValueError as e:
                _logger.error(f"Validation error: {e}", exc_info=True)
                raise ValidationError(str(e))
            except Exception as e:
                _logger.exception(f"Unexpected error in {func.__name__}: {e}")
                raise ProcessingError(f"An unexpected error occurred: {type(e).__name__}",
                                      stage=func.__name__)
        return wrapper
    return decorator


def validate_file_extension(filename: str, allowed: tuple = ('.docx',)) -> bool:
    """Validate file extension."""
    return str(filename).lower().endswith(allowed)
