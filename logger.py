"""
Logging Framework for the Explore Statistics Core

Every module obtains its logger through ``get_logger(__name__)``. The wrapper adds:
- one-time handler setup driven by the ``logging`` section of CONFIG
- structured operation events (``[operation] STATUS key=value``)
- timing of named steps shared across all loggers

Usage:
    from logger import get_logger

    logger = get_logger(__name__)
    logger.log_operation("examine_tasks", "started", tasks=4)

    with logger.track_time("format_tables"):
        tables = format_explore_tables(results, params)
"""

import logging
import logging.handlers
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import ClassVar, Dict, Optional

from config import CONFIG


class TimingRegistry:
    """
    Elapsed times per operation name, shared by every Logger.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.timings: Dict[str, list] = {}
        self._lock = threading.Lock()

    @contextmanager
    def track_time(self, operation: str, log_level: str = "DEBUG"):
        """
        Measure the wrapped block and record it under ``operation``.

        Nothing is measured when CONFIG['logging.log_performance'] is falsy. Worker
        threads may record concurrently, so appends happen under a lock.

        Parameters:
            operation (str): Name the elapsed time is recorded under.
            log_level (str): Level of the "completed in" message.
        """
        if not CONFIG.get('logging.log_performance'):
            yield
            return

        start_time = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start_time
            with self._lock:
                self.timings.setdefault(operation, []).append(elapsed)
            log_method = getattr(self.logger, log_level.lower(), self.logger.debug)
            log_method(f"{operation} completed in {elapsed:.3f}s")


class LoggerFactory:
    """
    Configures the logging system once and caches Logger wrappers by name.
    """

    _loggers: ClassVar[Dict[str, 'Logger']] = {}
    _timings: Optional[TimingRegistry] = None
    _configured = False
    _lock: ClassVar[threading.Lock] = threading.Lock()

    @classmethod
    def configure(cls) -> None:
        """
        Attach the file and console handlers requested in CONFIG to the root logger.

        Idempotent. A broken logging setup must never stop an analysis, so failures
        are reported on stderr and configuration is marked done.
        """
        if cls._configured:
            return

        try:
            if not CONFIG.get('logging.enabled'):
                logging.disable(logging.CRITICAL)
                cls._configured = True
                return

            log_level = CONFIG.get('logging.level', 'INFO')
            formatter = logging.Formatter(
                CONFIG.get('logging.format'),
                datefmt=CONFIG.get('logging.date_format'),
            )

            root_logger = logging.getLogger()
            numeric_level = getattr(logging, str(log_level).upper(), None)
            if numeric_level is None:
                print(f"[WARNING] Invalid log level '{log_level}', defaulting to INFO", file=sys.stderr)
                numeric_level = logging.INFO
            root_logger.setLevel(numeric_level)

            if CONFIG.get('logging.file_enabled'):
                cls._add_file_handler(root_logger, formatter)
            if CONFIG.get('logging.console_enabled'):
                cls._add_console_handler(root_logger, formatter)

            cls._configured = True

        except Exception as e:
            print(f"[WARNING] Logging configuration failed: {e}", file=sys.stderr)
            cls._configured = True

    @classmethod
    def _add_file_handler(cls, root_logger: logging.Logger, formatter: logging.Formatter) -> None:
        """Rotating file output under ``logging.log_dir``."""
        try:
            log_dir = Path(CONFIG.get('logging.log_dir', 'logs'))
            log_dir.mkdir(exist_ok=True, parents=True)

            handler = logging.handlers.RotatingFileHandler(
                log_dir / CONFIG.get('logging.log_file', 'explore.log'),
                maxBytes=CONFIG.get('logging.max_log_size', 10485760),
                backupCount=CONFIG.get('logging.backup_count', 5),
            )
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)

        except OSError as e:
            print(f"[WARNING] Failed to setup file logging: {e}", file=sys.stderr)

    @classmethod
    def _add_console_handler(cls, root_logger: logging.Logger, formatter: logging.Formatter) -> None:
        handler = logging.StreamHandler(sys.stderr)
        console_level = CONFIG.get('logging.console_level', 'WARNING')
        handler.setLevel(getattr(logging, str(console_level).upper(), logging.WARNING))
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    @classmethod
    def get_logger(cls, name: str) -> 'Logger':
        """
        Return the cached Logger for ``name``, configuring logging on first use.
        """
        if not cls._configured:
            cls.configure()

        with cls._lock:
            if cls._timings is None:
                cls._timings = TimingRegistry(logging.getLogger('performance'))
            if name not in cls._loggers:
                cls._loggers[name] = Logger(logging.getLogger(name), cls._timings)
            return cls._loggers[name]


class Logger:
    """
    Thin wrapper over ``logging.Logger`` with analysis-specific helpers.
    """

    def __init__(self, standard_logger: logging.Logger, timings: TimingRegistry):
        self._logger = standard_logger
        self._timings = timings

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._logger.error(msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs) -> None:
        """Log at ERROR with the active traceback attached."""
        self._logger.exception(msg, *args, **kwargs)

    def log_operation(self, operation: str, status: str = "started", **details) -> None:
        """
        Emit ``[operation] STATUS key=value | key=value``.

        A "failed" status is logged at ERROR, everything else at INFO.

        Parameters:
            operation (str): Step name, e.g. "examine_tasks".
            status (str): "started", "completed" or "failed".
            **details: Counts or identifiers appended to the message.
        """
        msg_parts = [f"[{operation}]"]
        if status:
            msg_parts.append(status.upper())
        if details:
            msg_parts.append(" | ".join(f"{k}={v}" for k, v in details.items()))
        msg = " ".join(msg_parts)

        if status.lower() == "failed":
            self.error(msg)
        else:
            self.info(msg)

    def log_data_summary(self, dataset_name: str, n_rows: int, n_columns: int) -> None:
        """Dataset shape, gated on ``logging.log_data_operations``."""
        if CONFIG.get('logging.log_data_operations'):
            self.info(f"{dataset_name}: rows={n_rows}, columns={n_columns}")

    def log_analysis(self, analysis_type: str, n_dependents: int, n_groups: int, n_samples: int) -> None:
        """
        One-line summary of an analysis run.

        Emitted only when ``logging.log_analysis_operations`` is enabled.

        Parameters:
            analysis_type (str): Analysis name, e.g. "Explore".
            n_dependents (int): Number of dependent variables.
            n_groups (int): Number of factor-level groups.
            n_samples (int): Number of cases in the dataset.
        """
        if CONFIG.get('logging.log_analysis_operations'):
            self.info(
                f"{analysis_type}: dependents={n_dependents}, "
                f"groups={n_groups}, n={n_samples}"
            )

    @contextmanager
    def track_time(self, operation: str, log_level: str = "DEBUG"):
        with self._timings.track_time(operation, log_level):
            yield

    def get_timings(self) -> Dict[str, list]:
        """Recorded durations in seconds, keyed by operation name."""
        return self._timings.timings


def get_logger(name: str) -> Logger:
    """
    Obtain a configured logger for the given name.

    Parameters:
        name (str): The logger name, typically `__name__`.

    Returns:
        Logger: A Logger instance configured according to the ``logging`` settings.
    """
    return LoggerFactory.get_logger(name)
