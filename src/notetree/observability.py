"""Logging setup and per-operation metrics for the lifecycle core.

Every public NoteService operation runs under traced(), which logs a
START/END pair tagged with a short correlation id and feeds the global
MetricsCollector: call count, failures by exception type, duration and
how many ids the operation reported as touched.
"""
import functools
import json
import logging
import os
import time
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".notetree" / "logs"
LOG_FILE_NAME = "notetree.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar('F', bound=Callable[..., Any])

_logging_configured = False


def _has_file_handler(target: logging.Logger, log_file: Path) -> bool:
    return any(
        isinstance(h, RotatingFileHandler) and h.baseFilename == os.path.abspath(log_file)
        for h in target.handlers
    )


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: Union[int, str] = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Attach a rotating log file (and optionally stderr) to the notetree logger.

    Calling it again with the same directory does not add a second file
    handler. Returns the log directory.
    """
    global _logging_configured

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    package_logger = logging.getLogger("notetree")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers = []
    if not _has_file_handler(package_logger, log_file):
        handlers.append(RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        ))
    if console and not any(type(h) is logging.StreamHandler for h in package_logger.handlers):
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    _logging_configured = True
    package_logger.info(f"Logging to {log_file}")
    return log_path


def is_logging_configured() -> bool:
    return _logging_configured


@dataclass
class OperationMetrics:
    """Running totals for one operation name."""
    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0
    affected: int = 0
    errors_by_type: Counter = field(default_factory=Counter)
    last_failure: Optional[str] = None
    last_failure_at: Optional[datetime] = None


class MetricsCollector:
    """Thread-safe totals keyed by operation name (create_note, delete_note, ...)."""

    def __init__(self):
        self._ops: Dict[str, OperationMetrics] = {}
        self._lock = Lock()
        self._since = datetime.now(timezone.utc)

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        error: Optional[BaseException] = None,
        affected: int = 0,
    ) -> None:
        """Add one call of an operation; error is the exception it raised, if any."""
        with self._lock:
            m = self._ops.setdefault(operation, OperationMetrics())
            m.calls += 1
            m.total_ms += duration_ms
            m.slowest_ms = max(m.slowest_ms, duration_ms)
            m.affected += affected
            if error is not None:
                m.failures += 1
                m.errors_by_type[type(error).__name__] += 1
                m.last_failure = str(error)
                m.last_failure_at = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation totals as plain dicts."""
        with self._lock:
            return {
                name: {
                    "calls": m.calls,
                    "failures": m.failures,
                    "avg_ms": round(m.total_ms / m.calls, 2) if m.calls else 0.0,
                    "slowest_ms": round(m.slowest_ms, 2),
                    "affected": m.affected,
                    "errors_by_type": dict(m.errors_by_type),
                    "last_failure": m.last_failure,
                    "last_failure_at": (
                        m.last_failure_at.isoformat() if m.last_failure_at else None
                    ),
                }
                for name, m in self._ops.items()
            }

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            calls = sum(m.calls for m in self._ops.values())
            failures = sum(m.failures for m in self._ops.values())
            since = self._since
        return {
            "since": since.isoformat(),
            "calls": calls,
            "failures": failures,
            "failure_rate": round(failures / calls, 4) if calls else 0.0,
        }

    def reset(self) -> None:
        with self._lock:
            self._ops = {}
            self._since = datetime.now(timezone.utc)

    def save_metrics(self, path: Union[str, Path]) -> bool:
        """Write summary and per-operation totals as JSON. Returns False if the write failed."""
        path = Path(path)
        document = {"summary": self.get_summary(), "operations": self.get_metrics()}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not write metrics to {path}: {e}")
            return False
        return True


metrics = MetricsCollector()


def _count_affected(result: Any) -> int:
    """Number of ids a result reports: list length, or summed list fields of a model."""
    if isinstance(result, list):
        return len(result)
    if not hasattr(result, "model_dump"):
        return 0
    return sum(len(v) for v in result.model_dump().values() if isinstance(v, list))


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, log it and record it in the global metrics.

    Yields a dict that is printed on the END log line; an "affected" entry
    set by the caller is also added to the operation's totals.
    """
    correlation_id = uuid.uuid4().hex[:8]
    logger.debug(
        f"[{correlation_id}] START {operation} "
        + " ".join(f"{k}={v}" for k, v in context.items())
    )

    info: Dict[str, Any] = {}
    error = None
    start = time.perf_counter()
    try:
        yield info
    except Exception as e:
        error = e
        raise
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        metrics.record_operation(operation, elapsed_ms, error, info.get("affected", 0))
        outcome = "ok" if error is None else f"failed with {type(error).__name__}: {error}"
        logger.debug(
            f"[{correlation_id}] END {operation} {outcome} in {elapsed_ms:.2f}ms "
            + " ".join(f"{k}={v}" for k, v in info.items())
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run a function under timed_operation.

    Id arguments passed by keyword are logged, and the ids reported by the
    returned result model are counted as affected.
    """
    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {k: v for k, v in kwargs.items() if k.endswith("_id")}
            with timed_operation(name, **context) as info:
                result = func(*args, **kwargs)
                info["affected"] = _count_affected(result)
                return result

        return wrapper  # type: ignore
    return decorator
