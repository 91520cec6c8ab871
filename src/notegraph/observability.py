"""Logging and lightweight metrics for notegraph services.

Service operations are wrapped with ``@traced`` so each call is timed,
counted per operation name and logged at DEBUG with a short correlation
id. ``configure_logging`` adds a rotating log file for the whole
``notegraph`` logger tree.
"""
import functools
import logging
import time
import uuid
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Deque, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "notegraph"
LOG_FILE_NAME = "notegraph.log"
DEFAULT_LOG_DIR = Path.home() / ".notegraph" / "logs"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Durations kept per operation for the p95 estimate
DURATION_WINDOW = 256

# Keyword arguments copied into the START log line
_TRACE_KEYS = ("note_id", "ref", "tag", "query", "budget", "min_score")

F = TypeVar("F", bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: Optional[Union[int, str]] = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Send the ``notegraph`` logger tree to a rotating file.

    ``log_dir`` and ``level`` fall back to ``config.log_dir`` and
    ``config.log_level``, then to ``~/.notegraph/logs`` and INFO. Calling
    this again swaps the file handler rather than adding a second one.

    Returns:
        The directory holding ``notegraph.log``.
    """
    from notegraph.config import config

    log_path = Path(log_dir or config.log_dir or DEFAULT_LOG_DIR)
    log_path.mkdir(parents=True, exist_ok=True)
    level = level or config.log_level or logging.INFO

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    for handler in [h for h in package_logger.handlers if isinstance(h, RotatingFileHandler)]:
        package_logger.removeHandler(handler)
        handler.close()

    file_handler = RotatingFileHandler(
        log_path / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    has_console = any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    )
    if console and not has_console:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        package_logger.addHandler(stream)

    package_logger.info(f"Logging to {log_path / LOG_FILE_NAME}")
    return log_path


@dataclass
class OperationStats:
    """Running totals for one operation name."""

    count: int = 0
    success_count: int = 0
    error_count: int = 0
    results: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    recent_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=DURATION_WINDOW))
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def p95(self) -> float:
        if not self.recent_ms:
            return 0.0
        ordered = sorted(self.recent_ms)
        return ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))]


class MetricsCollector:
    """Per-operation counters and timings, safe to share across threads."""

    def __init__(self) -> None:
        self._stats: Dict[str, OperationStats] = {}
        self._lock = Lock()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
        result_count: Optional[int] = None,
    ) -> None:
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.count += 1
            stats.total_duration_ms += duration_ms
            stats.max_duration_ms = max(stats.max_duration_ms, duration_ms)
            stats.recent_ms.append(duration_ms)
            if result_count:
                stats.results += result_count
            if success:
                stats.success_count += 1
                return
            stats.error_count += 1
            stats.last_error = error
            stats.last_error_time = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot keyed by operation name."""
        with self._lock:
            return {
                name: {
                    "count": s.count,
                    "success_count": s.success_count,
                    "error_count": s.error_count,
                    "results": s.results,
                    "avg_duration_ms": round(s.total_duration_ms / s.count, 2) if s.count else 0.0,
                    "max_duration_ms": round(s.max_duration_ms, 2),
                    "p95_duration_ms": round(s.p95(), 2),
                    "last_error": s.last_error,
                    "last_error_time": (
                        s.last_error_time.isoformat() if s.last_error_time else None
                    ),
                }
                for name, s in self._stats.items()
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Time a block and record it under ``operation``.

    The yielded dict carries the correlation id; callers may add
    ``result_count`` or other fields, which end up on the END log line.
    """
    info: Dict[str, Any] = {"correlation_id": uuid.uuid4().hex[:8]}
    cid = info["correlation_id"]
    if context:
        details = " ".join(f"{k}={v}" for k, v in context.items())
        logger.debug(f"[{cid}] START {operation} {details}")
    else:
        logger.debug(f"[{cid}] START {operation}")

    started = time.perf_counter()
    error: Optional[str] = None
    try:
        yield info
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(
            operation,
            elapsed_ms,
            success=error is None,
            error=error,
            result_count=info.get("result_count"),
        )
        extra = " ".join(f"{k}={v}" for k, v in info.items() if k != "correlation_id")
        outcome = "ok" if error is None else f"failed ({error})"
        logger.debug(f"[{cid}] END {operation} {outcome} in {elapsed_ms:.1f}ms {extra}".rstrip())


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run the decorated function inside ``timed_operation``.

    Sized results (lists, tuples, dicts) report their length as
    ``result_count``.
    """

    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {
                key: str(kwargs[key])[:50]
                for key in _TRACE_KEYS
                if kwargs.get(key) is not None
            }
            with timed_operation(name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple, dict)):
                    op["result_count"] = len(result)
                return result

        return wrapper  # type: ignore[return-value]

    return decorator
