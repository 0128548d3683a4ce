"""
Query performance monitoring

An optional observer that SQL execution reports to. Nothing in the menu
services depends on it being present; it is attached to an engine through
SQLAlchemy events and collects timings while ``monitor()`` is active.
"""
import hashlib
import logging
import re
import threading
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import event
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

N_PLUS_ONE_THRESHOLD = 5

_START_KEY = "navmenu_query_start"

_NORMALIZE_PATTERNS = [
    (re.compile(r"\b\d+\b"), "?"),
    (re.compile(r"'[^']*'"), "?"),
    (re.compile(r"\s+"), " "),
    (re.compile(r"\s*,\s*"), ", "),
]


def normalize_query(sql: str) -> str:
    """Replace literals so queries differing only in values share a pattern"""
    normalized = sql
    for pattern, replacement in _NORMALIZE_PATTERNS:
        normalized = pattern.sub(replacement, normalized)
    return normalized.strip()


class QueryObserver(Protocol):
    def on_query_executed(self, duration_ms: float, pattern: str) -> None:
        ...


@dataclass
class QueryRecord:
    sql: str
    pattern: str
    duration_ms: float
    params_key: str = ""
    timestamp: float = field(default_factory=time.time)


class QueryPerformanceMonitor:
    """Collects query timings between start() and stop()"""

    def __init__(self, slow_query_threshold_ms: float = 100.0):
        self.slow_query_threshold_ms = slow_query_threshold_ms
        self.queries: List[QueryRecord] = []
        self.slow_queries: List[QueryRecord] = []
        self.is_listening = False
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            self.queries = []
            self.slow_queries = []
            self.is_listening = True

    def stop(self) -> Dict[str, Any]:
        self.is_listening = False
        return self.get_statistics()

    @contextmanager
    def monitor(self):
        self.start()
        try:
            yield self
        finally:
            self.is_listening = False

    def on_query_executed(self, duration_ms: float, pattern: str) -> None:
        self._add(QueryRecord(sql=pattern, pattern=pattern, duration_ms=duration_ms))

    def record(self, duration_ms: float, sql: str, params_key: str = "") -> None:
        """Raw statement variant used by the engine listener"""
        self._add(QueryRecord(sql=sql, pattern=normalize_query(sql), duration_ms=duration_ms,
                              params_key=params_key))

    def _add(self, record: QueryRecord) -> None:
        if not self.is_listening:
            return
        with self._lock:
            self.queries.append(record)
            if record.duration_ms > self.slow_query_threshold_ms:
                self.slow_queries.append(record)
                logger.warning(f"Slow menu query detected ({record.duration_ms:.2f}ms): {record.sql}")

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            queries = list(self.queries)
            slow = list(self.slow_queries)
        total = len(queries)
        total_time = sum(q.duration_ms for q in queries)
        return {
            "total_queries": total,
            "total_time": round(total_time, 2),
            "average_time": round(total_time / total, 2) if total else 0,
            "slow_queries_count": len(slow),
            "slow_queries_percentage": round(len(slow) / total * 100, 2) if total else 0,
            "slow_queries": [{"sql": q.sql, "time": round(q.duration_ms, 2)} for q in slow],
            "query_analysis": self._analyze(queries),
        }

    @staticmethod
    def _analyze(queries: List[QueryRecord]) -> Dict[str, List[Dict[str, Any]]]:
        analysis = {"n_plus_one_potential": [], "duplicate_queries": []}
        if not queries:
            return analysis

        by_pattern: Dict[str, List[QueryRecord]] = {}
        exact: Dict[str, List[QueryRecord]] = {}
        for q in queries:
            by_pattern.setdefault(q.pattern, []).append(q)
            key = hashlib.md5((q.sql + q.params_key).encode("utf-8")).hexdigest()
            exact.setdefault(key, []).append(q)

        for pattern, group in by_pattern.items():
            if len(group) > N_PLUS_ONE_THRESHOLD:
                analysis["n_plus_one_potential"].append({
                    "pattern": pattern,
                    "count": len(group),
                    "total_time": round(sum(q.duration_ms for q in group), 2),
                })
        for group in exact.values():
            if len(group) > 1:
                analysis["duplicate_queries"].append({
                    "sql": group[0].sql,
                    "count": len(group),
                    "total_time": round(sum(q.duration_ms for q in group), 2),
                })
        return analysis


_current_monitor: ContextVar[Optional[QueryPerformanceMonitor]] = ContextVar(
    "navmenu_query_monitor", default=None
)


class RequestScopedObserver:
    """Forwards to the monitor bound to the current request, if any"""

    def on_query_executed(self, duration_ms: float, pattern: str) -> None:
        monitor = _current_monitor.get()
        if monitor is not None:
            monitor.on_query_executed(duration_ms, pattern)

    def record(self, duration_ms: float, sql: str, params_key: str = "") -> None:
        monitor = _current_monitor.get()
        if monitor is not None:
            monitor.record(duration_ms, sql, params_key)


@contextmanager
def request_monitor(slow_query_threshold_ms: float = 100.0):
    """Bind a fresh monitor to the current context for the duration of the block"""
    monitor = QueryPerformanceMonitor(slow_query_threshold_ms)
    token = _current_monitor.set(monitor)
    monitor.start()
    try:
        yield monitor
    finally:
        monitor.is_listening = False
        _current_monitor.reset(token)


def attach_query_observer(engine: Engine, observer) -> None:
    """Report every statement executed on ``engine`` to ``observer``"""

    @event.listens_for(engine, "before_cursor_execute")
    def _before(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault(_START_KEY, []).append(time.perf_counter())

    @event.listens_for(engine, "after_cursor_execute")
    def _after(conn, cursor, statement, parameters, context, executemany):
        started = conn.info[_START_KEY].pop()
        duration_ms = (time.perf_counter() - started) * 1000
        record = getattr(observer, "record", None)
        if record is not None:
            record(duration_ms, statement, repr(parameters))
        else:
            observer.on_query_executed(duration_ms, normalize_query(statement))

    @event.listens_for(engine, "handle_error")
    def _error(context):
        # failed statements never reach after_cursor_execute
        conn = context.connection
        if conn is not None and conn.info.get(_START_KEY):
            conn.info[_START_KEY].pop()
