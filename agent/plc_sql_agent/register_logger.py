"""
Per-register database logging.

One :class:`RegisterLogger` exists for every register whose SQL log mode is
not Disabled.  Two independent triggers feed :meth:`RegisterLogger.write`:

* change detection, driven from the poll loop through :meth:`process`
  (OnChange and Both), comparing the raw string against the last value
  that was actually written;
* an interval timer on the shared background scheduler (Interval and
  Both), which writes whatever value the poll loop last recorded with
  :meth:`update_latest_value`.

Every write first evaluates the register's log condition against the
latest values of all registers.  Failed writes are logged and dropped; the
next trigger simply tries again.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from apscheduler.jobstores.base import JobLookupError

from . import conditions
from .errors import ConfigError
from .metrics import RegisterMetrics
from .models import RegisterMapping
from .queries import build_parameters, select_query
from .sink import PersistenceSink


log = logging.getLogger(__name__)

ValuesAccessor = Callable[[], Dict[str, str]]


class LoggerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    STOPPED = "stopped"


class LatestValue:
    """Single value cell shared by the poll loop (writer) and the timer (reader)."""

    def __init__(self) -> None:
        self._mtx = threading.Lock()
        self._value: Optional[str] = None

    def set(self, value: str) -> None:
        with self._mtx:
            self._value = value

    def get(self) -> Optional[str]:
        with self._mtx:
            return self._value


class RegisterLogger:
    def __init__(
        self,
        mapping: RegisterMapping,
        sink: PersistenceSink,
        scheduler: Any = None,
        get_all_values: Optional[ValuesAccessor] = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
        metrics: Optional[RegisterMetrics] = None,
    ) -> None:
        if mapping.sql is None:
            raise ConfigError("register has no SQL configuration", mapping.field_name)
        if mapping.sql.log_mode.uses_interval and mapping.sql.interval_seconds <= 0:
            raise ConfigError(
                f"intervalSeconds must be positive for log mode {mapping.sql.log_mode.value}",
                mapping.field_name,
            )
        self.mapping = mapping
        self.sql = mapping.sql
        self._sink = sink
        self._scheduler = scheduler
        self._get_all_values = get_all_values
        self._clock = clock
        self._metrics = metrics
        self._state = LoggerState.UNINITIALIZED
        self._state_mtx = threading.Lock()
        self._job = None
        self._latest = LatestValue()
        self._logged_mtx = threading.Lock()
        self._last_logged_value: Optional[str] = None
        self._last_logged_at: Optional[datetime] = None

    @property
    def field_name(self) -> str:
        return self.mapping.field_name

    @property
    def state(self) -> LoggerState:
        return self._state

    @property
    def last_logged_value(self) -> Optional[str]:
        with self._logged_mtx:
            return self._last_logged_value

    @property
    def last_logged_at(self) -> Optional[datetime]:
        with self._logged_mtx:
            return self._last_logged_at

    @property
    def latest_observed_value(self) -> Optional[str]:
        return self._latest.get()

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    def initialize(self) -> None:
        with self._state_mtx:
            if self._state == LoggerState.STOPPED:
                raise RuntimeError(f"logger for {self.field_name} was stopped; create a new one")
            if self._state == LoggerState.INITIALIZED or not self.sql.enabled:
                return
            if self.sql.table_name:
                try:
                    if not self._sink.ensure_table(self.sql.connection_string, self.sql.table_name):
                        log.warning("Table check failed for %s; writes will be attempted anyway", self.field_name)
                except Exception as e:
                    log.warning("Table check error for %s: %s", self.field_name, e)
            if self.sql.log_mode.uses_interval:
                self._start_timer()
            self._state = LoggerState.INITIALIZED
        log.info("Initialized logger for %s with mode %s", self.field_name, self.sql.log_mode.value)

    def stop(self) -> None:
        with self._state_mtx:
            if self._state == LoggerState.STOPPED:
                return
            job, self._job = self._job, None
            if job is not None:
                try:
                    job.remove()
                except JobLookupError:
                    pass
            self._state = LoggerState.STOPPED
        log.info("Stopped logger for %s", self.field_name)

    def _start_timer(self) -> None:
        if self._scheduler is None:
            raise RuntimeError(f"no scheduler available for interval logging of {self.field_name}")
        seconds = self.sql.interval_seconds
        log.info("Starting interval timer for %s with %s second interval", self.field_name, seconds)
        self._job = self._scheduler.add_job(
            self._on_interval,
            "interval",
            seconds=seconds,
            id=f"register-log:{self.field_name}:{id(self)}",
            coalesce=True,
        )

    # ---------------------------------------------------------------------
    # Triggers
    # ---------------------------------------------------------------------

    def update_latest_value(self, value: str) -> None:
        self._latest.set(value)

    def process(self, value: str) -> bool:
        """Change trigger; returns True when a row was written."""
        if self._state == LoggerState.STOPPED or not self.sql.log_mode.uses_change:
            return False
        with self._logged_mtx:
            changed = value != self._last_logged_value
        if not changed:
            return False
        return self.write(value, "value changed")

    def _on_interval(self) -> None:
        if self._state != LoggerState.INITIALIZED:
            return
        value = self._latest.get()
        if value is None or value == "":
            log.warning("Interval timer fired for %s but no value has been read yet", self.field_name)
            return
        try:
            self.write(value, "interval")
        except Exception:
            log.exception("Error in interval timer for %s", self.field_name)

    # ---------------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------------

    def _snapshot(self) -> Dict[str, str]:
        if self._get_all_values is None:
            return {}
        try:
            return dict(self._get_all_values())
        except Exception as e:
            log.warning("Failed to get all register values for %s: %s", self.field_name, e)
            return {}

    def write(self, value: str, reason: str) -> bool:
        siblings = self._snapshot()
        cond = self.sql.log_condition
        if cond and cond.strip() and not conditions.evaluate(cond, value, siblings):
            log.info("Skipped logging %s=%s - condition not met: '%s'", self.field_name, value, cond)
            if self._metrics:
                self._metrics.record_skip()
            return False

        try:
            query = select_query(self.sql)
        except ValueError as e:
            log.error("No usable query for %s: %s", self.field_name, e)
            if self._metrics:
                self._metrics.record_error("QUERY_INVALID", str(e))
            return False

        now = self._clock()
        params = build_parameters(self.mapping, value, now, siblings)
        t0 = time.perf_counter()
        try:
            ok = bool(self._sink.execute(self.sql.connection_string, query, params))
        except Exception as e:
            log.error("Error executing SQL for %s: %s", self.field_name, e)
            ok = False
        if self._metrics:
            self._metrics.record_write((time.perf_counter() - t0) * 1000.0, ok=ok)
            if not ok:
                self._metrics.record_error("WRITE_ERROR", f"{reason}: {value}")
        if not ok:
            return False

        with self._logged_mtx:
            self._last_logged_value = value
            self._last_logged_at = now
        log.info("Logged %s=%s (%s)", self.field_name, value, reason)
        return True
