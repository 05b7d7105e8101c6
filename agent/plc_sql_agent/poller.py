"""
Fixed-cadence poll loop.

Each tick reads every configured register in configuration order, updates
the displayed value and feeds the register's logger.  A device error marks
just that register as ``Error``; the loop itself keeps going.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .address import parse_address
from .config import ConfigChannel
from .errors import CommunicationError, InvalidAddressError
from .metrics import MetricsRegistry
from .models import AgentConfig, RegisterMapping
from .protocol import ProtocolClient
from .register_logger import RegisterLogger
from .sink import PersistenceSink
from .values import decode_value, word_count


log = logging.getLogger(__name__)

NO_VALUE = "---"
ERROR_VALUE = "Error"
INVALID_ADDRESS = "Invalid Address"
CONNECT_TEST_ADDRESS = 100


@dataclass
class RegisterState:
    mapping: RegisterMapping
    value: str = NO_VALUE
    last_update: str = ""
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        m = self.mapping
        return {
            "fieldName": m.field_name,
            "registerAddress": m.register_address,
            "description": m.display_name,
            "unit": m.unit,
            "value": self.value,
            "lastUpdate": self.last_update,
            "error": self.error,
            "logMode": m.sql.log_mode.value if m.sql else None,
        }


class PollLoop:
    def __init__(
        self,
        client: ProtocolClient,
        sink: PersistenceSink,
        scheduler: Any,
        config: AgentConfig,
        *,
        channel: Optional[ConfigChannel] = None,
        metrics: Optional[MetricsRegistry] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.client = client
        self.sink = sink
        self.scheduler = scheduler
        self.channel = channel or ConfigChannel()
        self.metrics = metrics
        self._clock = clock
        self._mtx = threading.RLock()
        self._config = config
        self._states: List[RegisterState] = [RegisterState(m) for m in config.registers]
        self._loggers: Dict[str, RegisterLogger] = {}
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self.connected = False
        self.status_message = "Ready"

    # ---------------------------------------------------------------------
    # Views
    # ---------------------------------------------------------------------

    @property
    def config(self) -> AgentConfig:
        with self._mtx:
            return self._config

    @property
    def running(self) -> bool:
        t = self._thread
        return bool(t and t.is_alive())

    def snapshot(self) -> Dict[str, str]:
        """Latest value of every register, keyed by field name (a copy)."""
        with self._mtx:
            return {s.mapping.field_name: s.value for s in self._states}

    def rows(self) -> List[Dict[str, Any]]:
        with self._mtx:
            return [s.as_dict() for s in self._states]

    def loggers(self) -> Dict[str, RegisterLogger]:
        with self._mtx:
            return dict(self._loggers)

    # ---------------------------------------------------------------------
    # Connection lifecycle
    # ---------------------------------------------------------------------

    def connect(self, host: Optional[str] = None, port: Optional[int] = None) -> bool:
        if host:
            self.client.set_target(host, port or self.config.plc.port)
        target = "%s:%s" % self.client.target
        self.status_message = f"Connecting to PLC at {target}..."
        try:
            self.client.read_word(CONNECT_TEST_ADDRESS)
        except CommunicationError as e:
            self.connected = False
            self.status_message = "Failed to read from PLC"
            log.warning("Connect to PLC at %s failed: %s", target, e)
            return False
        self.connected = True
        self.status_message = "Connected successfully"
        self._start_loggers()
        self.start()
        log.info("Connected to PLC at %s", target)
        return True

    def disconnect(self) -> None:
        self.stop()
        self._stop_loggers()
        self.connected = False
        with self._mtx:
            for s in self._states:
                s.value = NO_VALUE
                s.last_update = ""
                s.error = None
        self.status_message = "Disconnected from PLC"
        log.info("Disconnected from PLC")

    def _start_loggers(self) -> None:
        with self._mtx:
            pending = [m for m in self._config.registers if m.logging_enabled and m.field_name not in self._loggers]
        created: Dict[str, RegisterLogger] = {}
        for m in pending:
            lg = RegisterLogger(
                m,
                self.sink,
                self.scheduler,
                self.snapshot,
                metrics=self.metrics.get(m.field_name) if self.metrics else None,
            )
            try:
                lg.initialize()
            except Exception as e:
                log.error("Could not initialize logger for %s: %s", m.field_name, e)
                lg.stop()
                continue
            created[m.field_name] = lg
        with self._mtx:
            self._loggers.update(created)
            count = len(self._loggers)
        log.info("Initialized %s database loggers", count)

    def _stop_loggers(self) -> None:
        with self._mtx:
            loggers, self._loggers = list(self._loggers.values()), {}
        for lg in loggers:
            lg.stop()

    def apply_config(self, config: AgentConfig) -> None:
        """Swap in a new register set and restart the loggers."""
        with self._mtx:
            old = list(self._loggers.values())
            self._loggers = {}
            self._config = config
            self._states = [RegisterState(m) for m in config.registers]
        for lg in old:
            lg.stop()
        if tuple(self.client.target) != (config.plc.host, int(config.plc.port)):
            self.client.set_target(config.plc.host, config.plc.port)
        if self.metrics:
            self.metrics.retain(m.field_name for m in config.registers)
        if self.connected:
            self._start_loggers()
        self.status_message = "Configuration reloaded"
        log.info("Configuration applied: %s registers", len(config.registers))

    # ---------------------------------------------------------------------
    # Polling
    # ---------------------------------------------------------------------

    def tick(self) -> None:
        new = self.channel.take_latest()
        if new is not None:
            self.apply_config(new)
        with self._mtx:
            states = list(self._states)
            loggers = dict(self._loggers)
        for st in states:
            self._read_one(st, loggers.get(st.mapping.field_name))
        self.status_message = f"Last read: {self._clock():%H:%M:%S}"

    def _read_one(self, st: RegisterState, logger: Optional[RegisterLogger]) -> None:
        m = st.mapping
        try:
            addr = parse_address(m.register_address)
        except InvalidAddressError:
            log.warning("Invalid register address format: %s", m.register_address)
            with self._mtx:
                st.value = INVALID_ADDRESS
            return
        count = 1 if addr.is_bit else word_count(m.data_type, m.length)
        rm = self.metrics.get(m.field_name) if self.metrics else None
        t0 = time.perf_counter()
        try:
            words = self.client.read_words(addr.word, count)
            value = decode_value(words, m.data_type, addr.bit)
        except (CommunicationError, ValueError) as e:
            # frame or decode errors stay local to this register
            if rm:
                rm.record_read((time.perf_counter() - t0) * 1000.0, ok=False)
                rm.record_error("READ_ERROR", str(e))
            with self._mtx:
                st.value = ERROR_VALUE
                st.error = str(e)
            return
        if rm:
            rm.record_read((time.perf_counter() - t0) * 1000.0, ok=True)
        with self._mtx:
            st.value = value
            st.error = None
            st.last_update = f"{self._clock():%H:%M:%S}"
        if logger is not None:
            logger.process(value)
            logger.update_latest_value(value)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="plc-poll", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        t = self._thread
        if t and t.is_alive() and t is not threading.current_thread():
            t.join(timeout=self.client.connect_timeout + self.client.io_timeout + 1.0)
        self._thread = None

    def _run(self) -> None:
        log.info("Poll loop started interval=%ss registers=%s", self.config.poll_interval_seconds, len(self.config.registers))
        while not self._stop_event.is_set():
            t_start = time.perf_counter()
            try:
                self.tick()
            except Exception as e:
                self.status_message = f"Read error: {e}"
                log.exception("Error reading PLC data")
            dt = time.perf_counter() - t_start
            to_sleep = max(0.0, self.config.poll_interval_seconds - dt)
            if to_sleep > 0:
                self._stop_event.wait(timeout=to_sleep)
        log.info("Poll loop stopped")

    # ---------------------------------------------------------------------
    # Operator writes
    # ---------------------------------------------------------------------

    def write_word(self, address: str, value: int) -> None:
        addr = parse_address(address)
        if addr.is_bit:
            raise InvalidAddressError(address, "bit_write_unsupported")
        self.client.write_word(addr.word, value)
        log.info("Written value %s to %s", value, addr)
