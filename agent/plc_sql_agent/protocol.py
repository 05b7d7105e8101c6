"""
Binary word-access client for the PLC (3E-style request/response frames).

The protocol carries no request identifiers, so a response can only be
matched to its request if nothing else is on the wire.  All device access
therefore goes through one gate: a call opens its own TCP connection,
sends one frame, reads one answer and closes the socket before the next
caller is let in.  Connections are never pooled.
"""

from __future__ import annotations

import logging
import socket
import struct
import threading
import time
from typing import Callable, List, Optional, Tuple

from .errors import (
    CommunicationError,
    CommunicationFailure,
    CommunicationTimeout,
    ConnectTimeout,
    DeviceUnreachable,
)
from .metrics import MetricsRegistry


log = logging.getLogger(__name__)

DEFAULT_HOST = "192.168.3.39"
DEFAULT_PORT = 9005
CONNECT_TIMEOUT_S = 6.0
IO_TIMEOUT_S = 2.0

# Request header, little-endian throughout
SUBHEADER = b"\x50\x00"
NETWORK_NO = 0x00
PC_NO = 0xFF
MODULE_IO_NO = 0x03FF
MODULE_STATION_NO = 0x00
MONITORING_TIMER = 0x0010  # 16 x 250 ms
CMD_BATCH_READ = b"\x01\x04"
CMD_BATCH_WRITE = b"\x01\x14"
SUBCMD_WORD_UNITS = b"\x00\x00"
DEVICE_CODE_D = 0xA8
READ_DATA_LENGTH = 12
WRITE_DATA_LENGTH = 14

RESPONSE_HEADER_LEN = 11
RESPONSE_END_CODE_OFFSET = 8

MAX_DEVICE_ADDRESS = 0xFFFFFF
MAX_READ_POINTS = 960
PC_STATUS_ADDRESS = 1000

ConnectFn = Callable[..., socket.socket]


def _header(data_length: int) -> bytes:
    return SUBHEADER + struct.pack(
        "<BBHBHH",
        NETWORK_NO,
        PC_NO,
        MODULE_IO_NO,
        MODULE_STATION_NO,
        data_length,
        MONITORING_TIMER,
    )


def _device_address(address: int) -> bytes:
    if not 0 <= address <= MAX_DEVICE_ADDRESS:
        raise ValueError(f"device address out of range: {address}")
    return address.to_bytes(3, "little") + bytes([DEVICE_CODE_D])


def build_read_frame(start_address: int, count: int) -> bytes:
    """Batch read of ``count`` words starting at D``start_address``."""
    if not 1 <= count <= MAX_READ_POINTS:
        raise ValueError(f"point count out of range: {count}")
    return (
        _header(READ_DATA_LENGTH)
        + CMD_BATCH_READ
        + SUBCMD_WORD_UNITS
        + _device_address(start_address)
        + struct.pack("<H", count)
    )


def build_write_frame(address: int, value: int) -> bytes:
    """Batch write of exactly one word."""
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"word value out of range: {value}")
    return (
        _header(WRITE_DATA_LENGTH)
        + CMD_BATCH_WRITE
        + SUBCMD_WORD_UNITS
        + _device_address(address)
        + struct.pack("<HH", 1, value)
    )


def parse_read_response(response: bytes, count: int) -> List[int]:
    """Extract ``count`` words from a read response.

    Raises:
        CommunicationFailure: response shorter than header + payload, or a
            nonzero end code.
    """
    length = len(response or b"")
    error_code = response[RESPONSE_END_CODE_OFFSET] if length > RESPONSE_END_CODE_OFFSET else None
    expected = RESPONSE_HEADER_LEN + 2 * count
    if length < expected or error_code != 0:
        raise CommunicationFailure(
            "Invalid response from PLC. Length: %d, Error Code: %s"
            % (length, "0x%02X" % error_code if error_code is not None else "N/A"),
            error_code=error_code,
            length=length,
        )
    return list(struct.unpack_from("<%dH" % count, response, RESPONSE_HEADER_LEN))


class ProtocolClient:
    """Serialized word read/write access to a single PLC."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        *,
        connect_timeout: float = CONNECT_TIMEOUT_S,
        io_timeout: float = IO_TIMEOUT_S,
        connect: Optional[ConnectFn] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._target: Tuple[str, int] = (host, int(port))
        self._target_mtx = threading.Lock()
        self._gate = threading.Lock()
        self.connect_timeout = connect_timeout
        self.io_timeout = io_timeout
        self._connect = connect or socket.create_connection
        self._metrics = metrics

    @property
    def target(self) -> Tuple[str, int]:
        with self._target_mtx:
            return self._target

    def set_target(self, host: str, port: int) -> None:
        # Picked up by the next call; a call in flight keeps its socket
        with self._target_mtx:
            self._target = (host, int(port))
        log.info("PLC target set to %s:%s", host, port)

    # ---------------------------------------------------------------------
    # Public operations
    # ---------------------------------------------------------------------

    def read_words(self, start_address: int, count: int) -> List[int]:
        frame = build_read_frame(start_address, count)
        t0 = time.perf_counter()
        try:
            response = self._execute(frame, expected=RESPONSE_HEADER_LEN + 2 * count)
            values = parse_read_response(response, count)
        except CommunicationFailure as e:
            log.error("%s (D%s x%s)", e.message, start_address, count)
            self._record(t0, write=False, ok=False, error=e)
            raise
        except CommunicationError as e:
            log.error("Error while reading %s points from PLC at D%s: %s", count, start_address, e)
            self._record(t0, write=False, ok=False, error=e)
            raise
        self._record(t0, write=False, ok=True)
        return values

    def read_word(self, address: int) -> int:
        return self.read_words(address, 1)[0]

    def read_bit(self, address: int, bit: int) -> int:
        if not 0 <= bit <= 15:
            raise ValueError(f"bit index out of range: {bit}")
        return (self.read_word(address) >> bit) & 1

    def write_word(self, address: int, value: int) -> None:
        frame = build_write_frame(address, value)
        t0 = time.perf_counter()
        try:
            self._execute(frame, expected=None)
        except CommunicationError as e:
            log.error("Error while writing single word %s to D%s: %s", value, address, e)
            self._record(t0, write=True, ok=False, error=e)
            raise
        self._record(t0, write=True, ok=True)
        log.debug("Wrote %s to D%s", value, address)

    def write_pc_status(self, online: bool) -> None:
        """Heartbeat word the PLC program watches for the logging PC."""
        self.write_word(PC_STATUS_ADDRESS, 1 if online else 0)

    # ---------------------------------------------------------------------
    # Wire exchange
    # ---------------------------------------------------------------------

    def _execute(self, frame: bytes, expected: Optional[int]) -> bytes:
        with self._gate:
            host, port = self.target
            sock = self._open(host, port)
            try:
                sock.settimeout(self.io_timeout)
                sock.sendall(frame)
                return self._receive(sock, expected)
            except socket.timeout as e:
                raise CommunicationTimeout(f"PLC did not answer within {self.io_timeout}s", host, port) from e
            except OSError as e:
                raise CommunicationFailure(f"Connection to PLC failed mid-exchange: {e}", host=host, port=port) from e
            finally:
                sock.close()

    def _open(self, host: str, port: int) -> socket.socket:
        try:
            return self._connect((host, port), timeout=self.connect_timeout)
        except socket.timeout as e:
            raise ConnectTimeout("Connection to PLC timed out", host, port) from e
        except OSError as e:
            raise DeviceUnreachable(f"Cannot connect to PLC at {host}:{port}: {e}", host, port) from e

    @staticmethod
    def _receive(sock: socket.socket, expected: Optional[int]) -> bytes:
        if expected is None:
            return sock.recv(1024)
        buf = bytearray()
        while len(buf) < RESPONSE_HEADER_LEN:
            chunk = sock.recv(1024)
            if not chunk:
                return bytes(buf)
            buf += chunk
        if buf[RESPONSE_END_CODE_OFFSET] != 0:
            # Error frames carry no payload
            return bytes(buf)
        while len(buf) < expected:
            chunk = sock.recv(1024)
            if not chunk:
                break
            buf += chunk
        return bytes(buf)

    def _record(self, t0: float, *, write: bool, ok: bool, error: Optional[Exception] = None) -> None:
        if self._metrics is None:
            return
        latency_ms = (time.perf_counter() - t0) * 1000.0
        dm = self._metrics.device
        if write:
            dm.record_write(latency_ms, ok=ok)
        else:
            dm.record_read(latency_ms, ok=ok)
        if error is not None:
            dm.record_error(type(error).__name__, str(error))
