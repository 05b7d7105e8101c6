"""Shared fakes for the device, the database and the scheduler."""

import struct
import threading
from datetime import datetime

import pytest

from plc_sql_agent.errors import DeviceUnreachable
from plc_sql_agent.models import LogMode, RegisterMapping, SqlConfig
from plc_sql_agent.protocol import build_read_frame


def read_response(words, end_code=0):
    """A 3E read response carrying ``words``."""
    header = bytearray(b"\xD0\x00\x00\xFF\xFF\x03\x00\x00\x00\x00\x00")
    header[8] = end_code
    payload = b"".join(struct.pack("<H", w) for w in words) if end_code == 0 else b""
    return bytes(header) + payload


class FakeSocket:
    def __init__(self, response=b"", chunk=1024):
        self.sent = b""
        self.timeout = None
        self.closed = False
        self._buf = bytearray(response)
        self._chunk = chunk

    def settimeout(self, t):
        self.timeout = t

    def sendall(self, data):
        self.sent += data

    def recv(self, n):
        n = min(n, self._chunk)
        out, self._buf = bytes(self._buf[:n]), self._buf[n:]
        return out

    def close(self):
        self.closed = True


class FakeConnect:
    """Stands in for ``socket.create_connection``; hands out queued sockets."""

    def __init__(self, *sockets):
        self.sockets = list(sockets)
        self.calls = []

    def __call__(self, address, timeout=None):
        self.calls.append((address, timeout))
        item = self.sockets.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class FakeSink:
    def __init__(self, result=True, table_ok=True):
        self.result = result
        self.table_ok = table_ok
        self.executed = []
        self.table_checks = []

    def ensure_table(self, connection_string, table):
        self.table_checks.append((connection_string, table))
        return self.table_ok

    def execute(self, connection_string, query, params):
        self.executed.append((connection_string, query, dict(params)))
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


class FakeJob:
    def __init__(self, scheduler, func, seconds):
        self.scheduler = scheduler
        self.func = func
        self.seconds = seconds
        self.removed = False

    def remove(self):
        self.removed = True
        self.scheduler.jobs.remove(self)


class FakeScheduler:
    """Records interval jobs; tests fire them by hand."""

    def __init__(self):
        self.jobs = []
        self.running = False

    def add_job(self, func, trigger, seconds=None, **kwargs):
        assert trigger == "interval"
        job = FakeJob(self, func, seconds)
        self.jobs.append(job)
        return job

    def fire_all(self):
        for job in list(self.jobs):
            job.func()

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False


class FakeClient:
    """Word memory standing in for a ProtocolClient."""

    connect_timeout = 0.1
    io_timeout = 0.1

    def __init__(self, memory=None, fail=()):
        self.memory = dict(memory or {})
        self.fail = set(fail)
        self.writes = []
        self.pc_status = []
        self._target = ("10.0.0.1", 9005)
        self._mtx = threading.Lock()

    @property
    def target(self):
        return self._target

    def set_target(self, host, port):
        self._target = (host, int(port))

    def read_words(self, start, count):
        build_read_frame(start, count)
        if start in self.fail:
            raise DeviceUnreachable("unreachable", *self._target)
        with self._mtx:
            return [self.memory.get(start + i, 0) for i in range(count)]

    def read_word(self, address):
        return self.read_words(address, 1)[0]

    def write_word(self, address, value):
        if address in self.fail:
            raise DeviceUnreachable("unreachable", *self._target)
        self.writes.append((address, value))
        self.memory[address] = value

    def write_pc_status(self, online):
        self.pc_status.append(online)


class Clock:
    def __init__(self, start=datetime(2024, 5, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now


def make_mapping(name="T1", address="D100", mode=LogMode.ON_CHANGE, **sql_kwargs):
    sql_kwargs.setdefault("connection_string", "sqlite://")
    sql_kwargs.setdefault("table_name", "RegisterLogs")
    return RegisterMapping(
        field_name=name,
        register_address=address,
        description=f"{name} description",
        unit="C",
        sql=SqlConfig(log_mode=mode, **sql_kwargs),
    )


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def clock():
    return Clock()
