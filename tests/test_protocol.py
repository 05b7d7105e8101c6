"""Tests for plc_sql_agent.protocol: frame layout and the serialized client."""

import socket
import threading
import time

import pytest

from conftest import FakeConnect, FakeSocket, read_response
from plc_sql_agent.errors import (
    CommunicationFailure,
    CommunicationTimeout,
    ConnectTimeout,
    DeviceUnreachable,
)
from plc_sql_agent.metrics import MetricsRegistry
from plc_sql_agent.protocol import (
    ProtocolClient,
    build_read_frame,
    build_write_frame,
    parse_read_response,
)


HEADER = bytes([0x50, 0x00, 0x00, 0xFF, 0xFF, 0x03, 0x00])


class TestFrames:
    def test_read_frame_layout(self):
        frame = build_read_frame(100, 1)
        assert frame == HEADER + bytes([
            0x0C, 0x00,  # data length
            0x10, 0x00,  # monitoring timer
            0x01, 0x04,  # batch read
            0x00, 0x00,  # word units
            0x64, 0x00, 0x00, 0xA8,
            0x01, 0x00,
        ])

    def test_read_frame_address_little_endian(self):
        frame = build_read_frame(0x123456, 3)
        assert frame[15:19] == bytes([0x56, 0x34, 0x12, 0xA8])
        assert frame[19:21] == bytes([0x03, 0x00])

    def test_write_frame_layout(self):
        frame = build_write_frame(1000, 0x1234)
        assert frame == HEADER + bytes([
            0x0E, 0x00,
            0x10, 0x00,
            0x01, 0x14,
            0x00, 0x00,
            0xE8, 0x03, 0x00, 0xA8,
            0x01, 0x00,
            0x34, 0x12,
        ])

    @pytest.mark.parametrize("count", [0, 961])
    def test_read_count_bounds(self, count):
        with pytest.raises(ValueError):
            build_read_frame(0, count)

    def test_address_bounds(self):
        with pytest.raises(ValueError):
            build_read_frame(0x1000000, 1)

    @pytest.mark.parametrize("value", [-1, 0x10000])
    def test_write_value_bounds(self, value):
        with pytest.raises(ValueError):
            build_write_frame(0, value)


class TestParseReadResponse:
    def test_words(self):
        assert parse_read_response(read_response([0x1234, 7]), 2) == [0x1234, 7]

    def test_error_code(self):
        with pytest.raises(CommunicationFailure) as exc:
            parse_read_response(read_response([], end_code=0x51), 1)
        assert exc.value.error_code == 0x51
        assert "0x51" in exc.value.message

    def test_short_response(self):
        with pytest.raises(CommunicationFailure) as exc:
            parse_read_response(read_response([1]), 2)
        assert exc.value.length == 13

    def test_empty_response(self):
        with pytest.raises(CommunicationFailure) as exc:
            parse_read_response(b"", 1)
        assert exc.value.error_code is None
        assert "N/A" in exc.value.message


class TestProtocolClient:
    def test_read_words(self):
        sock = FakeSocket(read_response([10, 20]))
        connect = FakeConnect(sock)
        client = ProtocolClient("1.2.3.4", 5000, connect=connect)
        assert client.read_words(100, 2) == [10, 20]
        assert sock.sent == build_read_frame(100, 2)
        assert sock.closed
        assert sock.timeout == 2.0
        assert connect.calls == [(("1.2.3.4", 5000), 6.0)]

    def test_read_in_small_chunks(self):
        sock = FakeSocket(read_response([1, 2, 3]), chunk=4)
        client = ProtocolClient("h", 1, connect=FakeConnect(sock))
        assert client.read_words(0, 3) == [1, 2, 3]

    def test_every_call_opens_new_connection(self):
        socks = [FakeSocket(read_response([1])), FakeSocket(read_response([2]))]
        connect = FakeConnect(*socks)
        client = ProtocolClient("h", 1, connect=connect)
        assert client.read_word(5) == 1
        assert client.read_word(5) == 2
        assert len(connect.calls) == 2
        assert all(s.closed for s in socks)

    def test_read_bit(self):
        client = ProtocolClient("h", 1, connect=FakeConnect(FakeSocket(read_response([0b100]))))
        assert client.read_bit(3115, 2) == 1

    def test_error_frame(self):
        sock = FakeSocket(read_response([], end_code=0xC0))
        client = ProtocolClient("h", 1, connect=FakeConnect(sock))
        with pytest.raises(CommunicationFailure):
            client.read_word(100)
        assert sock.closed

    def test_connection_closed_early(self):
        sock = FakeSocket(read_response([1])[:12])
        client = ProtocolClient("h", 1, connect=FakeConnect(sock))
        with pytest.raises(CommunicationFailure):
            client.read_word(100)

    def test_connect_timeout(self):
        client = ProtocolClient("h", 1, connect=FakeConnect(socket.timeout("timed out")))
        with pytest.raises(ConnectTimeout) as exc:
            client.read_word(100)
        assert isinstance(exc.value, DeviceUnreachable)
        assert isinstance(exc.value, CommunicationTimeout)

    def test_connection_refused(self):
        client = ProtocolClient("h", 1, connect=FakeConnect(ConnectionRefusedError("refused")))
        with pytest.raises(DeviceUnreachable) as exc:
            client.read_word(100)
        assert exc.value.host == "h"

    def test_io_timeout(self):
        class SlowSocket(FakeSocket):
            def recv(self, n):
                raise socket.timeout("timed out")

        sock = SlowSocket()
        client = ProtocolClient("h", 1, connect=FakeConnect(sock))
        with pytest.raises(CommunicationTimeout):
            client.read_word(100)
        assert sock.closed

    def test_write_word(self):
        sock = FakeSocket(read_response([]))
        client = ProtocolClient("h", 1, connect=FakeConnect(sock))
        client.write_word(200, 55)
        assert sock.sent == build_write_frame(200, 55)

    def test_write_pc_status(self):
        sock = FakeSocket(read_response([]))
        client = ProtocolClient("h", 1, connect=FakeConnect(sock))
        client.write_pc_status(True)
        assert sock.sent == build_write_frame(1000, 1)

    def test_set_target(self):
        connect = FakeConnect(FakeSocket(read_response([0])))
        client = ProtocolClient("h", 1, connect=connect)
        client.set_target("10.1.1.1", "9000")
        client.read_word(0)
        assert client.target == ("10.1.1.1", 9000)
        assert connect.calls[0][0] == ("10.1.1.1", 9000)

    def test_metrics_recorded(self):
        metrics = MetricsRegistry()
        connect = FakeConnect(FakeSocket(read_response([1])), ConnectionRefusedError("no"))
        client = ProtocolClient("h", 1, connect=connect, metrics=metrics)
        client.read_word(0)
        with pytest.raises(DeviceUnreachable):
            client.read_word(0)
        summary = metrics.device.summary_last_secs(60)
        assert summary["reads"] == 1
        assert summary["readErrors"] == 1


class TestGate:
    def test_calls_never_overlap(self):
        spans = []
        spans_mtx = threading.Lock()

        class TimedSocket(FakeSocket):
            def __init__(self):
                super().__init__(read_response([1]))
                self.opened = time.perf_counter()

            def close(self):
                super().close()
                with spans_mtx:
                    spans.append((self.opened, time.perf_counter()))

        def connect(address, timeout=None):
            s = TimedSocket()
            time.sleep(0.01)
            return s

        client = ProtocolClient("h", 1, connect=connect)
        threads = [threading.Thread(target=client.read_word, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        spans.sort()
        assert len(spans) == 8
        for (_, end), (start, _) in zip(spans, spans[1:]):
            assert start >= end
