from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional, Tuple


DEVICE_KEY = "__device__"


@dataclass
class _SecSample:
    ts: float
    reads: int = 0
    read_err: int = 0
    writes: int = 0
    write_err: int = 0
    skipped: int = 0


@dataclass
class RegisterMetrics:
    name: str
    # per-second samples window (store ~5 minutes @ 1s)
    per_sec: Deque[_SecSample] = field(default_factory=lambda: deque(maxlen=300))
    # rolling latencies (ms)
    read_lat_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=1800))
    write_lat_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=1800))
    # error map: code -> (count, last_message, last_ts)
    errors: Dict[str, Tuple[int, str, float]] = field(default_factory=dict)
    mtx: threading.RLock = field(default_factory=threading.RLock)

    def _ensure_current_second(self) -> _SecSample:
        now = time.time()
        with self.mtx:
            if self.per_sec and int(self.per_sec[-1].ts) == int(now):
                return self.per_sec[-1]
            s = _SecSample(ts=now)
            self.per_sec.append(s)
            return s

    def record_read(self, latency_ms: float, *, ok: bool) -> None:
        s = self._ensure_current_second()
        with self.mtx:
            if ok:
                s.reads += 1
            else:
                s.read_err += 1
            self.read_lat_ms.append(latency_ms)

    def record_write(self, latency_ms: float, *, ok: bool) -> None:
        s = self._ensure_current_second()
        with self.mtx:
            if ok:
                s.writes += 1
            else:
                s.write_err += 1
            self.write_lat_ms.append(latency_ms)

    def record_skip(self) -> None:
        s = self._ensure_current_second()
        with self.mtx:
            s.skipped += 1

    def record_error(self, code: str, message: str) -> None:
        with self.mtx:
            count, _, _ = self.errors.get(code, (0, "", 0.0))
            self.errors[code] = (count + 1, str(message)[:512], time.time())

    def summary_last_secs(self, window: int = 60) -> Dict[str, Any]:
        now = time.time()
        reads = read_err = writes = write_err = skipped = 0
        with self.mtx:
            for s in self.per_sec:
                if now - s.ts <= window:
                    reads += s.reads
                    read_err += s.read_err
                    writes += s.writes
                    write_err += s.write_err
                    skipped += s.skipped
            def _q(vals: Deque[float], p: float) -> Optional[float]:
                arr = [v for v in vals][-min(len(vals), 600):]
                if not arr:
                    return None
                arr.sort()
                k = max(0, min(len(arr) - 1, int(p * (len(arr) - 1))))
                return float(arr[k])
            p50r = _q(self.read_lat_ms, 0.50)
            p95r = _q(self.read_lat_ms, 0.95)
            p50w = _q(self.write_lat_ms, 0.50)
            p95w = _q(self.write_lat_ms, 0.95)
        err_pct = (read_err + write_err) / max(1, (reads + read_err + writes + write_err)) * 100.0
        return {
            "reads": reads,
            "readErrors": read_err,
            "writes": writes,
            "writeErrors": write_err,
            "skipped": skipped,
            "readP50": p50r,
            "readP95": p95r,
            "writeP50": p50w,
            "writeP95": p95w,
            "errorPct": err_pct,
        }

    def timeseries(self, since_secs: int = 300) -> List[Dict[str, Any]]:
        now = time.time()
        out: List[Dict[str, Any]] = []
        with self.mtx:
            for s in list(self.per_sec):
                if now - s.ts <= since_secs:
                    out.append({
                        "ts": int(s.ts),
                        "reads": s.reads,
                        "readErrors": s.read_err,
                        "writes": s.writes,
                        "writeErrors": s.write_err,
                        "skipped": s.skipped,
                    })
        return out

    def error_list(self) -> List[Dict[str, Any]]:
        with self.mtx:
            return [
                {"code": code, "count": cnt, "lastMessage": msg, "lastTs": int(ts)}
                for code, (cnt, msg, ts) in self.errors.items()
            ]


class MetricsRegistry:
    """Per-register metrics plus one entry for raw device traffic."""

    def __init__(self) -> None:
        self.registers: Dict[str, RegisterMetrics] = {}
        self.mtx = threading.RLock()

    def get(self, name: str) -> RegisterMetrics:
        with self.mtx:
            m = self.registers.get(name)
            if m is None:
                m = RegisterMetrics(name=name)
                self.registers[name] = m
            return m

    def retain(self, names: Iterable[str]) -> None:
        """Drop entries for registers no longer configured."""
        keep = set(names) | {DEVICE_KEY}
        with self.mtx:
            for name in [n for n in self.registers if n not in keep]:
                del self.registers[name]

    @property
    def device(self) -> RegisterMetrics:
        return self.get(DEVICE_KEY)

    def summary(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        with self.mtx:
            for name, m in self.registers.items():
                out[name] = m.summary_last_secs(60)
        return out
