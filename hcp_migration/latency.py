"""Per-phase request latency accounting for the source namespace."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional

from .utils import format_duration


@dataclass(frozen=True)
class LatencyReport:
    """Average latency per request phase, in seconds."""

    dns: float
    tls_handshake: float
    connect: float
    ttfb: float
    count: int

    def __str__(self) -> str:
        return (
            f"DNS Done: {format_duration(self.dns)} "
            f"TLS Handshake: {format_duration(self.tls_handshake)} "
            f"Connect time: {format_duration(self.connect)} "
            f"TTFB: {format_duration(self.ttfb)}"
        )


class LatencyAccumulator:
    """Thread-safe running sums of request phase timings."""

    def __init__(self):
        self._lock = threading.Lock()
        self._dns = 0.0
        self._tls_handshake = 0.0
        self._connect = 0.0
        self._ttfb = 0.0
        self._count = 0

    @property
    def count(self) -> int:
        """Number of requests recorded so far."""
        with self._lock:
            return self._count

    def record(self, dns: float, tls_handshake: float, connect: float, ttfb: float) -> int:
        """Add one request's phase durations and return the new request count."""
        with self._lock:
            self._dns += dns
            self._tls_handshake += tls_handshake
            self._connect += connect
            self._ttfb += ttfb
            self._count += 1
            return self._count

    def report(self) -> Optional[LatencyReport]:
        """Average each phase over the recorded requests; None if there were none."""
        with self._lock:
            if self._count == 0:
                return None
            return LatencyReport(
                dns=self._dns / self._count,
                tls_handshake=self._tls_handshake / self._count,
                connect=self._connect / self._count,
                ttfb=self._ttfb / self._count,
                count=self._count,
            )


class RequestTrace:
    """Collects phase timings for one request from the HTTP transport's trace hook.

    Installed as the "trace" request extension; the transport calls it with
    event names such as "connection.connect_tcp.started". Connection reuse
    skips the connect and TLS phases, which then count as zero. The transport
    resolves names inside connect_tcp, so DNS time is part of connect.
    """

    _PHASES = {
        "connection.connect_tcp": "connect",
        "connection.start_tls": "tls_handshake",
        "connection.resolve": "dns",
    }
    _FIRST_BYTE_EVENTS = (
        "http11.receive_response_headers.complete",
        "http2.receive_response_headers.complete",
    )

    def __init__(self, clock=time.perf_counter):
        self._clock = clock
        self.start = clock()
        self._started: dict[str, float] = {}
        self.durations = {"dns": 0.0, "tls_handshake": 0.0, "connect": 0.0}
        self.ttfb = 0.0

    def mark_response(self) -> None:
        """Use the time until the response arrived when no first-byte event was seen."""
        if not self.ttfb:
            self.ttfb = self._clock() - self.start

    def __call__(self, event_name: str, info: dict) -> None:
        del info
        now = self._clock()
        if event_name in self._FIRST_BYTE_EVENTS:
            if not self.ttfb:
                self.ttfb = now - self.start
            return
        prefix, _, stage = event_name.rpartition(".")
        phase = self._PHASES.get(prefix)
        if phase is None:
            return
        if stage == "started":
            self._started[phase] = now
        elif stage == "complete" and phase in self._started:
            self.durations[phase] += now - self._started.pop(phase)

    def record_into(self, accumulator: LatencyAccumulator) -> int:
        """Add this request's timings to accumulator; returns the request count."""
        return accumulator.record(
            self.durations["dns"],
            self.durations["tls_handshake"],
            self.durations["connect"],
            self.ttfb,
        )
