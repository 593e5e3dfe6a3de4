"""Telemetry schema and sinks for chance-tree tracer instrumentation."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from queue import Queue
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol
import time


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TelemetryEnvelope:
    event: str
    ts_ms: int
    data: Dict[str, Any]


@dataclass(frozen=True)
class TraceStartEvent:
    tracer: str
    root: str
    depth_limit: int
    qs_depth: int
    lower_bound: float
    upper_bound: float
    config: Dict[str, bool]


@dataclass(frozen=True)
class DepthDoneEvent:
    depth: int
    value: float
    best_action: str
    calls: int
    lines: int
    prunes: int
    chance_prunes: int
    sss_shortcuts: int
    elapsed_ms: int


@dataclass(frozen=True)
class TraceEndEvent:
    depths: int
    value: Optional[float]
    elapsed_ms: int
    reason: str
    detail: str = ""


class TelemetrySink(Protocol):
    def emit(self, envelope: TelemetryEnvelope) -> None:
        ...

    def close(self) -> None:
        ...


class CallbackTelemetrySink:
    def __init__(self, callback: Callable[[TelemetryEnvelope], None]) -> None:
        self._callback = callback

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self._callback(envelope)

    def close(self) -> None:
        return


class QueueTelemetrySink:
    def __init__(self, queue: "Queue[TelemetryEnvelope]") -> None:
        self._queue = queue

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self._queue.put(envelope)

    def close(self) -> None:
        return


class CollectingTelemetrySink:
    """Keeps every envelope in memory; handy for the CLI's --events flag."""

    def __init__(self) -> None:
        self.events: List[TelemetryEnvelope] = []

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self.events.append(envelope)

    def close(self) -> None:
        return


def emit_event(sink: Optional[TelemetrySink], event: str, payload: Mapping[str, Any]) -> None:
    if sink is None:
        return
    envelope = TelemetryEnvelope(event=event, ts_ms=now_ms(), data=dict(payload))
    try:
        sink.emit(envelope)
    except Exception:
        return


def emit_dataclass_event(sink: Optional[TelemetrySink], event: str, payload_obj: object) -> None:
    emit_event(sink, event, asdict(payload_obj))
