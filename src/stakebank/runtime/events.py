# src/stakebank/runtime/events.py
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Dict, Iterator, List, Protocol, Sequence

from stakebank.logging_utils import log_event

Json = Dict[str, Any]

_LOG = logging.getLogger("stakebank.events")


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    kind: ClassVar[str] = "LedgerEvent"

    def to_json(self) -> Json:
        out: Json = {"kind": self.kind}
        out.update(asdict(self))
        return out


# --- Allocator events ---


@dataclass(frozen=True, slots=True)
class ParticipantCreated(LedgerEvent):
    kind: ClassVar[str] = "ParticipantCreated"
    wallet: str
    ledger: str
    name: str


@dataclass(frozen=True, slots=True)
class ParticipantDeactivated(LedgerEvent):
    kind: ClassVar[str] = "ParticipantDeactivated"
    wallet: str


@dataclass(frozen=True, slots=True)
class ParticipantReactivated(LedgerEvent):
    kind: ClassVar[str] = "ParticipantReactivated"
    wallet: str


@dataclass(frozen=True, slots=True)
class Deposited(LedgerEvent):
    kind: ClassVar[str] = "Deposited"
    wallet: str
    amount: int


@dataclass(frozen=True, slots=True)
class Staked(LedgerEvent):
    kind: ClassVar[str] = "Staked"
    wallet: str
    amount: int


@dataclass(frozen=True, slots=True)
class Unstaked(LedgerEvent):
    kind: ClassVar[str] = "Unstaked"
    wallet: str
    amount: int


@dataclass(frozen=True, slots=True)
class ToppedUp(LedgerEvent):
    kind: ClassVar[str] = "ToppedUp"
    amount: int


@dataclass(frozen=True, slots=True)
class Withdrawn(LedgerEvent):
    kind: ClassVar[str] = "Withdrawn"
    to: str
    amount: int


# --- Participant ledger events ---


@dataclass(frozen=True, slots=True)
class StakeRequested(LedgerEvent):
    kind: ClassVar[str] = "StakeRequested"
    wallet: str
    amount: int


@dataclass(frozen=True, slots=True)
class UnstakeRequested(LedgerEvent):
    kind: ClassVar[str] = "UnstakeRequested"
    wallet: str
    amount: int


@dataclass(frozen=True, slots=True)
class LedgerUpdated(LedgerEvent):
    kind: ClassVar[str] = "LedgerUpdated"
    wallet: str
    available: int
    staked: int


@dataclass(frozen=True, slots=True)
class Deactivated(LedgerEvent):
    kind: ClassVar[str] = "Deactivated"
    wallet: str
    at: int


class EventSink(Protocol):
    def emit(self, event: LedgerEvent) -> None: ...


class MemoryEventSink:
    """Ordered in-memory sink (audit trail for tests and embedded hosts)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: List[LedgerEvent] = []

    def emit(self, event: LedgerEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[LedgerEvent]:
        with self._lock:
            return list(self._events)

    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class LoggingEventSink:
    """Writes each committed event as one JSONL line."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _LOG

    def emit(self, event: LedgerEvent) -> None:
        fields = event.to_json()
        fields.pop("kind", None)
        log_event(self._logger, "ledger_event", kind=event.kind, **fields)


class FanoutEventSink:
    def __init__(self, sinks: Sequence[EventSink]) -> None:
        self._sinks = list(sinks)

    def emit(self, event: LedgerEvent) -> None:
        for s in self._sinks:
            s.emit(event)


class EventBus:
    """
    Per-operation event buffer in front of an EventSink.

    Events emitted inside `transaction()` are held until the outermost
    transaction on the current thread exits cleanly, then delivered in
    emission order. A transaction that raises discards everything it
    emitted (nested transactions roll back to their own savepoint).
    """

    def __init__(self, sink: EventSink) -> None:
        self._sink = sink
        self._local = threading.local()

    @property
    def sink(self) -> EventSink:
        return self._sink

    def _pending(self) -> List[LedgerEvent]:
        p = getattr(self._local, "pending", None)
        if p is None:
            p = []
            self._local.pending = p
        return p

    def _depth(self) -> int:
        return int(getattr(self._local, "depth", 0))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        pending = self._pending()
        savepoint = len(pending)
        self._local.depth = self._depth() + 1
        try:
            yield
        except BaseException:
            del pending[savepoint:]
            raise
        finally:
            self._local.depth = self._depth() - 1

        if self._depth() == 0:
            committed = list(pending)
            pending.clear()
            self._deliver(committed)

    def emit(self, event: LedgerEvent) -> None:
        if self._depth() <= 0:
            raise RuntimeError(f"event {event.kind} emitted outside a transaction")
        self._pending().append(event)

    def _deliver(self, events: Sequence[LedgerEvent]) -> None:
        for ev in events:
            try:
                self._sink.emit(ev)
            except Exception as e:
                # State is already committed; a broken sink must not make the
                # operation look failed to its caller.
                log_event(_LOG, "event_sink_error", level=logging.ERROR, kind=ev.kind, error=str(e))
