"""Generic signal tracker.

A tracker owns a :class:`SessionStore`, folds raw signals into each session's
window accumulator through a variant-specific accumulation function, and maps
the accumulator onto the shared severity table. The three concrete trackers
(time, scroll, visit) differ only in the accumulation function, which signals
they accept, and a few lifecycle hooks.

Emission rules:

- ``record_event`` emits when the classification changes to a non-``none`` value.
- ``recheck`` (the background tick) re-confirms every non-``none`` session, so a
  session that crosses a threshold without a fresh signal (time accrual) still
  produces an event. Every event carries its session's ``window_start``, so a
  re-confirmation maps onto the same graph node as the original event and
  downstream cooldowns deduplicate the interventions.
"""

import logging
import time
from collections.abc import Callable

from nudgeguard.models import (
    BehaviorEvent,
    BehaviorKind,
    BehaviorListener,
    Clock,
    Session,
    SignalInput,
    classify_ratio,
)
from nudgeguard.observability.metrics import ACTIVE_SESSIONS, BEHAVIOR_EVENTS_TOTAL
from nudgeguard.trackers.store import SessionStore

logger = logging.getLogger(__name__)

# Returns the non-negative amount to add to the session's window accumulator.
Accumulator = Callable[[Session, SignalInput, float], float]

STALENESS_FACTOR = 2.0


class SignalTracker:
    def __init__(
        self,
        kind: BehaviorKind,
        *,
        threshold: float,
        window_seconds: float,
        accumulate: Accumulator,
        listener: BehaviorListener | None = None,
        clock: Clock = time.time,
    ) -> None:
        self.kind: BehaviorKind = kind
        self.threshold = threshold
        self.store = SessionStore(window_seconds)
        self.listener = listener
        self._accumulate = accumulate
        self._clock = clock

    @property
    def window_seconds(self) -> float:
        return self.store.window_seconds

    @property
    def staleness_seconds(self) -> float:
        return STALENESS_FACTOR * self.store.window_seconds

    # ------------------------------------------------------------------
    # Variant hooks
    # ------------------------------------------------------------------

    def accepts(self, signal: SignalInput) -> bool:
        return True

    def on_session_created(self, session: Session, signal: SignalInput, now: float) -> None:
        pass

    def on_window_reset(self, session: Session, now: float) -> None:
        pass

    def on_session_end(self, session: Session, now: float) -> None:
        pass

    def refresh(self, session: Session, now: float) -> float:
        """Accumulator delta accrued without a signal (used by time-based trackers)."""
        return 0.0

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def record_event(self, key: str, signal: SignalInput) -> BehaviorEvent | None:
        """Apply one raw signal to the session for ``key``."""
        if not key or not self.accepts(signal):
            return None

        now = self._clock()
        session, created = self.store.get_or_create(key, now)
        if created:
            self.on_session_created(session, signal, now)
            ACTIVE_SESSIONS.labels(tracker=self.kind).set(len(self.store))
        elif self.store.window_expired(session, now):
            self.on_window_reset(session, now)
            self.store.reset_window(session, now)

        delta = self._accumulate(session, signal, now)
        session.window_accumulator += max(delta, 0.0)
        session.event_count += 1
        session.last_activity = now
        return self._reclassify(session, now, reconfirm=False)

    def end_session(self, key: str) -> Session | None:
        """Finalize and delete the session for ``key``. Returns the removed session."""
        session = self.store.get(key)
        if session is None:
            return None
        self.on_session_end(session, self._clock())
        self.store.delete(key)
        ACTIVE_SESSIONS.labels(tracker=self.kind).set(len(self.store))
        return session

    def query(self, key: str) -> Session | None:
        session = self.store.get(key)
        return session.model_copy(deep=True) if session is not None else None

    def query_all(self) -> list[Session]:
        return self.store.snapshot()

    def classification(self, key: str) -> str:
        session = self.store.get(key)
        return session.classification if session is not None else "none"

    def recheck(self) -> list[BehaviorEvent]:
        """Tick: evict stale sessions, then re-evaluate and re-confirm the rest."""
        now = self._clock()
        stale = self.store.stale_keys(now, self.staleness_seconds)
        for key in stale:
            self.end_session(key)
        if stale:
            logger.debug("%s tracker evicted %d stale sessions", self.kind, len(stale))

        events: list[BehaviorEvent] = []
        for session in self.store.live():
            if self.store.window_expired(session, now):
                self.on_window_reset(session, now)
                self.store.reset_window(session, now)
            session.window_accumulator += max(self.refresh(session, now), 0.0)
            event = self._reclassify(session, now, reconfirm=True)
            if event is not None:
                events.append(event)

        ACTIVE_SESSIONS.labels(tracker=self.kind).set(len(self.store))
        return events

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reclassify(self, session: Session, now: float, *, reconfirm: bool) -> BehaviorEvent | None:
        previous = session.classification
        current = classify_ratio(session.window_accumulator, self.threshold)
        session.classification = current
        if current == "none" or (current == previous and not reconfirm):
            return None

        event = BehaviorEvent(
            kind=self.kind,
            key=session.key,
            severity=current,
            metric=session.window_accumulator,
            timestamp=now,
            url=session.attributes.get("url", ""),
            domain=session.attributes.get("domain", ""),
            window_start=session.window_start,
        )
        self._emit(event)
        return event

    def _emit(self, event: BehaviorEvent) -> None:
        BEHAVIOR_EVENTS_TOTAL.labels(kind=event.kind, severity=event.severity).inc()
        if self.listener is None:
            return
        try:
            self.listener.on_behavior_event(event)
        except Exception:
            logger.exception("Behavior listener failed for %s event on '%s'", event.kind, event.key)
