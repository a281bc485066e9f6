"""Impulsive-shopping detector: repeated visits to a monitored domain within a window.

Besides the windowed visit count, each domain session watches for a product
burst: many distinct product-like pages opened inside a short burst window.
A burst emits one immediate ``high`` event (``trigger="burst"``) and then stays
quiet for the burst cooldown. Time spent on each domain is credited from the
tabs that visit it.
"""

import time

from nudgeguard.models import BehaviorEvent, BehaviorListener, Clock, Session, SignalInput
from nudgeguard.trackers.base import SignalTracker
from nudgeguard.trackers.urls import domain_matches, extract_domain, is_product_path, product_path

MAX_RECENT_URLS = 20


class VisitTracker(SignalTracker):
    def __init__(
        self,
        *,
        visit_threshold: int,
        window_seconds: float,
        monitored_domains: list[str] | None = None,
        burst_window_seconds: float = 60.0,
        burst_threshold: int = 15,
        burst_cooldown_seconds: float = 120.0,
        listener: BehaviorListener | None = None,
        clock: Clock = time.time,
    ) -> None:
        super().__init__(
            "visit",
            threshold=float(visit_threshold),
            window_seconds=window_seconds,
            accumulate=self._accumulate_visit,
            listener=listener,
            clock=clock,
        )
        self.monitored_domains = monitored_domains or []
        self.burst_window_seconds = burst_window_seconds
        self.burst_threshold = burst_threshold
        self.burst_cooldown_seconds = burst_cooldown_seconds
        # tab id -> (domain, time the tab landed on it)
        self._tab_visits: dict[str, tuple[str, float]] = {}
        self._burst_keys: set[str] = set()

    def accepts(self, signal: SignalInput) -> bool:
        return domain_matches(extract_domain(signal.url), self.monitored_domains)

    def record_visit(self, tab_id: str | None, url: str) -> BehaviorEvent | None:
        """Count a page load. The session key is the visited domain."""
        domain = extract_domain(url)
        event = self.record_event(domain, SignalInput(url=url, tab_id=tab_id))
        if tab_id:
            now = self._clock()
            self._credit_tab(tab_id, now)
            if domain and domain in self.store:
                self._tab_visits[tab_id] = (domain, now)
        return event

    def record_event(self, key: str, signal: SignalInput) -> BehaviorEvent | None:
        event = super().record_event(key, signal)
        if key not in self._burst_keys:
            return event
        self._burst_keys.discard(key)
        session = self.store.get(key)
        if session is None:
            return event

        burst = BehaviorEvent(
            kind="visit",
            key=key,
            severity="high",
            metric=float(len(_unique_paths(session))),
            timestamp=self._clock(),
            url=signal.url,
            domain=key,
            window_start=session.window_start,
            trigger="burst",
        )
        self._emit(burst)
        return burst

    def end_tab(self, tab_id: str) -> None:
        """Credit the time a closing tab spent on its monitored domain."""
        self._credit_tab(tab_id, self._clock())

    def recheck(self) -> list[BehaviorEvent]:
        events = super().recheck()
        for tab_id in [t for t, (domain, _) in self._tab_visits.items() if domain not in self.store]:
            del self._tab_visits[tab_id]
        return events

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def on_window_reset(self, session: Session, now: float) -> None:
        session.attributes.update(urls=[], recent_paths=[], time_spent=0.0)

    def _accumulate_visit(self, session: Session, signal: SignalInput, now: float) -> float:
        attrs = session.attributes
        attrs["url"] = signal.url
        attrs["domain"] = session.key
        attrs["tab_id"] = signal.tab_id
        urls: list[str] = attrs.setdefault("urls", [])
        urls.append(signal.url)
        del urls[:-MAX_RECENT_URLS]

        path = product_path(signal.url)
        if path and is_product_path(path):
            self._track_product_path(session, path, now)
        return 1.0

    def _track_product_path(self, session: Session, path: str, now: float) -> None:
        attrs = session.attributes
        cutoff = now - self.burst_window_seconds
        recent = [entry for entry in attrs.get("recent_paths", []) if entry[1] >= cutoff]
        recent.append([path, now])
        attrs["recent_paths"] = recent
        if len(_unique_paths(session)) < self.burst_threshold:
            return
        last_burst = attrs.get("last_burst_at")
        if last_burst is not None and now - last_burst < self.burst_cooldown_seconds:
            return
        attrs["last_burst_at"] = now
        self._burst_keys.add(session.key)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_impulsive(self, domain: str) -> bool:
        return self.classification(domain) != "none"

    def impulsive_domains(self) -> list[str]:
        return [s.key for s in self.store.live() if s.classification != "none"]

    def time_spent(self, domain: str) -> float:
        """Seconds tabs spent on ``domain`` in the current window, excluding tabs still open on it."""
        session = self.store.get(domain)
        return float(session.attributes.get("time_spent", 0.0)) if session is not None else 0.0

    def _credit_tab(self, tab_id: str, now: float) -> None:
        entry = self._tab_visits.pop(tab_id, None)
        if entry is None:
            return
        domain, started = entry
        session = self.store.get(domain)
        if session is not None:
            session.attributes["time_spent"] = session.attributes.get("time_spent", 0.0) + max(now - started, 0.0)


def _unique_paths(session: Session) -> set[str]:
    return {entry[0] for entry in session.attributes.get("recent_paths", [])}
