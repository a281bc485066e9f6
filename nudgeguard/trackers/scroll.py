"""Doomscrolling detector: scroll distance per tab within a time window."""

import time

from nudgeguard.models import BehaviorListener, Clock, Session, SignalInput
from nudgeguard.trackers.base import SignalTracker
from nudgeguard.trackers.urls import domain_matches, extract_domain


class ScrollTracker(SignalTracker):
    def __init__(
        self,
        *,
        threshold_px: float,
        window_seconds: float,
        monitored_domains: list[str] | None = None,
        listener: BehaviorListener | None = None,
        clock: Clock = time.time,
    ) -> None:
        super().__init__(
            "scroll",
            threshold=threshold_px,
            window_seconds=window_seconds,
            accumulate=self._accumulate_scroll,
            listener=listener,
            clock=clock,
        )
        self.monitored_domains = monitored_domains or []

    def accepts(self, signal: SignalInput) -> bool:
        return domain_matches(extract_domain(signal.url), self.monitored_domains)

    def _accumulate_scroll(self, session: Session, signal: SignalInput, now: float) -> float:
        session.attributes["url"] = signal.url
        session.attributes["domain"] = extract_domain(signal.url)
        # Scrolling back up is still scrolling.
        return abs(signal.amount)

    def is_doomscrolling(self, key: str) -> bool:
        return self.classification(key) != "none"
