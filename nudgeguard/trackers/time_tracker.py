"""Time-on-site tracker, keyed by tab id.

A tab's accumulator is the carried-over time plus the live segment since the
last carry. Navigating to another domain carries the live segment and credits
it to the old domain's bucket in the daily aggregate, so the aggregate always
reflects where the time was actually spent.
"""

import time
from datetime import date, datetime, timedelta

from nudgeguard.models import BehaviorListener, Clock, Session, SignalInput
from nudgeguard.trackers.base import SignalTracker
from nudgeguard.trackers.urls import extract_domain, is_excluded

DAILY_RETENTION_DAYS = 30


def _day_key(ts: float) -> str:
    return datetime.fromtimestamp(ts).date().isoformat()


class TimeTracker(SignalTracker):
    def __init__(
        self,
        *,
        alert_threshold_minutes: float,
        window_seconds: float,
        excluded_sites: list[str] | None = None,
        listener: BehaviorListener | None = None,
        clock: Clock = time.time,
    ) -> None:
        super().__init__(
            "time",
            threshold=alert_threshold_minutes * 60,
            window_seconds=window_seconds,
            accumulate=self._accumulate_time,
            listener=listener,
            clock=clock,
        )
        self.alert_threshold_minutes = alert_threshold_minutes
        self.excluded_sites = excluded_sites or []
        # day (ISO date) -> domain -> seconds
        self._daily: dict[str, dict[str, float]] = {}

    def accepts(self, signal: SignalInput) -> bool:
        return not is_excluded(signal.url, self.excluded_sites) if signal.url else False

    def activate(self, key: str, fallback_url: str = "") -> None:
        """Record activity on a tab.

        An untracked tab (never seen, or evicted as stale) is started from
        ``fallback_url`` when one is given and ignored otherwise.
        """
        session = self.store.get(key)
        url = session.attributes.get("url", "") if session is not None else fallback_url
        if url:
            self.record_event(key, SignalInput(url=url, tab_id=key))

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def on_session_created(self, session: Session, signal: SignalInput, now: float) -> None:
        session.attributes.update(
            url=signal.url,
            domain=extract_domain(signal.url),
            segment_start=now,
            accumulated_time=0.0,
        )

    def on_window_reset(self, session: Session, now: float) -> None:
        self._credit_live_segment(session, now)
        session.attributes["accumulated_time"] = 0.0

    def on_session_end(self, session: Session, now: float) -> None:
        self._credit_live_segment(session, now)

    def refresh(self, session: Session, now: float) -> float:
        return self.total_seconds(session, now) - session.window_accumulator

    def _accumulate_time(self, session: Session, signal: SignalInput, now: float) -> float:
        attrs = session.attributes
        if signal.url and signal.url != attrs.get("url"):
            new_domain = extract_domain(signal.url)
            if new_domain != attrs.get("domain"):
                attrs["accumulated_time"] = attrs.get("accumulated_time", 0.0) + self._credit_live_segment(
                    session, now
                )
            attrs["url"] = signal.url
            attrs["domain"] = new_domain
        return self.total_seconds(session, now) - session.window_accumulator

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def total_seconds(self, session: Session, now: float) -> float:
        attrs = session.attributes
        return attrs.get("accumulated_time", 0.0) + max(now - attrs.get("segment_start", now), 0.0)

    def long_sessions(self) -> list[str]:
        """Tab ids whose total time (carried + live) has reached the alert threshold."""
        now = self._clock()
        return [s.key for s in self.store.live() if self.total_seconds(s, now) >= self.threshold]

    def get_today_stats(self) -> dict[str, object]:
        now = self._clock()
        today = _day_key(now)
        by_domain = dict(self._daily.get(today, {}))
        for session in self.store.live():
            domain = session.attributes.get("domain", "")
            if not domain:
                continue
            start = session.attributes.get("segment_start", now)
            live = max(now - max(start, _midnight(now)), 0.0)
            by_domain[domain] = by_domain.get(domain, 0.0) + live
        return {
            "date": today,
            "total_seconds": sum(by_domain.values()),
            "by_domain": by_domain,
        }

    def daily_totals(self) -> dict[str, dict[str, float]]:
        return {day: dict(domains) for day, domains in self._daily.items()}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _credit_live_segment(self, session: Session, now: float) -> float:
        """Fold the live segment into the daily aggregate and restart it. Returns its length."""
        attrs = session.attributes
        elapsed = max(now - attrs.get("segment_start", now), 0.0)
        attrs["segment_start"] = now
        domain = attrs.get("domain", "")
        if domain and elapsed > 0:
            bucket = self._daily.setdefault(_day_key(now), {})
            bucket[domain] = bucket.get(domain, 0.0) + elapsed
            self._prune_daily(now)
        return elapsed

    def _prune_daily(self, now: float) -> None:
        cutoff = (datetime.fromtimestamp(now).date() - timedelta(days=DAILY_RETENTION_DAYS)).isoformat()
        for day in [d for d in self._daily if d < cutoff]:
            del self._daily[day]


def _midnight(ts: float) -> float:
    day = date.fromtimestamp(ts)
    return datetime(day.year, day.month, day.day).timestamp()
