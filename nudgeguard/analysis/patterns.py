"""Composite pattern analysis across the three signal trackers.

Rules run in a fixed order and are independent: one pass can append several
insights. ``focusLoss`` is a conjunction (enough long tabs AND enough
impulsive domains in the same pass), not a union of the two conditions.
Confidence is a fixed constant per rule; only ``multiTabOveruse`` scales with
the number of long tabs.
"""

import logging
import time
from collections import deque
from datetime import datetime

from nudgeguard.models import Clock, Insight, InsightListener, InsightType
from nudgeguard.observability.metrics import INSIGHTS_TOTAL
from nudgeguard.trackers.scroll import ScrollTracker
from nudgeguard.trackers.time_tracker import TimeTracker
from nudgeguard.trackers.visits import VisitTracker

logger = logging.getLogger(__name__)

MULTI_TAB_FAN_OUT = 3
FOCUS_LOSS_MIN_LONG_TABS = 2
FOCUS_LOSS_MIN_IMPULSIVE_DOMAINS = 1
LATE_NIGHT_END_HOUR = 6
PRODUCTIVITY_FLOOR = 0.3

CONFIDENCE: dict[str, float] = {
    "doomscrollingHabit": 0.8,
    "shoppingImpulse": 0.7,
    "focusLoss": 0.8,
    "rapidTabSwitching": 0.6,
    "lateNightBrowsing": 0.9,
    "productivityLoss": 0.7,
}

# Score penalty per insight of each type logged today
PRODUCTIVITY_PENALTY: dict[str, float] = {
    "doomscrollingHabit": 0.1,
    "shoppingImpulse": 0.05,
    "rapidTabSwitching": 0.08,
    "lateNightBrowsing": 0.03,
}


class PatternAnalyzer:
    def __init__(
        self,
        time_tracker: TimeTracker,
        scroll_tracker: ScrollTracker,
        visit_tracker: VisitTracker,
        *,
        insight_log_max: int = 500,
        rapid_switch_threshold: int = 5,
        rapid_switch_window_seconds: float = 120.0,
        late_night_hour: int = 23,
        listener: InsightListener | None = None,
        clock: Clock = time.time,
    ) -> None:
        self.time_tracker = time_tracker
        self.scroll_tracker = scroll_tracker
        self.visit_tracker = visit_tracker
        self.rapid_switch_threshold = rapid_switch_threshold
        self.rapid_switch_window_seconds = rapid_switch_window_seconds
        self.late_night_hour = late_night_hour
        self.listener = listener
        self._clock = clock
        self._insights: deque[Insight] = deque(maxlen=insight_log_max)
        self._tab_switches: dict[str, list[float]] = {}

    def analyze(self) -> list[Insight]:
        """Run every rule once and return the insights produced by this pass."""
        now = self._clock()
        found: list[Insight] = []

        long_tabs = self.time_tracker.long_sessions()
        if len(long_tabs) > MULTI_TAB_FAN_OUT:
            found.append(
                self._insight(
                    "multiTabOveruse",
                    f"User has {len(long_tabs)} long active tab sessions, possible focus fragmentation.",
                    "medium",
                    now,
                    related=long_tabs,
                    confidence=min(len(long_tabs) / 5, 1.0),
                    metadata={"tab_count": len(long_tabs)},
                )
            )

        for tab_id in long_tabs:
            if self.scroll_tracker.is_doomscrolling(tab_id):
                found.append(
                    self._insight(
                        "doomscrollingHabit",
                        f"Extended scrolling detected in long-running tab {tab_id}.",
                        "high",
                        now,
                        related=[tab_id],
                        metadata={"scroll_severity": self.scroll_tracker.classification(tab_id)},
                    )
                )

        impulsive = self.visit_tracker.impulsive_domains()
        for domain in impulsive:
            found.append(
                self._insight(
                    "shoppingImpulse",
                    f"Impulsive shopping detected on {domain}.",
                    "medium",
                    now,
                    related=[domain],
                    metadata={
                        "visit_severity": self.visit_tracker.classification(domain),
                        "time_spent_seconds": self.visit_tracker.time_spent(domain),
                    },
                )
            )

        if len(long_tabs) > FOCUS_LOSS_MIN_LONG_TABS and len(impulsive) > FOCUS_LOSS_MIN_IMPULSIVE_DOMAINS:
            found.append(
                self._insight(
                    "focusLoss",
                    "Signs of focus loss detected due to multiple long tabs and shopping impulses.",
                    "high",
                    now,
                    related=long_tabs + impulsive,
                    metadata={"long_tabs": len(long_tabs), "impulsive_domains": len(impulsive)},
                )
            )

        rapid_tabs = self._rapid_switching_tabs(now)
        if rapid_tabs:
            found.append(
                self._insight(
                    "rapidTabSwitching",
                    f"Rapid tab switching detected in {len(rapid_tabs)} tabs.",
                    "medium",
                    now,
                    related=rapid_tabs,
                )
            )

        hour = datetime.fromtimestamp(now).hour
        if len(self.time_tracker.store) and (hour >= self.late_night_hour or hour < LATE_NIGHT_END_HOUR):
            found.append(
                self._insight(
                    "lateNightBrowsing",
                    f"Late night browsing detected at {hour}:00.",
                    "low",
                    now,
                    metadata={"hour": hour},
                )
            )

        score = self.productivity_score()
        if score < PRODUCTIVITY_FLOOR:
            found.append(
                self._insight(
                    "productivityLoss",
                    f"Low productivity score detected: {score:.2f}",
                    "high",
                    now,
                    metadata={"productivity_score": score},
                )
            )

        self._insights.extend(found)
        for insight in found:
            INSIGHTS_TOTAL.labels(type=insight.type, severity=insight.severity).inc()
            self._notify(insight)

        if found:
            logger.info("Pattern analysis produced %d insights", len(found))
        return found

    def record_tab_switch(self, tab_id: str) -> None:
        now = self._clock()
        cutoff = now - self.rapid_switch_window_seconds
        recent = [ts for ts in self._tab_switches.get(tab_id, []) if ts > cutoff]
        recent.append(now)
        self._tab_switches[tab_id] = recent

    def forget_tab(self, tab_id: str) -> None:
        self._tab_switches.pop(tab_id, None)

    def get_recent_insights(self, limit: int = 10) -> list[Insight]:
        if limit <= 0:
            return []
        return list(self._insights)[-limit:]

    def reset_insights(self) -> None:
        self._insights.clear()

    def productivity_score(self) -> float:
        """1.0 minus penalties for today's logged insights, clamped to [0, 1]."""
        today = datetime.fromtimestamp(self._clock()).date()
        score = 1.0
        for insight in self._insights:
            if datetime.fromtimestamp(insight.timestamp).date() == today:
                score -= PRODUCTIVITY_PENALTY.get(insight.type, 0.0)
        return max(0.0, min(1.0, score))

    def get_analysis_context(self) -> dict[str, object]:
        return {
            "current_time": self._clock(),
            "active_tabs": list(self._tab_switches),
            "recent_insights": [i.model_dump() for i in self.get_recent_insights(5)],
            "productivity_score": self.productivity_score(),
        }

    def _rapid_switching_tabs(self, now: float) -> list[str]:
        cutoff = now - self.rapid_switch_window_seconds
        return [
            tab_id
            for tab_id, stamps in self._tab_switches.items()
            if sum(1 for ts in stamps if ts > cutoff) >= self.rapid_switch_threshold
        ]

    def _insight(
        self,
        insight_type: InsightType,
        description: str,
        severity: str,
        now: float,
        *,
        related: list[str] | None = None,
        confidence: float | None = None,
        metadata: dict[str, object] | None = None,
    ) -> Insight:
        return Insight(
            type=insight_type,
            description=description,
            severity=severity,  # type: ignore[arg-type]
            confidence=confidence if confidence is not None else CONFIDENCE[insight_type],
            related_keys=list(related or []),
            timestamp=now,
            metadata=metadata or {},
        )

    def _notify(self, insight: Insight) -> None:
        if self.listener is None:
            return
        try:
            self.listener.on_insight(insight)
        except Exception:
            logger.exception("Insight listener failed for %s", insight.type)
