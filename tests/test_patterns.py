"""Unit tests for the composite pattern analyzer."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from nudgeguard.analysis.patterns import PatternAnalyzer
from nudgeguard.models import SignalInput
from nudgeguard.trackers.scroll import ScrollTracker
from nudgeguard.trackers.time_tracker import TimeTracker
from nudgeguard.trackers.visits import VisitTracker
from tests.support import FakeClock


class Pipeline:
    """Three trackers and an analyzer sharing one fake clock."""

    def __init__(self, clock: FakeClock, **analyzer_kwargs: object) -> None:
        self.clock = clock
        self.time = TimeTracker(alert_threshold_minutes=1, window_seconds=3600, clock=clock)
        self.scroll = ScrollTracker(threshold_px=1000, window_seconds=600, monitored_domains=[], clock=clock)
        self.visits = VisitTracker(visit_threshold=3, window_seconds=600, monitored_domains=[], clock=clock)
        self.listener = MagicMock()
        self.analyzer = PatternAnalyzer(
            self.time,
            self.scroll,
            self.visits,
            listener=self.listener,
            clock=clock,
            **analyzer_kwargs,  # type: ignore[arg-type]
        )

    def open_long_tabs(self, count: int) -> list[str]:
        tabs = [str(i) for i in range(1, count + 1)]
        for tab in tabs:
            self.time.record_event(tab, SignalInput(url=f"https://site{tab}.example.com/", tab_id=tab))
        self.clock.advance(61)
        return tabs

    def shop(self, *domains: str) -> None:
        for domain in domains:
            for i in range(3):
                self.visits.record_visit("1", f"https://{domain}/item/{i}")


@pytest.fixture
def pipeline(clock: FakeClock) -> Pipeline:
    return Pipeline(clock)


def _types(insights: list) -> list[str]:  # type: ignore[type-arg]
    return [i.type for i in insights]


# ---------------------------------------------------------------------------
# Focus loss
# ---------------------------------------------------------------------------


class TestFocusLoss:
    def test_long_tabs_without_impulsive_domains(self, pipeline: Pipeline) -> None:
        pipeline.open_long_tabs(3)

        insights = pipeline.analyzer.analyze()

        assert "focusLoss" not in _types(insights)

    def test_long_tabs_and_impulsive_domains(self, pipeline: Pipeline) -> None:
        pipeline.open_long_tabs(3)
        pipeline.shop("shop-a.com", "shop-b.com")

        insights = pipeline.analyzer.analyze()

        assert _types(insights).count("focusLoss") == 1
        assert _types(insights).count("shoppingImpulse") == 2
        focus = next(i for i in insights if i.type == "focusLoss")
        assert focus.severity == "high"
        assert set(focus.related_keys) == {"1", "2", "3", "shop-a.com", "shop-b.com"}

    def test_one_focus_loss_per_pass(self, pipeline: Pipeline) -> None:
        pipeline.open_long_tabs(3)
        pipeline.shop("shop-a.com", "shop-b.com")

        first = pipeline.analyzer.analyze()
        second = pipeline.analyzer.analyze()

        assert _types(first).count("focusLoss") == 1
        assert _types(second).count("focusLoss") == 1

    def test_single_impulsive_domain_is_not_enough(self, pipeline: Pipeline) -> None:
        pipeline.open_long_tabs(3)
        pipeline.shop("shop-a.com")

        assert "focusLoss" not in _types(pipeline.analyzer.analyze())


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------


class TestRules:
    def test_multi_tab_overuse_needs_more_than_three(self, pipeline: Pipeline) -> None:
        pipeline.open_long_tabs(4)

        insights = pipeline.analyzer.analyze()

        multi = [i for i in insights if i.type == "multiTabOveruse"]
        assert len(multi) == 1
        assert multi[0].severity == "medium"
        assert multi[0].confidence == pytest.approx(0.8)
        assert multi[0].metadata["tab_count"] == 4

    def test_multi_tab_confidence_is_capped(self, pipeline: Pipeline) -> None:
        pipeline.open_long_tabs(7)

        multi = next(i for i in pipeline.analyzer.analyze() if i.type == "multiTabOveruse")
        assert multi.confidence == 1.0

    def test_shopping_impulse_reports_time_on_the_domain(self, pipeline: Pipeline) -> None:
        pipeline.shop("shop-a.com")
        pipeline.clock.advance(30)
        pipeline.visits.end_tab("1")

        shopping = next(i for i in pipeline.analyzer.analyze() if i.type == "shoppingImpulse")
        assert shopping.metadata["time_spent_seconds"] == pytest.approx(30)

    def test_doomscrolling_requires_a_long_tab(self, pipeline: Pipeline) -> None:
        pipeline.scroll.record_event("9", SignalInput(url="https://reddit.com/", amount=3000))
        assert "doomscrollingHabit" not in _types(pipeline.analyzer.analyze())

        pipeline.open_long_tabs(1)
        pipeline.scroll.record_event("1", SignalInput(url="https://reddit.com/", amount=3000))
        insights = pipeline.analyzer.analyze()

        doom = [i for i in insights if i.type == "doomscrollingHabit"]
        assert [i.related_keys for i in doom] == [["1"]]
        assert doom[0].severity == "high"

    def test_rapid_tab_switching(self, pipeline: Pipeline, clock: FakeClock) -> None:
        for _ in range(5):
            pipeline.analyzer.record_tab_switch("4")
            clock.advance(10)

        rapid = [i for i in pipeline.analyzer.analyze() if i.type == "rapidTabSwitching"]
        assert len(rapid) == 1
        assert rapid[0].related_keys == ["4"]

    def test_slow_switching_is_not_rapid(self, pipeline: Pipeline, clock: FakeClock) -> None:
        for _ in range(5):
            pipeline.analyzer.record_tab_switch("4")
            clock.advance(60)

        assert "rapidTabSwitching" not in _types(pipeline.analyzer.analyze())

    def test_forget_tab_clears_switch_history(self, pipeline: Pipeline) -> None:
        for _ in range(5):
            pipeline.analyzer.record_tab_switch("4")
        pipeline.analyzer.forget_tab("4")

        assert "rapidTabSwitching" not in _types(pipeline.analyzer.analyze())

    def test_late_night_browsing_needs_live_sessions(self) -> None:
        clock = FakeClock(datetime(2026, 3, 10, 23, 30).timestamp())
        pipeline = Pipeline(clock)
        assert "lateNightBrowsing" not in _types(pipeline.analyzer.analyze())

        pipeline.time.record_event("1", SignalInput(url="https://example.com/"))
        late = [i for i in pipeline.analyzer.analyze() if i.type == "lateNightBrowsing"]

        assert len(late) == 1
        assert late[0].severity == "low"
        assert late[0].metadata["hour"] == 23

    def test_early_morning_counts_as_late_night(self) -> None:
        clock = FakeClock(datetime(2026, 3, 11, 2, 0).timestamp())
        pipeline = Pipeline(clock)
        pipeline.time.record_event("1", SignalInput(url="https://example.com/"))

        assert "lateNightBrowsing" in _types(pipeline.analyzer.analyze())

    def test_afternoon_is_not_late_night(self, pipeline: Pipeline) -> None:
        pipeline.time.record_event("1", SignalInput(url="https://example.com/"))
        assert "lateNightBrowsing" not in _types(pipeline.analyzer.analyze())


# ---------------------------------------------------------------------------
# Productivity score
# ---------------------------------------------------------------------------


class TestProductivity:
    def test_starts_at_one(self, pipeline: Pipeline) -> None:
        assert pipeline.analyzer.productivity_score() == 1.0

    def test_penalties_accumulate_from_todays_insights(self, pipeline: Pipeline) -> None:
        pipeline.open_long_tabs(1)
        pipeline.scroll.record_event("1", SignalInput(url="https://reddit.com/", amount=3000))

        pipeline.analyzer.analyze()
        pipeline.analyzer.analyze()

        assert pipeline.analyzer.productivity_score() == pytest.approx(0.8)

    def test_low_score_raises_productivity_loss(self, pipeline: Pipeline) -> None:
        pipeline.open_long_tabs(1)
        pipeline.scroll.record_event("1", SignalInput(url="https://reddit.com/", amount=3000))

        found: list[str] = []
        for _ in range(10):
            found.extend(_types(pipeline.analyzer.analyze()))

        assert "productivityLoss" in found
        assert pipeline.analyzer.productivity_score() < 0.3

    def test_yesterdays_insights_do_not_count(self, pipeline: Pipeline, clock: FakeClock) -> None:
        pipeline.open_long_tabs(1)
        pipeline.scroll.record_event("1", SignalInput(url="https://reddit.com/", amount=3000))
        pipeline.analyzer.analyze()

        clock.advance(24 * 60 * 60)

        assert pipeline.analyzer.productivity_score() == 1.0


# ---------------------------------------------------------------------------
# Insight log and listener
# ---------------------------------------------------------------------------


class TestInsightLog:
    def test_log_is_bounded(self, clock: FakeClock) -> None:
        pipeline = Pipeline(clock, insight_log_max=3)
        pipeline.shop("a.com", "b.com")

        pipeline.analyzer.analyze()
        pipeline.analyzer.analyze()

        recent = pipeline.analyzer.get_recent_insights(10)
        assert len(recent) == 3

    def test_recent_insights_are_most_recent_last(self, pipeline: Pipeline, clock: FakeClock) -> None:
        pipeline.shop("a.com")
        pipeline.analyzer.analyze()
        clock.advance(1)
        pipeline.analyzer.analyze()

        recent = pipeline.analyzer.get_recent_insights(2)
        assert recent[0].timestamp < recent[1].timestamp
        assert pipeline.analyzer.get_recent_insights(0) == []

    def test_reset_insights(self, pipeline: Pipeline) -> None:
        pipeline.shop("a.com")
        pipeline.analyzer.analyze()
        pipeline.analyzer.reset_insights()

        assert pipeline.analyzer.get_recent_insights() == []

    def test_listener_receives_every_insight(self, pipeline: Pipeline) -> None:
        pipeline.shop("a.com", "b.com")
        insights = pipeline.analyzer.analyze()

        delivered = [c.args[0] for c in pipeline.listener.on_insight.call_args_list]
        assert delivered == insights

    def test_listener_failure_is_contained(self, pipeline: Pipeline) -> None:
        pipeline.listener.on_insight.side_effect = RuntimeError("boom")
        pipeline.shop("a.com")

        insights = pipeline.analyzer.analyze()

        assert _types(insights) == ["shoppingImpulse"]
        assert len(pipeline.analyzer.get_recent_insights()) == 1

    def test_confidence_stays_in_range(self, pipeline: Pipeline) -> None:
        pipeline.open_long_tabs(6)
        pipeline.shop("a.com", "b.com")

        for insight in pipeline.analyzer.analyze():
            assert 0.0 <= insight.confidence <= 1.0
