"""Wires the signal trackers and pattern analyzer to the graph and the intervention path.

Every behavior event and insight is written to the knowledge graph, then goes
through the intervention decision: minimum severity, hourly cap, quiet hours,
and finally the cooldown gate. Only a won cooldown schedules a timer, and
every schedule gets a unique name, so each successful acquire fires exactly
once. Any internal failure fails closed: nothing is scheduled.
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from datetime import datetime
from typing import Any

from nudgeguard.analysis.patterns import PatternAnalyzer
from nudgeguard.config import Settings, get_settings
from nudgeguard.interventions.cooldown import CooldownGate
from nudgeguard.interventions.notifier import InterventionSink, build_notifier
from nudgeguard.interventions.scheduler import InterventionScheduler, ScheduledIntervention
from nudgeguard.knowledge.context import ContextBuilder
from nudgeguard.knowledge.embeddings import CachedEmbedder, get_embeddings
from nudgeguard.knowledge.graph import KnowledgeGraph
from nudgeguard.models import BehaviorEvent, Clock, Insight, SignalInput, severity_at_least
from nudgeguard.observability.metrics import INTERVENTION_DECISIONS_TOTAL, INTERVENTIONS_FIRED_TOTAL
from nudgeguard.trackers.base import SignalTracker
from nudgeguard.trackers.scroll import ScrollTracker
from nudgeguard.trackers.time_tracker import TimeTracker
from nudgeguard.trackers.urls import extract_domain, parse_domain_list
from nudgeguard.trackers.visits import VisitTracker

logger = logging.getLogger(__name__)

HOUR_SECONDS = 60 * 60
FIRED_HISTORY_MAX = 100


def _ms(ts: float) -> int:
    return int(ts * 1000)


class InterventionOrchestrator:
    def __init__(
        self,
        settings: Settings,
        *,
        time_tracker: TimeTracker,
        scroll_tracker: ScrollTracker,
        visit_tracker: VisitTracker,
        analyzer: PatternAnalyzer,
        graph: KnowledgeGraph,
        context: ContextBuilder,
        cooldown: CooldownGate,
        notifier: InterventionSink,
        clock: Clock = time.time,
    ) -> None:
        self.settings = settings
        self.time_tracker = time_tracker
        self.scroll_tracker = scroll_tracker
        self.visit_tracker = visit_tracker
        self.analyzer = analyzer
        self.graph = graph
        self.context = context
        self.cooldown = cooldown
        self.notifier = notifier
        self.scheduler = InterventionScheduler(self._on_timer_fired, clock=clock)
        self._clock = clock
        self._sequence = itertools.count(1)
        self._recent_schedules: deque[float] = deque()
        self._fired: deque[dict[str, Any]] = deque(maxlen=FIRED_HISTORY_MAX)
        self._deliveries: set[asyncio.Task[None]] = set()

        for tracker in self.trackers:
            tracker.listener = self
        analyzer.listener = self

    @property
    def trackers(self) -> tuple[SignalTracker, ...]:
        return (self.time_tracker, self.scroll_tracker, self.visit_tracker)

    # ------------------------------------------------------------------
    # Inbound host events
    # ------------------------------------------------------------------

    def on_tab_activated(self, tab_id: int | str) -> None:
        key = str(tab_id)
        # A tab evicted as stale is restarted from the last URL the graph saw for it.
        tab_node = self.graph.get_node(f"tab-{key}")
        last_url = str(tab_node.metadata.get("url", "")) if tab_node is not None else ""
        self.time_tracker.activate(key, fallback_url=last_url)
        self.analyzer.record_tab_switch(key)

    def on_tab_updated(self, tab_id: int | str, url: str) -> None:
        key = str(tab_id)
        if not url:
            return
        self.time_tracker.record_event(key, SignalInput(url=url, tab_id=key))
        self.visit_tracker.record_visit(key, url)

        domain = extract_domain(url)
        if not self.graph.add_node(self.graph.make_node(f"tab-{key}", "tab", {"tab_id": key, "url": url})):
            self.graph.update_node(f"tab-{key}", {"url": url})
        if domain:
            self.graph.add_node(self.graph.make_node(f"domain-{domain}", "domain", {"domain": domain, "url": url}))

    def on_scroll(self, tab_id: int | str, url: str, delta_pixels: float) -> None:
        key = str(tab_id)
        self.scroll_tracker.record_event(key, SignalInput(url=url, amount=delta_pixels, tab_id=key))

    def on_tab_removed(self, tab_id: int | str) -> None:
        key = str(tab_id)
        self.time_tracker.end_session(key)
        self.scroll_tracker.end_session(key)
        self.visit_tracker.end_tab(key)
        self.analyzer.forget_tab(key)

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def run_tracker_tick(self) -> list[BehaviorEvent]:
        events: list[BehaviorEvent] = []
        for tracker in self.trackers:
            events.extend(tracker.recheck())
        return events

    def run_analysis(self) -> list[Insight]:
        return self.analyzer.analyze()

    # ------------------------------------------------------------------
    # Listener interfaces
    # ------------------------------------------------------------------

    def on_behavior_event(self, event: BehaviorEvent) -> None:
        self._record_behavior(event)
        payload = {
            "source": "behavior",
            "kind": event.kind,
            "key": event.key,
            "severity": event.severity,
            "metric": event.metric,
            "url": event.url,
            "domain": event.domain,
            "timestamp": event.timestamp,
        }
        cooldown_key = f"{event.kind}:{event.key}"
        if event.trigger == "burst":
            cooldown_key += ":burst"
            payload["trigger"] = event.trigger
        self._decide("behavior", cooldown_key, event.severity, payload)

    def on_insight(self, insight: Insight) -> None:
        self._record_insight(insight)
        cooldown_key = f"insight:{insight.type}"
        if len(insight.related_keys) == 1:
            cooldown_key += f":{insight.related_keys[0]}"
        payload = {
            "source": "insight",
            "type": insight.type,
            "description": insight.description,
            "severity": insight.severity,
            "confidence": insight.confidence,
            "related_keys": list(insight.related_keys),
            "timestamp": insight.timestamp,
        }
        self._decide("insight", cooldown_key, insight.severity, payload)

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    def build_nudge_context(self, type_filter: str | None = None) -> dict[str, Any]:
        context = self.context.generate_context_for_nudge(type_filter)
        context.update(self.analyzer.get_analysis_context())
        context["today"] = self.time_tracker.get_today_stats()
        return context

    async def retrieve_semantic_context(self, query: str, node_types: list[str] | None = None) -> dict[str, Any]:
        return await self.context.retrieve_semantic_context(query, node_types)

    def get_stats(self) -> dict[str, Any]:
        return {
            "sessions": {tracker.kind: len(tracker.store) for tracker in self.trackers},
            "graph": self.graph.get_stats(),
            "pending_interventions": len(self.scheduler.pending()),
            "cooldown_entries": len(self.cooldown),
            "interventions_last_hour": len(self._schedules_last_hour()),
            "recent_fired": list(self._fired),
            "productivity_score": self.analyzer.productivity_score(),
            "today": self.time_tracker.get_today_stats(),
        }

    def get_active_sessions(self) -> dict[str, list[dict[str, Any]]]:
        return {tracker.kind: [s.model_dump() for s in tracker.query_all()] for tracker in self.trackers}

    def get_recent_insights(self, limit: int = 10) -> list[Insight]:
        return self.analyzer.get_recent_insights(limit)

    def export_snapshot(self) -> dict[str, Any]:
        return self.graph.export_graph()

    def import_snapshot(self, snapshot: dict[str, Any]) -> None:
        self.graph.import_graph(snapshot)

    async def aclose(self) -> None:
        """Cancel pending timers and wait for in-flight deliveries."""
        self.scheduler.shutdown()
        if self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)

    # ------------------------------------------------------------------
    # Graph writes
    # ------------------------------------------------------------------

    def _record_behavior(self, event: BehaviorEvent) -> None:
        graph = self.graph
        # One node per (kind, key, window, severity, trigger); tick re-confirmations refresh it.
        window_start = event.window_start if event.window_start is not None else event.timestamp
        node_id = f"{event.kind}-{event.key}-{_ms(window_start)}-{event.severity}"
        if event.trigger == "burst":
            node_id += "-burst"
        metadata = {
            "kind": event.kind,
            "key": event.key,
            "severity": event.severity,
            "trigger": event.trigger,
            "metric": event.metric,
            "url": event.url,
            "domain": event.domain,
            "timestamp": event.timestamp,
            "last_seen": event.timestamp,
            "occurrences": 1,
        }
        if not graph.add_node(graph.make_node(node_id, "behavior", metadata)):
            existing = graph.get_node(node_id)
            occurrences = existing.metadata.get("occurrences", 1) if existing is not None else 1
            graph.update_node(
                node_id, {"metric": event.metric, "last_seen": event.timestamp, "occurrences": occurrences + 1}
            )
            return

        edge_meta = {"behavior_type": event.kind, "severity": event.severity}
        if event.kind == "visit":
            graph.add_node(graph.make_node(f"domain-{event.key}", "domain", {"domain": event.key}))
            graph.add_edge(graph.make_edge(f"domain-{event.key}", node_id, "exhibits", edge_meta))
            return

        graph.add_node(graph.make_node(f"tab-{event.key}", "tab", {"tab_id": event.key}))
        graph.add_edge(graph.make_edge(f"tab-{event.key}", node_id, "exhibits", edge_meta))
        if event.domain:
            graph.add_node(graph.make_node(f"domain-{event.domain}", "domain", {"domain": event.domain}))
            graph.add_edge(graph.make_edge(f"domain-{event.domain}", node_id, "visited", {"metric": event.metric}))

    def _record_insight(self, insight: Insight) -> None:
        graph = self.graph
        node_id = f"pattern-{insight.type}-{_ms(insight.timestamp)}"
        metadata = {
            "type": insight.type,
            "description": insight.description,
            "severity": insight.severity,
            "confidence": insight.confidence,
            "related_keys": list(insight.related_keys),
            "details": dict(insight.metadata),
            "timestamp": insight.timestamp,
        }
        if not graph.add_node(graph.make_node(node_id, "pattern", metadata)):
            return
        for key in insight.related_keys:
            # Related keys are tab ids or domains; the edge to the other prefix is dropped.
            for anchor in (f"tab-{key}", f"domain-{key}"):
                graph.add_edge(graph.make_edge(anchor, node_id, "contributesTo", {"pattern_type": insight.type}))

    # ------------------------------------------------------------------
    # Intervention decision
    # ------------------------------------------------------------------

    def _decide(self, source: str, cooldown_key: str, severity: str, payload: dict[str, Any]) -> bool:
        outcome = self._gate(cooldown_key, severity)
        if outcome == "scheduled":
            name = f"{cooldown_key}#{next(self._sequence)}"
            policy = self.settings.severity_policy[severity]
            try:
                self.scheduler.schedule(name, policy.delay_seconds, {**payload, "cooldown_key": cooldown_key})
            except Exception:
                logger.exception("Failed to schedule intervention '%s'", name)
                self.cooldown.reset(cooldown_key)
                outcome = "error"
            else:
                self._recent_schedules.append(self._clock())
                logger.info("Scheduled %s intervention '%s' in %.1fs", severity, name, policy.delay_seconds)

        INTERVENTION_DECISIONS_TOTAL.labels(source=source, outcome=outcome).inc()
        if outcome != "scheduled":
            logger.debug("Intervention for '%s' not scheduled: %s", cooldown_key, outcome)
        return outcome == "scheduled"

    def _gate(self, cooldown_key: str, severity: str) -> str:
        settings = self.settings
        if not severity_at_least(severity, settings.min_intervention_severity):
            return "below_threshold"
        policy = settings.severity_policy.get(severity)
        if policy is None:
            return "no_policy"
        if settings.max_interventions_per_hour > 0 and (
            len(self._schedules_last_hour()) >= settings.max_interventions_per_hour
        ):
            return "rate_limited"
        if self._in_quiet_hours():
            return "quiet_hours"
        if not self.cooldown.try_acquire(cooldown_key, policy.cooldown_seconds):
            return "cooldown"
        return "scheduled"

    def _schedules_last_hour(self) -> deque[float]:
        cutoff = self._clock() - HOUR_SECONDS
        while self._recent_schedules and self._recent_schedules[0] <= cutoff:
            self._recent_schedules.popleft()
        return self._recent_schedules

    def _in_quiet_hours(self) -> bool:
        settings = self.settings
        if not settings.quiet_hours_enabled:
            return False
        hour = datetime.fromtimestamp(self._clock()).hour
        start, end = settings.quiet_hours_start, settings.quiet_hours_end
        if start > end:
            return hour >= start or hour < end
        return start <= hour < end

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _on_timer_fired(self, intervention: ScheduledIntervention) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(intervention))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, intervention: ScheduledIntervention) -> None:
        try:
            delivered = await self.notifier.on_intervention_fired(intervention.name, dict(intervention.payload))
            status = "delivered" if delivered else "failed"
        except Exception:
            logger.exception("Notifier raised for intervention '%s'", intervention.name)
            status = "error"
        INTERVENTIONS_FIRED_TOTAL.labels(status=status).inc()
        self._fired.append({"name": intervention.name, "status": status, "fired_at": self._clock()})


def build_orchestrator(
    settings: Settings | None = None,
    notifier: InterventionSink | None = None,
    *,
    clock: Clock = time.time,
    embedder: CachedEmbedder | None = None,
) -> InterventionOrchestrator:
    """Construct the whole pipeline from settings."""
    settings = settings or get_settings()

    time_tracker = TimeTracker(
        alert_threshold_minutes=settings.time_alert_threshold_minutes,
        window_seconds=settings.time_window_seconds,
        excluded_sites=parse_domain_list(settings.time_excluded_sites),
        clock=clock,
    )
    scroll_tracker = ScrollTracker(
        threshold_px=settings.scroll_threshold_px,
        window_seconds=settings.scroll_window_seconds,
        monitored_domains=parse_domain_list(settings.scroll_monitored_domains),
        clock=clock,
    )
    visit_tracker = VisitTracker(
        visit_threshold=settings.visit_threshold,
        window_seconds=settings.visit_window_seconds,
        monitored_domains=parse_domain_list(settings.visit_monitored_domains),
        burst_window_seconds=settings.visit_burst_window_seconds,
        burst_threshold=settings.visit_burst_threshold,
        burst_cooldown_seconds=settings.visit_burst_cooldown_seconds,
        clock=clock,
    )
    analyzer = PatternAnalyzer(
        time_tracker,
        scroll_tracker,
        visit_tracker,
        insight_log_max=settings.insight_log_max,
        rapid_switch_threshold=settings.rapid_switch_threshold,
        rapid_switch_window_seconds=settings.rapid_switch_window_seconds,
        late_night_hour=settings.late_night_hour,
        clock=clock,
    )
    graph = KnowledgeGraph(clock=clock)
    if embedder is None:
        embeddings = get_embeddings(settings)
        embedder = CachedEmbedder(embeddings) if embeddings is not None else None

    return InterventionOrchestrator(
        settings,
        time_tracker=time_tracker,
        scroll_tracker=scroll_tracker,
        visit_tracker=visit_tracker,
        analyzer=analyzer,
        graph=graph,
        context=ContextBuilder(graph, embedder, clock=clock),
        cooldown=CooldownGate(settings.cooldown_max_entries, clock=clock),
        notifier=notifier or build_notifier(settings),
        clock=clock,
    )
