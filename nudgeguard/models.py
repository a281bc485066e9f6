"""Pydantic models shared by the trackers, the analyzer, and the orchestrator."""

from collections.abc import Callable
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field

Clock = Callable[[], float]

BehaviorKind = Literal["time", "scroll", "visit"]
Severity = Literal["none", "low", "medium", "high"]
InsightType = Literal[
    "multiTabOveruse",
    "doomscrollingHabit",
    "shoppingImpulse",
    "focusLoss",
    "rapidTabSwitching",
    "lateNightBrowsing",
    "productivityLoss",
]

SEVERITY_RANK: dict[str, int] = {"none": 0, "low": 1, "medium": 2, "high": 3}

# (ratio floor, severity) pairs, checked from the top
SEVERITY_RATIOS: tuple[tuple[float, Severity], ...] = (
    (2.0, "high"),
    (1.5, "medium"),
    (1.0, "low"),
)


def classify_ratio(accumulator: float, threshold: float) -> Severity:
    """Map ``accumulator / threshold`` onto the fixed severity table."""
    if threshold <= 0:
        return "none"
    ratio = accumulator / threshold
    for floor, severity in SEVERITY_RATIOS:
        if ratio >= floor:
            return severity
    return "none"


def severity_at_least(severity: str, minimum: str) -> bool:
    return SEVERITY_RANK.get(severity, 0) >= SEVERITY_RANK.get(minimum, 0)


class SignalInput(BaseModel):
    """A raw host signal handed to a tracker."""

    model_config = ConfigDict(frozen=True)

    url: str = ""
    amount: float = 0.0
    tab_id: str | None = None


class Session(BaseModel):
    """Live per-key accumulator state for one tracker."""

    key: str
    window_start: float
    window_accumulator: float = 0.0
    last_activity: float
    event_count: int = 0
    classification: Severity = "none"
    attributes: dict[str, Any] = Field(default_factory=dict)


class BehaviorEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: BehaviorKind
    key: str
    severity: Literal["low", "medium", "high"]
    metric: float
    timestamp: float
    url: str = ""
    domain: str = ""
    # Start of the session window that produced the event; None for hand-built events.
    window_start: float | None = None
    trigger: Literal["threshold", "burst"] = "threshold"


class Insight(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: InsightType
    description: str
    severity: Literal["low", "medium", "high"]
    confidence: float = Field(ge=0.0, le=1.0)
    related_keys: list[str] = Field(default_factory=list)
    timestamp: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class BehaviorListener(Protocol):
    def on_behavior_event(self, event: BehaviorEvent) -> None: ...


class InsightListener(Protocol):
    def on_insight(self, insight: Insight) -> None: ...
