"""Test helpers shared across modules: a controllable clock and fast settings."""

from datetime import datetime

from nudgeguard.config import SeverityPolicy, Settings

# A weekday afternoon in local time, well clear of late-night and quiet hours.
AFTERNOON = datetime(2026, 3, 10, 14, 0, 0).timestamp()


class FakeClock:
    """Manually advanced clock, injected wherever a component takes ``clock=``."""

    def __init__(self, start: float = AFTERNOON) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides: object) -> Settings:
    """Settings with short delays so timer tests finish quickly."""
    values: dict[str, object] = {
        "severity_policy": {
            "high": SeverityPolicy(delay_seconds=0.01, cooldown_seconds=600.0),
            "medium": SeverityPolicy(delay_seconds=0.02, cooldown_seconds=300.0),
            "low": SeverityPolicy(delay_seconds=0.03, cooldown_seconds=900.0),
        },
        "openai_api_key": "",
        "notification_webhook_url": "",
        "graph_snapshot_path": "",
        "tracker_tick_seconds": 3600.0,
        "analysis_interval_seconds": 3600.0,
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]
