from functools import lru_cache
from typing import ClassVar

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_SCROLL_DOMAINS = (
    "twitter.com,x.com,facebook.com,instagram.com,reddit.com,discord.com,youtube.com,"
    "tiktok.com,linkedin.com,pinterest.com,snapchat.com,tumblr.com,medium.com,quora.com,"
    "netflix.com,hulu.com,amazon.com,flipkart.com,ebay.com"
)

_DEFAULT_SHOPPING_DOMAINS = (
    "amazon.com,flipkart.com,ebay.com,myntra.com,snapdeal.com,ajio.com,walmart.com,"
    "target.com,bestbuy.com,aliexpress.com,shopify.com,etsy.com,zappos.com,overstock.com,wayfair.com"
)


class SeverityPolicy(BaseModel):
    """Delay before an intervention fires and how long its cooldown key stays closed."""

    delay_seconds: float
    cooldown_seconds: float


def _default_severity_policy() -> dict[str, SeverityPolicy]:
    return {
        "high": SeverityPolicy(delay_seconds=2.0, cooldown_seconds=600.0),
        "medium": SeverityPolicy(delay_seconds=5.0, cooldown_seconds=300.0),
        "low": SeverityPolicy(delay_seconds=30.0, cooldown_seconds=900.0),
    }


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Time-on-site tracker (keyed by tab id)
    time_alert_threshold_minutes: float = 30.0
    time_window_seconds: float = 4 * 60 * 60
    time_excluded_sites: str = ""  # comma-separated substrings, e.g. "localhost,docs.internal"

    # Scroll tracker (keyed by tab id; empty domain list means every host is monitored)
    scroll_threshold_px: float = 5000.0
    scroll_window_seconds: float = 10 * 60
    scroll_monitored_domains: str = _DEFAULT_SCROLL_DOMAINS

    # Repeated-visit tracker (keyed by domain)
    visit_threshold: int = 3
    visit_window_seconds: float = 10 * 60
    visit_monitored_domains: str = _DEFAULT_SHOPPING_DOMAINS
    # Product burst: this many distinct product pages inside the burst window is an immediate high event
    visit_burst_window_seconds: float = 60.0
    visit_burst_threshold: int = 15
    visit_burst_cooldown_seconds: float = 120.0

    # Background ticks
    tracker_tick_seconds: float = 5.0
    analysis_interval_seconds: float = 15 * 60

    # Pattern analyzer
    insight_log_max: int = 500
    rapid_switch_threshold: int = 5
    rapid_switch_window_seconds: float = 120.0
    late_night_hour: int = 23

    # Interventions
    severity_policy: dict[str, SeverityPolicy] = Field(default_factory=_default_severity_policy)
    min_intervention_severity: str = "medium"
    max_interventions_per_hour: int = 3  # 0 disables the hourly cap
    cooldown_max_entries: int = 1024
    quiet_hours_enabled: bool = False
    quiet_hours_start: int = 22
    quiet_hours_end: int = 7

    # Notification delivery (optional, empty string means log-only)
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 5.0

    # Knowledge graph snapshot file (optional, empty string means no persistence)
    graph_snapshot_path: str = ""

    # Embeddings for semantic context retrieval (optional, empty key disables it)
    openai_api_key: str = ""
    openai_base_url: str = ""
    embedding_model: str = "text-embedding-3-small"

    log_level: str = "INFO"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()
