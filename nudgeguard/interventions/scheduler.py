"""One-shot delayed interventions on the running event loop.

Each schedule registers a ``loop.call_later`` timer and bumps a generation
counter for its name. A timer only fires if its generation is still current,
so a replaced or cancelled timer that slips through is a no-op.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from nudgeguard.models import Clock
from nudgeguard.observability.metrics import PENDING_INTERVENTIONS

logger = logging.getLogger(__name__)


class ScheduledIntervention(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    fire_at: float
    payload: dict[str, Any] = Field(default_factory=dict)


FireCallback = Callable[[ScheduledIntervention], None]


class InterventionScheduler:
    def __init__(
        self, on_fire: FireCallback, loop: asyncio.AbstractEventLoop | None = None, clock: Clock = time.time
    ) -> None:
        self._on_fire = on_fire
        self._loop = loop
        self._clock = clock
        self._pending: dict[str, tuple[int, ScheduledIntervention, asyncio.TimerHandle]] = {}
        self._generation = 0

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, name: str, delay_seconds: float, payload: dict[str, Any] | None = None) -> ScheduledIntervention:
        """Fire ``name`` after ``delay_seconds``. An existing timer with the same name is replaced."""
        loop = self._get_loop()
        self._drop(name)
        self._generation += 1
        generation = self._generation
        delay = max(delay_seconds, 0.0)
        intervention = ScheduledIntervention(name=name, fire_at=self._clock() + delay, payload=payload or {})
        handle = loop.call_later(delay, self._fire, name, generation)
        self._pending[name] = (generation, intervention, handle)
        PENDING_INTERVENTIONS.set(len(self._pending))
        logger.debug("Scheduled intervention '%s' in %.1fs", name, delay)
        return intervention

    def cancel(self, name: str) -> bool:
        cancelled = self._drop(name)
        PENDING_INTERVENTIONS.set(len(self._pending))
        return cancelled

    def get(self, name: str) -> ScheduledIntervention | None:
        entry = self._pending.get(name)
        return entry[1] if entry is not None else None

    def pending(self) -> list[ScheduledIntervention]:
        return [entry[1] for entry in self._pending.values()]

    def shutdown(self) -> None:
        """Cancel every pending timer."""
        for name in list(self._pending):
            self._drop(name)
        PENDING_INTERVENTIONS.set(0)

    def _drop(self, name: str) -> bool:
        entry = self._pending.pop(name, None)
        if entry is None:
            return False
        entry[2].cancel()
        return True

    def _fire(self, name: str, generation: int) -> None:
        entry = self._pending.get(name)
        if entry is None or entry[0] != generation:
            return
        del self._pending[name]
        PENDING_INTERVENTIONS.set(len(self._pending))
        try:
            self._on_fire(entry[1])
        except Exception:
            logger.exception("Intervention callback failed for '%s'", name)
