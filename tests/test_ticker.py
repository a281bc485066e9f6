"""Tests for the APScheduler-driven background ticks."""

from unittest.mock import MagicMock

from prometheus_client import REGISTRY

from nudgeguard.ticker import PipelineTicker
from tests.support import make_settings


def _ticks(job: str, status: str) -> float:
    return REGISTRY.get_sample_value("nudgeguard_ticks_total", {"job": job, "status": status}) or 0.0


class TestTicks:
    async def test_tracker_tick_runs_orchestrator(self) -> None:
        orchestrator = MagicMock()
        orchestrator.run_tracker_tick.return_value = []
        before = _ticks("trackers", "success")

        await PipelineTicker(orchestrator, make_settings()).tracker_tick()

        orchestrator.run_tracker_tick.assert_called_once()
        assert _ticks("trackers", "success") == before + 1

    async def test_analysis_failure_is_contained(self) -> None:
        orchestrator = MagicMock()
        orchestrator.run_analysis.side_effect = RuntimeError("boom")
        before = _ticks("analysis", "error")

        await PipelineTicker(orchestrator, make_settings()).analysis_tick()

        assert _ticks("analysis", "error") == before + 1


class TestLifecycle:
    async def test_start_registers_both_jobs(self) -> None:
        ticker = PipelineTicker(MagicMock(), make_settings())

        ticker.start()
        try:
            assert ticker.running is True
            jobs = {job.id for job in ticker._scheduler.get_jobs()}  # type: ignore[union-attr]
            assert jobs == {"tracker_tick", "analysis_tick"}
        finally:
            ticker.stop()

        assert ticker.running is False

    async def test_start_is_idempotent(self) -> None:
        ticker = PipelineTicker(MagicMock(), make_settings())
        ticker.start()
        scheduler = ticker._scheduler

        ticker.start()

        assert ticker._scheduler is scheduler
        ticker.stop()

    def test_stop_without_start(self) -> None:
        ticker = PipelineTicker(MagicMock(), make_settings())
        ticker.stop()
        assert ticker.running is False
