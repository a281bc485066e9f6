"""Tests for graph snapshot persistence."""

import json
from pathlib import Path

import pytest

from nudgeguard.interventions.notifier import LoggingNotifier
from nudgeguard.orchestrator import InterventionOrchestrator, build_orchestrator
from nudgeguard.snapshot import SNAPSHOT_VERSION, load_snapshot, save_snapshot
from tests.support import FakeClock, make_settings


@pytest.fixture
def orchestrator(clock: FakeClock) -> InterventionOrchestrator:
    orchestrator = build_orchestrator(make_settings(), LoggingNotifier(), clock=clock)
    orchestrator.on_tab_updated(1, "https://www.reddit.com/")
    return orchestrator


class TestSaveSnapshot:
    def test_writes_versioned_document(self, orchestrator: InterventionOrchestrator, tmp_path: Path) -> None:
        path = tmp_path / "graph.json"

        assert save_snapshot(str(path), orchestrator) is True

        payload = json.loads(path.read_text())
        assert payload["version"] == SNAPSHOT_VERSION
        assert "saved_at" in payload
        assert {n["id"] for n in payload["graph"]["nodes"]} == {"tab-1", "domain-reddit.com"}

    def test_creates_parent_directories(self, orchestrator: InterventionOrchestrator, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "graph.json"
        assert save_snapshot(str(path), orchestrator) is True
        assert path.exists()

    def test_leaves_no_temp_files(self, orchestrator: InterventionOrchestrator, tmp_path: Path) -> None:
        save_snapshot(str(tmp_path / "graph.json"), orchestrator)
        assert [p.name for p in tmp_path.iterdir()] == ["graph.json"]

    def test_unwritable_path_returns_false(self, orchestrator: InterventionOrchestrator, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        assert save_snapshot(str(blocker / "graph.json"), orchestrator) is False


class TestLoadSnapshot:
    def test_round_trip(self, orchestrator: InterventionOrchestrator, clock: FakeClock, tmp_path: Path) -> None:
        path = tmp_path / "graph.json"
        save_snapshot(str(path), orchestrator)
        fresh = build_orchestrator(make_settings(), LoggingNotifier(), clock=clock)

        assert load_snapshot(str(path), fresh) is True
        assert fresh.graph.get_stats() == orchestrator.graph.get_stats()

    def test_missing_file(self, orchestrator: InterventionOrchestrator, tmp_path: Path) -> None:
        assert load_snapshot(str(tmp_path / "absent.json"), orchestrator) is False
        assert len(orchestrator.graph) == 2

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            '["a", "list"]',
            json.dumps({"version": 1, "graph": {"nodes": [{"id": "x", "type": "spaceship"}]}}),
        ],
    )
    def test_corrupt_file_leaves_graph_untouched(
        self, orchestrator: InterventionOrchestrator, tmp_path: Path, content: str
    ) -> None:
        path = tmp_path / "graph.json"
        path.write_text(content)

        assert load_snapshot(str(path), orchestrator) is False
        assert len(orchestrator.graph) == 2
