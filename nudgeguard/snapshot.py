"""Persist knowledge graph snapshots to a JSON file."""

import contextlib
import json
import logging
import os
import tempfile
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from nudgeguard.orchestrator import InterventionOrchestrator

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def save_snapshot(path: str, orchestrator: InterventionOrchestrator) -> bool:
    """Write the graph snapshot to ``path``. Never raises.

    Returns:
        True if the file was written, False on any error.
    """
    try:
        _save_snapshot_inner(path, orchestrator.export_snapshot())
    except Exception:
        logger.exception("Failed to save graph snapshot to '%s'", path)
        return False
    logger.info("Saved graph snapshot to %s", path)
    return True


def _save_snapshot_inner(path: str, graph: dict[str, Any]) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    payload: dict[str, Any] = {
        "version": SNAPSHOT_VERSION,
        "saved_at": datetime.now(UTC).isoformat(),
        "graph": graph,
    }

    # Atomic write: write to temp file then rename
    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(payload, f, indent=2, default=str)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def load_snapshot(path: str, orchestrator: InterventionOrchestrator) -> bool:
    """Restore the graph from ``path``. Never raises.

    A missing file is not an error. A corrupt file leaves the graph untouched.
    """
    if not os.path.exists(path):
        logger.debug("No graph snapshot at '%s'", path)
        return False
    try:
        with open(path) as f:
            payload: dict[str, Any] = json.load(f)
        orchestrator.import_snapshot(payload.get("graph", {}))
    except (OSError, json.JSONDecodeError, ValidationError, AttributeError):
        logger.warning("Ignoring unreadable graph snapshot at '%s'", path, exc_info=True)
        return False
    return True
