"""Interactive REPL and event-log replay for the behavior pipeline.

Usage:
    nudgeguard                          # interactive REPL
    nudgeguard --replay events.jsonl    # feed recorded host events, then wait for timers

Each replay line is a JSON object with an ``event`` field
(``tab_activated``, ``tab_updated``, ``scroll``, ``tab_removed``, ``tick``,
``analyze``) plus that event's arguments.
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from typing import Any

from nudgeguard.config import get_settings
from nudgeguard.orchestrator import InterventionOrchestrator, build_orchestrator

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)

logger = logging.getLogger(__name__)

HELP = """Commands:
  update <tab> <url>          tab navigated to url
  activate <tab>              tab gained focus
  scroll <tab> <url> <px>     scroll delta on a tab
  remove <tab>                tab closed
  tick | analyze              run a tracker tick / pattern analysis now
  stats | sessions | insights | context
  quit"""


def apply_event(orchestrator: InterventionOrchestrator, event: dict[str, Any]) -> bool:
    """Apply one recorded host event. Returns False for unknown or malformed events."""
    kind = event.get("event")
    try:
        if kind == "tab_activated":
            orchestrator.on_tab_activated(event["tab_id"])
        elif kind == "tab_updated":
            orchestrator.on_tab_updated(event["tab_id"], event["url"])
        elif kind == "scroll":
            orchestrator.on_scroll(event["tab_id"], event.get("url", ""), float(event["delta_pixels"]))
        elif kind == "tab_removed":
            orchestrator.on_tab_removed(event["tab_id"])
        elif kind == "tick":
            orchestrator.run_tracker_tick()
        elif kind == "analyze":
            orchestrator.run_analysis()
        else:
            return False
    except (KeyError, TypeError, ValueError):
        logger.warning("Skipping malformed event: %s", event)
        return False
    return True


def run_command(orchestrator: InterventionOrchestrator, line: str) -> str:
    """Execute one REPL command and return the text to print."""
    parts = line.split()
    if not parts:
        return ""
    command, args = parts[0].lower(), parts[1:]

    if command == "update" and len(args) == 2:
        apply_event(orchestrator, {"event": "tab_updated", "tab_id": args[0], "url": args[1]})
        return "ok"
    if command == "activate" and len(args) == 1:
        apply_event(orchestrator, {"event": "tab_activated", "tab_id": args[0]})
        return "ok"
    if command == "scroll" and len(args) == 3:
        ok = apply_event(orchestrator, {"event": "scroll", "tab_id": args[0], "url": args[1], "delta_pixels": args[2]})
        return "ok" if ok else "invalid scroll amount"
    if command == "remove" and len(args) == 1:
        apply_event(orchestrator, {"event": "tab_removed", "tab_id": args[0]})
        return "ok"
    if command == "tick":
        return f"{len(orchestrator.run_tracker_tick())} behavior events"
    if command == "analyze":
        found = orchestrator.run_analysis()
        return "\n".join(f"{i.severity:>6}  {i.type}: {i.description}" for i in found) or "no insights"
    if command == "stats":
        return json.dumps(orchestrator.get_stats(), indent=2, default=str)
    if command == "sessions":
        return json.dumps(orchestrator.get_active_sessions(), indent=2, default=str)
    if command == "insights":
        return json.dumps([i.model_dump() for i in orchestrator.get_recent_insights()], indent=2)
    if command == "context":
        return json.dumps(orchestrator.build_nudge_context(), indent=2, default=str)
    return HELP


async def _replay(orchestrator: InterventionOrchestrator, path: str) -> int:
    applied = 0
    with open(path) as f:
        for lineno, raw in enumerate(f, 1):
            if not raw.strip():
                continue
            try:
                event = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Line %d is not valid JSON", lineno)
                continue
            if apply_event(orchestrator, event):
                applied += 1

    # Let scheduled interventions fire before exiting.
    pending = orchestrator.scheduler.pending()
    if pending:
        wait = max(p.fire_at for p in pending) - time.time()
        print(f"Waiting {max(wait, 0):.1f}s for {len(pending)} pending intervention(s)...", file=sys.stderr)
        await asyncio.sleep(max(wait, 0) + 0.1)
    await orchestrator.aclose()
    return applied


async def _repl(orchestrator: InterventionOrchestrator) -> None:
    print("nudgeguard (type 'help' for commands, 'quit' or Ctrl+C to exit)")
    print("=" * 50)
    while True:
        try:
            line = (await asyncio.to_thread(input, "> ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break
        if line.lower() in ("quit", "exit", "q"):
            print("Goodbye!")
            break
        output = run_command(orchestrator, line)
        if output:
            print(output)
    await orchestrator.aclose()


def main() -> None:
    """Parse args and run the REPL or a replay."""
    parser = argparse.ArgumentParser(description="Behavior signal pipeline driver")
    parser.add_argument("--replay", type=str, help="Path to a JSON-lines file of host events")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log pipeline activity at INFO")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger("nudgeguard").setLevel(logging.INFO)

    orchestrator = build_orchestrator(get_settings())
    if args.replay:
        try:
            applied = asyncio.run(_replay(orchestrator, args.replay))
        except OSError as e:
            print(f"Failed to read {args.replay}: {e}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps({"applied_events": applied, **orchestrator.get_stats()}, indent=2, default=str))
        return

    asyncio.run(_repl(orchestrator))


if __name__ == "__main__":
    main()
