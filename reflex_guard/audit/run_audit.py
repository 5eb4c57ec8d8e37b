"""
Session Audit Harness
=====================

Replays a recorded session log through the anti-cheat engine on a manual
clock and reports the disposition.

Session log format (JSON):
    {
        "player_id": "player-1",
        "preset": "standard",
        "seed": 7,
        "events": [
            {"kind": "tap", "at": 600, "data": {"reactionTime": 310}},
            {"kind": "update", "at": 1000, "data": {"round": 1, "score": 10, "streak": 1}},
            {"kind": "activate", "at": 3200, "data": {"type": "shield"}},
            {"kind": "end", "at": 5400, "data": {"round": 5, "score": 50}}
        ]
    }

`at` is the offset in ms from session start and must not decrease. Input
timestamps are offsets too and default to `at`.

Usage:
    python -m reflex_guard.audit.run_audit --session session.json --output report.json
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from typing import Any, Dict, Mapping, Optional

from reflex_guard.anticheat_core.clock import ManualClock
from reflex_guard.anticheat_core.config_loader import GameConfig, get_config
from reflex_guard.anticheat_core.entropy import SeededEntropySource
from reflex_guard.anticheat_core.events import GameUpdate
from reflex_guard.anticheat_core.orchestrator import AntiCheatReport, create_system

EVENT_KINDS = ("update", "tap", "powerup_activation", "game_action", "activate", "end")
DEFAULT_START_TIME = 1_700_000_000_000.0


def load_session_log(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load a recorded session log.

    Args:
        path: Path to a session JSON file. Uses the bundled sample if None.

    Returns:
        Parsed session log.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the log has no event list.
    """
    if path is None:
        path = os.path.join(os.path.dirname(__file__), "sample_session.json")

    if not os.path.exists(path):
        raise FileNotFoundError(f"Session log not found: {path}")

    with open(path, "r") as f:
        data = json.load(f)

    if not isinstance(data.get("events"), list):
        raise ValueError(f"Session log {path} has no 'events' list")

    return data


def _with_timestamp(data: Mapping[str, Any], start: float, at: float) -> Dict[str, Any]:
    """Copy input data with its timestamp offset turned into wall time."""
    payload = dict(data)
    payload["timestamp"] = start + float(payload.get("timestamp", at))
    return payload


def audit_session(
    log: Mapping[str, Any],
    preset: Optional[str] = None,
    game_config: Optional[GameConfig] = None,
    verbose: bool = False
) -> AntiCheatReport:
    """
    Replay a session log and return the resulting report.

    Args:
        log: Parsed session log.
        preset: Preset name; overrides the log's own preset.
        game_config: Anti-cheat configuration. Uses default if None.
        verbose: If True, print each violation as it is found.

    Returns:
        AntiCheatReport for the replayed session.

    Raises:
        ValueError: On unknown event kinds, decreasing offsets or malformed data.
    """
    if game_config is None:
        game_config = get_config()

    start = float(log.get("start_time", DEFAULT_START_TIME))
    clock = ManualClock(wall_start=start)
    system = create_system(
        preset or log.get("preset", "default"),
        game_config=game_config,
        clock=clock,
        entropy=SeededEntropySource(log.get("seed", 0), clock=clock)
    )
    system.start_game_session(log.get("player_id"))

    state = GameUpdate(round=0, score=0)
    previous: Optional[GameUpdate] = None

    for index, event in enumerate(log["events"]):
        kind = event.get("kind")
        if kind not in EVENT_KINDS:
            raise ValueError(f"Event {index}: unknown kind '{kind}', expected one of {EVENT_KINDS}")

        at = float(event.get("at", clock.wall_ms() - start))
        clock.set(start + at)
        data = event.get("data", {})

        if kind == "update":
            state = GameUpdate.from_dict(data, game_config)
            result = system.validate_game_update(state, previous)
            previous = state
            if verbose:
                for violation in result.violations:
                    print(f"  [{at:>8.0f}ms] {violation.severity:<8} {violation.description}")
                if result.should_terminate:
                    print(f"  [{at:>8.0f}ms] session would be terminated")

        elif kind == "activate":
            payload = _with_timestamp(data, start, at)
            activation = system.activate_power_up(
                str(payload.get("type", payload.get("powerUpType"))), payload["timestamp"], state
            )
            if verbose and not activation.success:
                print(f"  [{at:>8.0f}ms] {activation.error}")

        elif kind == "end":
            if data:
                state = GameUpdate.from_dict(data, game_config)
            break

        else:
            result = system.validate_player_input(kind, _with_timestamp(data, start, at), state)
            if verbose and result.violation is not None:
                print(f"  [{at:>8.0f}ms] {result.violation.severity:<8} {result.violation.description}")

    return system.end_game_session(state)


def save_report(report: AntiCheatReport, output_path: str) -> None:
    """Save an audit report to JSON."""
    data = {
        "audited_at": time.strftime("%Y-%m-%d %H:%M:%S"),
        "report": report.to_dict(),
    }

    with open(output_path, "w") as f:
        json.dump(data, f, indent=2, default=str)

    print(f"Report saved to {output_path}")


def main():
    parser = argparse.ArgumentParser(description="Audit a recorded reflex game session")
    parser.add_argument(
        "--session",
        type=str,
        default=None,
        help="Path to session log JSON (uses bundled sample if not specified)"
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Path to save report JSON"
    )
    parser.add_argument(
        "--preset",
        type=str,
        default=None,
        help="Anti-cheat preset (overrides the session log's preset)"
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce output verbosity"
    )

    args = parser.parse_args()

    try:
        log = load_session_log(args.session)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading session: {e}")
        return 1

    if not args.quiet:
        print(f"Auditing {len(log['events'])} events for player {log.get('player_id')}...")

    try:
        report = audit_session(log, preset=args.preset, verbose=not args.quiet)
    except ValueError as e:
        print(f"Error replaying session: {e}")
        return 1

    if not args.quiet:
        stats = report.game_stats
        print()
        print("=" * 50)
        print("AUDIT SUMMARY")
        print("=" * 50)
        print(f"Session:             {report.session_id}")
        print(f"Final score:         {stats.final_score} (round {stats.final_round})")
        print(f"Duration:            {stats.game_duration / 1000:.1f}s")
        print(f"Violations:          {report.total_violations} ({report.high_risk_violations} high risk)")
        print(f"Risk score:          {report.final_risk_score}")
        print(f"Recommended action:  {report.recommended_action.upper()}")
        print("=" * 50)

    if args.output:
        save_report(report, args.output)

    return 0


if __name__ == "__main__":
    sys.exit(main())
