"""Entry point for the vodsync VOD metadata synchroniser."""

from __future__ import annotations

import argparse
import json
import logging
import os
import socket
import sys
import time
import uuid
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from vodsync.app import VodSync
from vodsync.config import ConfigError, load_config

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RunContext:
    """Captures immutable metadata for a single vodsync invocation."""

    trace_id: str
    instance_id: str
    wall_clock_ns: int

    @property
    def started_at_iso(self) -> str:
        seconds = self.wall_clock_ns / 1_000_000_000
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _build_run_context() -> RunContext:
    return RunContext(
        trace_id=os.getenv("VODSYNC_TRACE_ID") or uuid.uuid4().hex,
        instance_id=os.getenv("VODSYNC_INSTANCE_ID") or socket.gethostname(),
        wall_clock_ns=time.time_ns(),
    )


def _log_event(level: int, event: str, context: RunContext, **fields: Any) -> None:
    """Emit structured JSON logs with consistent tracing metadata."""
    payload: dict[str, Any] = {
        "event": event,
        "trace_id": context.trace_id,
        "instance_id": context.instance_id,
        "started_at": context.started_at_iso,
        **fields,
    }
    LOGGER.log(level, json.dumps(payload, default=str, separators=(",", ":")))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Synchronise VOD metadata from the manifest sheets and YouTube")
    p.add_argument("-v", "--verbose", action="store_true", help="Show debug messages")
    p.add_argument("-a", "--all-sheets", action="store_true", help="Process every single manifest spreadsheet")
    p.add_argument("--all-videos", action="store_true", help="Fetch every page of the VOD playlist")
    p.add_argument("--once", action="store_true", help="Run each task a single time and exit")
    p.add_argument("--only", choices=("manifest", "youtube"), help="Run only one of the tasks")
    p.add_argument("--env-file", type=Path, help="Path to a .env file")
    return p


def main(argv: Sequence[str] | None = None) -> int:
    """Parse flags, bootstrap the controller and run it."""
    args = build_parser().parse_args(argv)
    context = _build_run_context()
    continuous = not (args.once or args.all_sheets)

    app: VodSync | None = None
    try:
        config = load_config(args.env_file).with_overrides(
            verbose=args.verbose or None,
            all_sheets=args.all_sheets or None,
            all_videos=args.all_videos or None,
            continuous=continuous,
        )
        app = VodSync(config, only=args.only)
        _log_event(logging.INFO, "vodsync.bootstrap_complete", context, continuous=continuous, only=args.only)

        if not continuous:
            ok = app.run_once()
            _log_event(logging.INFO, "vodsync.run_completed", context, success=ok)
            return 0 if ok else 1

        LOGGER.info("Running the application in continuous mode")
        app.run_forever()
        _log_event(logging.INFO, "vodsync.run_completed", context)
        return 0
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO)
        _log_event(logging.CRITICAL, "vodsync.config_invalid", context, error=str(exc))
        return 2
    except KeyboardInterrupt:
        if app is not None:
            with suppress(Exception):
                app.stop()
        _log_event(logging.WARNING, "vodsync.interrupted", context, signal="SIGINT")
        return 130
    except Exception as exc:
        if app is not None:
            with suppress(Exception):
                app.stop()
        _log_event(
            logging.CRITICAL,
            "vodsync.run_failed",
            context,
            error_type=type(exc).__name__,
            error_message=str(exc),
        )
        raise


if __name__ == "__main__":
    sys.exit(main())
