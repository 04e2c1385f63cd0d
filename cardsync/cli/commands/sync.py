"""Sync commands for the cardsync CLI."""

import json
import logging
import signal
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cardsync.context import AppContext

logger = logging.getLogger(__name__)


def _format_ms(ms: int) -> str:
    if not ms:
        return "never"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")


def cmd_sync(args, ctx: "AppContext") -> int:
    """Run one guarded sync cycle and report the generic status."""
    if ctx.engine.remote is None:
        print("✗ Remote sync not configured (set CARDSYNC_SUPABASE_URL and CARDSYNC_SUPABASE_KEY)")
        return 1

    result = ctx.scheduler.trigger_sync("manual")
    if result is None:
        print("Sync already in progress")
        return 0

    if args.json:
        payload = {
            "status": result.summary(),
            "deletions_pushed": result.deletions_pushed,
            "pushed": result.pushed,
            "pulled": result.pulled,
            "deletions_pulled": result.deletions_pulled,
            "skipped": result.skipped,
            "conflicts": result.conflict_count,
            "success": result.success,
        }
        print(json.dumps(payload, indent=2))
    else:
        mark = "✓" if result.success else "⚠"
        print(f"{mark} {result.summary().capitalize()}")
        print(
            f"  pushed {result.pushed} (+{len(result.deletions_pushed)} deletions), "
            f"pulled {result.pulled} (+{len(result.deletions_pulled)} deletions)"
        )
        if result.conflict_count:
            print(f"  {result.conflict_count} conflicts resolved automatically")
    # Raw backend errors stay in the log
    for error in result.errors:
        logger.info(f"sync error: {error}")
    return 0 if result.success else 2


def cmd_status(args, ctx: "AppContext") -> int:
    """Show pending work and the sync cursor."""
    status = ctx.engine.get_status()
    if args.json:
        print(json.dumps(status, indent=2))
        return 0

    print(f"Entries:            {status['records']}")
    print(f"Pending uploads:    {status['pending_uploads']}")
    print(f"Pending deletions:  {status['pending_deletions']}")
    print(f"Last sync:          {_format_ms(status['last_sync_time'])}")
    print(f"Local backend:      {status['local_backend']}")
    print(f"Remote configured:  {'yes' if status['remote_configured'] else 'no'}")
    return 0


def cmd_watch(args, ctx: "AppContext") -> int:
    """Run the sync scheduler in the foreground until interrupted."""
    if ctx.engine.remote is None:
        print("✗ Remote sync not configured")
        return 1

    if args.interval:
        ctx.scheduler.interval = args.interval

    stop = threading.Event()

    def _handle_signal(signum, frame):
        stop.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    print(f"Syncing every {ctx.scheduler.interval:g}s (Ctrl+C to stop)")
    ctx.scheduler.start()
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        ctx.scheduler.stop()
    last = ctx.scheduler.last_result
    if last is not None:
        print(last.summary())
    return 0
