"""
Cardsync CLI - command-line interface for offline-first flashcards.

Usage:
    cardsync add CATEGORY TEXT [--context C] [--answer A] [--generate] [--json]
    cardsync list [--category C] [--json]
    cardsync show ID [--json]
    cardsync master ID LEVEL
    cardsync delete ID
    cardsync review [--count N] [--category C] [--json]
    cardsync generate CATEGORY TEXT [--context C]
    cardsync sync [--json]
    cardsync status [--json]
    cardsync watch [--interval SECONDS]
"""

import argparse
import logging
import sys
from typing import List, Optional

from cardsync.cli.commands import (
    cmd_add,
    cmd_delete,
    cmd_generate,
    cmd_list,
    cmd_master,
    cmd_review,
    cmd_show,
    cmd_status,
    cmd_sync,
    cmd_watch,
)
from cardsync.cli.commands.helpers import parse_mastery, positive_int
from cardsync.context import AppContext
from cardsync.errors import CardsyncError, EntryNotFoundError
from cardsync.types import VALID_CATEGORY_VALUES

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

COMMANDS = {
    "add": cmd_add,
    "list": cmd_list,
    "show": cmd_show,
    "master": cmd_master,
    "delete": cmd_delete,
    "review": cmd_review,
    "generate": cmd_generate,
    "sync": cmd_sync,
    "status": cmd_status,
    "watch": cmd_watch,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cardsync",
        description="Offline-first flashcards with multi-device sync",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    categories = sorted(VALID_CATEGORY_VALUES)

    # add
    p_add = subparsers.add_parser("add", help="Add an entry")
    p_add.add_argument("category", choices=categories)
    p_add.add_argument("text", help="Word, phrase, question or fact")
    p_add.add_argument("--context", "-c", help="Where this applies (questions, business)")
    p_add.add_argument("--answer", "-a", help="Answer text; skips generation")
    p_add.add_argument("--generate", "-g", action="store_true", help="Generate answer text")
    p_add.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # list
    p_list = subparsers.add_parser("list", help="List entries")
    p_list.add_argument("--category", choices=categories)
    p_list.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # show
    p_show = subparsers.add_parser("show", help="Show one entry")
    p_show.add_argument("id", help="Entry ID (a unique prefix is enough)")
    p_show.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # master
    p_master = subparsers.add_parser("master", help="Record a review outcome")
    p_master.add_argument("id", help="Entry ID")
    p_master.add_argument(
        "level", type=parse_mastery, help="fail, partial, pass or unreviewed"
    )

    # delete
    p_delete = subparsers.add_parser("delete", help="Delete an entry on every device")
    p_delete.add_argument("id", help="Entry ID")

    # review
    p_review = subparsers.add_parser("review", help="Pick entries to review")
    p_review.add_argument("--count", "-n", type=positive_int, default=10)
    p_review.add_argument("--category", choices=categories)
    p_review.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # generate
    p_generate = subparsers.add_parser("generate", help="Generate answer text only")
    p_generate.add_argument("category", choices=categories)
    p_generate.add_argument("text")
    p_generate.add_argument("--context", "-c")

    # sync
    p_sync = subparsers.add_parser("sync", help="Run one sync cycle")
    p_sync.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # status
    p_status = subparsers.add_parser("status", help="Show sync status")
    p_status.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # watch
    p_watch = subparsers.add_parser("watch", help="Keep syncing in the foreground")
    p_watch.add_argument("--interval", type=float, help="Seconds between cycles")

    return parser


def main(argv: Optional[List[str]] = None, ctx: Optional[AppContext] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger("cardsync").setLevel(
            logging.DEBUG if args.verbose > 1 else logging.INFO
        )

    owns_context = ctx is None
    if owns_context:
        try:
            ctx = AppContext.create()
        except (CardsyncError, OSError, ValueError) as e:
            logger.error(f"Failed to initialize cardsync: {e}")
            sys.exit(1)

    try:
        code = COMMANDS[args.command](args, ctx)
    except EntryNotFoundError as e:
        print(f"✗ {e}", file=sys.stderr)
        code = 1
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        code = 1
    except CardsyncError as e:
        logger.error(f"Command failed: {e}")
        code = 1
    finally:
        if owns_context:
            ctx.close()

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
