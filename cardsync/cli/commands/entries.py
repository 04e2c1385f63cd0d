"""Entry commands for the cardsync CLI: add, list, show, master, delete, review, generate."""

import logging
import sys
from typing import TYPE_CHECKING

from cardsync.errors import GenerationError
from cardsync.generator import ContentGenerator
from cardsync.review import select_for_review

from .helpers import format_record, print_json, record_json, validate_input

if TYPE_CHECKING:
    from cardsync.context import AppContext

logger = logging.getLogger(__name__)


def resolve_entry_id(ctx: "AppContext", value: str) -> str:
    """Expand a unique id prefix (as shown by ``list``) to the full id."""
    value = value.strip()
    matches = [r.id for r in ctx.entries.list_entries() if r.id.startswith(value)]
    if value in matches or len(matches) != 1:
        return value
    return matches[0]


def _generator(ctx: "AppContext") -> ContentGenerator:
    settings = ctx.settings
    return ContentGenerator(settings.openai_api_key, model=settings.openai_model)


def cmd_add(args, ctx: "AppContext") -> int:
    text = validate_input(args.text, "text")
    secondary = validate_input(args.context, "context") if args.context else None
    generated = validate_input(args.answer, "answer") if args.answer else None

    if args.generate and generated is None:
        try:
            generated = _generator(ctx).generate(args.category, text, secondary)
        except GenerationError as e:
            # The entry is still worth keeping without generated text
            print(f"⚠ {e}", file=sys.stderr)

    record = ctx.entries.add_entry(
        args.category, text, generated_text=generated, secondary_text=secondary
    )
    if args.json:
        print_json(record_json(record))
    else:
        print(f"✓ Added {record.category.value} entry {record.id[:8]}")
    return 0


def cmd_list(args, ctx: "AppContext") -> int:
    records = ctx.entries.list_entries(args.category)
    records.sort(key=lambda r: r.created_at, reverse=True)
    if args.json:
        print_json([record_json(r) for r in records])
        return 0
    if not records:
        print("No entries.")
        return 0
    for record in records:
        print(format_record(record))
    return 0


def cmd_show(args, ctx: "AppContext") -> int:
    record = ctx.entries.get_entry(resolve_entry_id(ctx, args.id))
    if args.json:
        print_json(record_json(record))
        return 0

    print(f"{record.primary_text}")
    print(f"  id:        {record.id}")
    print(f"  category:  {record.category.value}")
    print(f"  mastery:   {record.mastery_level.name.lower()}")
    print(f"  version:   {record.sync_version}{' (unsynced)' if record.dirty else ''}")
    if record.secondary_text:
        print(f"  context:   {record.secondary_text}")
    if record.generated_text:
        print()
        print(record.generated_text)
    return 0


def cmd_master(args, ctx: "AppContext") -> int:
    record = ctx.entries.set_mastery(resolve_entry_id(ctx, args.id), args.level)
    print(f"✓ {record.summary()} -> {record.mastery_level.name.lower()}")
    return 0


def cmd_delete(args, ctx: "AppContext") -> int:
    entry_id = resolve_entry_id(ctx, args.id)
    ctx.entries.delete_entry(entry_id)
    print(f"✓ Deleted {entry_id[:8]} (syncs on next cycle)")
    return 0


def cmd_review(args, ctx: "AppContext") -> int:
    """Pick a weighted review batch; weaker entries come up more often."""
    records = ctx.entries.list_entries(args.category)
    batch = select_for_review(records, count=args.count, weights=ctx.review_weights)
    if args.json:
        print_json([record_json(r) for r in batch])
        return 0
    if not batch:
        print("Nothing to review.")
        return 0
    for i, record in enumerate(batch, 1):
        print(f"{i:>2}. {format_record(record)}")
    return 0


def cmd_generate(args, ctx: "AppContext") -> int:
    """Generate answer text without storing an entry."""
    text = validate_input(args.text, "text")
    try:
        content = _generator(ctx).generate(args.category, text, args.context)
    except GenerationError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    print(content)
    return 0
