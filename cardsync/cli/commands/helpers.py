"""Shared helper functions for CLI commands."""

import argparse
import json
import re
from datetime import datetime
from typing import Any

from cardsync.types import MasteryLevel, Record, record_to_dict

MASTERY_NAMES = {
    "unreviewed": MasteryLevel.UNREVIEWED,
    "fail": MasteryLevel.FAIL,
    "partial": MasteryLevel.PARTIAL,
    "pass": MasteryLevel.PASS,
}


def validate_input(value: str, field_name: str, max_length: int = 10_000) -> str:
    """Validate and sanitize CLI inputs."""
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")

    if len(value) > max_length:
        raise ValueError(f"{field_name} too long (max {max_length} characters)")

    # Remove null bytes and control characters except newlines
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", value)


def parse_mastery(value: str) -> MasteryLevel:
    """Accept a mastery name (fail/partial/pass/unreviewed) or its number."""
    key = value.strip().lower()
    if key in MASTERY_NAMES:
        return MASTERY_NAMES[key]
    try:
        return MasteryLevel(int(key))
    except ValueError:
        choices = ", ".join(MASTERY_NAMES)
        raise argparse.ArgumentTypeError(f"Mastery must be one of {choices} or -1..2, got '{value}'")


def positive_int(value: str) -> int:
    try:
        ivalue = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected an integer, got '{value}'")
    if ivalue < 1:
        raise argparse.ArgumentTypeError(f"Expected a positive integer, got {ivalue}")
    return ivalue


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    print(json.dumps(data, indent=2, default=str))


def record_json(record: Record) -> dict:
    data = record_to_dict(record)
    data.pop("dirty", None)
    return data


def format_record(record: Record) -> str:
    created = datetime.fromtimestamp(record.created_at / 1000).strftime("%Y-%m-%d")
    mastery = record.mastery_level.name.lower()
    return f"{record.id[:8]}  [{record.category.value}] {record.summary()}  ({mastery}, {created})"
