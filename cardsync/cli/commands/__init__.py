"""CLI command handlers."""

from .entries import (
    cmd_add,
    cmd_delete,
    cmd_generate,
    cmd_list,
    cmd_master,
    cmd_review,
    cmd_show,
)
from .sync import cmd_status, cmd_sync, cmd_watch

__all__ = [
    "cmd_add",
    "cmd_delete",
    "cmd_generate",
    "cmd_list",
    "cmd_master",
    "cmd_review",
    "cmd_show",
    "cmd_status",
    "cmd_sync",
    "cmd_watch",
]
