"""Tests for the cardsync CLI."""

import json
from unittest.mock import patch

import pytest

from cardsync import AppContext
from cardsync.cli.__main__ import build_parser, main
from cardsync.errors import RateLimitedError
from cardsync.testing import InMemoryRemoteStore
from cardsync.types import MasteryLevel


@pytest.fixture
def ctx(settings, clock):
    context = AppContext.create(settings, remote=InMemoryRemoteStore(clock=clock), clock=clock)
    yield context
    context.close()


@pytest.fixture
def offline_ctx(settings):
    context = AppContext.create(settings)
    yield context
    context.close()


def _json_out(capsys):
    return json.loads(capsys.readouterr().out)


class TestParser:
    def test_mastery_names(self):
        args = build_parser().parse_args(["master", "abc", "pass"])

        assert args.level is MasteryLevel.PASS

    def test_mastery_numbers(self):
        args = build_parser().parse_args(["master", "abc", "0"])

        assert args.level is MasteryLevel.FAIL

    def test_invalid_mastery_exits(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["master", "abc", "great"])

    def test_invalid_category_exits(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["add", "poetry", "roses"])


class TestEntryCommands:
    def test_add_and_list(self, ctx, capsys):
        main(["add", "vocabulary", "ephemeral", "--answer", "short-lived"], ctx=ctx)
        assert "Added vocabulary entry" in capsys.readouterr().out

        main(["list", "--json"], ctx=ctx)
        listed = _json_out(capsys)

        assert len(listed) == 1
        assert listed[0]["primary_text"] == "ephemeral"
        assert listed[0]["generated_text"] == "short-lived"
        assert "dirty" not in listed[0]

    def test_list_empty(self, ctx, capsys):
        main(["list"], ctx=ctx)

        assert "No entries." in capsys.readouterr().out

    def test_show_by_prefix(self, ctx, capsys):
        record = ctx.entries.add_entry("phrases", "break the ice", secondary_text="meetings")

        main(["show", record.id[:8]], ctx=ctx)
        out = capsys.readouterr().out

        assert "break the ice" in out
        assert "meetings" in out
        assert "(unsynced)" in out

    def test_show_unknown_exits(self, ctx, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["show", "missing"], ctx=ctx)

        assert excinfo.value.code == 1
        assert "Entry not found" in capsys.readouterr().err

    def test_master(self, ctx, capsys):
        record = ctx.entries.add_entry("vocabulary", "ephemeral")

        main(["master", record.id, "fail"], ctx=ctx)

        assert ctx.entries.get_entry(record.id).mastery_level is MasteryLevel.FAIL
        assert "fail" in capsys.readouterr().out

    def test_delete(self, ctx, capsys):
        record = ctx.entries.add_entry("vocabulary", "ephemeral")

        main(["delete", record.id], ctx=ctx)

        assert ctx.tombstones.is_deleted(record.id)
        assert ctx.entries.list_entries() == []
        assert "Deleted" in capsys.readouterr().out

    def test_review_json(self, ctx, capsys):
        for word in ("one", "two", "three"):
            ctx.entries.add_entry("vocabulary", word)

        main(["review", "--count", "2", "--json"], ctx=ctx)

        assert len(_json_out(capsys)) == 2

    def test_review_rejects_zero_count(self, ctx):
        with pytest.raises(SystemExit):
            main(["review", "--count", "0"], ctx=ctx)

    def test_add_with_generation(self, ctx, capsys):
        with patch("cardsync.cli.commands.entries.ContentGenerator") as generator_cls:
            generator_cls.return_value.generate.return_value = "Definition: brief"
            main(["add", "vocabulary", "ephemeral", "--generate", "--json"], ctx=ctx)

        assert _json_out(capsys)["generated_text"] == "Definition: brief"

    def test_add_keeps_entry_when_generation_fails(self, ctx, capsys):
        with patch("cardsync.cli.commands.entries.ContentGenerator") as generator_cls:
            generator_cls.return_value.generate.side_effect = RateLimitedError("rate limited")
            main(["add", "vocabulary", "ephemeral", "--generate"], ctx=ctx)

        captured = capsys.readouterr()
        assert "rate limited" in captured.err
        assert len(ctx.entries.list_entries()) == 1

    def test_generate_failure_exits(self, ctx, capsys):
        with patch("cardsync.cli.commands.entries.ContentGenerator") as generator_cls:
            generator_cls.return_value.generate.side_effect = RateLimitedError("rate limited")
            with pytest.raises(SystemExit) as excinfo:
                main(["generate", "vocabulary", "ephemeral"], ctx=ctx)

        assert excinfo.value.code == 1


class TestSyncCommands:
    def test_sync_reports_generic_status(self, ctx, capsys):
        ctx.entries.add_entry("vocabulary", "ephemeral")

        main(["sync", "--json"], ctx=ctx)
        payload = _json_out(capsys)

        assert payload["status"] == "sync complete"
        assert payload["pushed"] == 1
        assert payload["success"] is True

    def test_failed_sync_hides_raw_errors(self, ctx, capsys):
        ctx.engine.remote.offline = True

        with pytest.raises(SystemExit) as excinfo:
            main(["sync"], ctx=ctx)

        out = capsys.readouterr().out
        assert excinfo.value.code == 2
        assert "Sync incomplete, will retry" in out
        assert "ConnectError" not in out

    def test_sync_without_remote(self, offline_ctx, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["sync"], ctx=offline_ctx)

        assert excinfo.value.code == 1
        assert "not configured" in capsys.readouterr().out

    def test_status_json(self, ctx, capsys):
        ctx.entries.add_entry("vocabulary", "ephemeral")

        main(["status", "--json"], ctx=ctx)
        status = _json_out(capsys)

        assert status["pending_uploads"] == 1
        assert status["pending_deletions"] == 0
        assert status["remote_configured"] is True

    def test_status_text(self, ctx, capsys):
        main(["status"], ctx=ctx)

        out = capsys.readouterr().out
        assert "Last sync:          never" in out
        assert "Local backend:      sqlite" in out
