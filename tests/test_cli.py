"""
Tests for the ck command line, driven through typer's CliRunner.

Every invocation passes --store so nothing depends on the working
directory. Error output is checked on ``result.output``, which carries
stderr as well as stdout.
"""

import json
from datetime import datetime, timezone

import pytest
from typer.testing import CliRunner

from contextkeeper import cli
from contextkeeper.cli import app, filter_items, format_item_line
from contextkeeper.config import CONFIG_FILENAME, load_config
from contextkeeper.item_store import ITEMS_FILENAME, ItemStore


runner = CliRunner()

BC28_A = "bc28a1f0-0000-4000-8000-000000000001"
BC28_B = "bc28ff00-0000-4000-8000-000000000002"


@pytest.fixture
def ck(store_dir):
    """Run ck against the test store."""
    def _run(*args, input=None):
        return runner.invoke(app, ["--store", str(store_dir), *args], input=input)
    return _run


@pytest.fixture
def seeded(store_dir, make_item):
    """Store with a mix of active, completed and archived items."""
    store = ItemStore(store_dir)
    store.set_items([
        make_item(id=BC28_A, content="Fix login bug", project="web", tags=["bug", "urgent"]),
        make_item(id=BC28_B, content="Write release notes", project="docs", tags=["docs"]),
        make_item(
            id="d41d8cd9-0000-4000-8000-000000000003",
            content="Upgrade the database driver",
            project="web",
            completed_at=datetime(2026, 1, 20, tzinfo=timezone.utc),
        ),
        make_item(
            id="e5f6a7b8-0000-4000-8000-000000000004",
            content="Old idea about caching",
            tags=["bug"],
            archived=True,
        ),
    ])
    return store


def reload(store_dir) -> ItemStore:
    store = ItemStore(store_dir)
    store.load()
    return store


class TestInit:

    def test_creates_store(self, tmp_path):
        result = runner.invoke(app, ["init", "--path", str(tmp_path)])
        assert result.exit_code == 0, result.output
        target = tmp_path / ".contextkeeper"
        assert f"Initialized ContextKeeper in: {target}" in result.output
        assert (target / ITEMS_FILENAME).read_text() == "[]"
        assert (target / CONFIG_FILENAME).exists()

    def test_init_keeps_existing_items(self, tmp_path, make_item):
        target = tmp_path / ".contextkeeper"
        ItemStore(target).set_items([make_item(id="keep")])
        runner.invoke(app, ["init", "--path", str(tmp_path)])
        assert [i.id for i in reload(target).get_all()] == ["keep"]

    def test_init_json(self, tmp_path):
        result = runner.invoke(app, ["--json", "init", "--path", str(tmp_path)])
        assert json.loads(result.output) == {
            "path": str(tmp_path / ".contextkeeper"),
            "status": "initialized",
        }


class TestAdd:

    def test_add_with_project_and_tags(self, ck, store_dir):
        result = ck("add", "Fix bug #123", "--project", "web-app", "--tags", "bug, urgent bug")
        assert result.exit_code == 0, result.output

        items = reload(store_dir).get_all()
        assert len(items) == 1
        item = items[0]
        assert item.content == "Fix bug #123"
        assert item.project == "web-app"
        assert item.tags == ["bug", "urgent"]
        assert f"Added context item {item.short_id}" in result.output

    def test_add_json(self, ck, store_dir):
        result = ck("--json", "add", "note")
        item = reload(store_dir).get_all()[0]
        assert json.loads(result.output) == {"id": item.short_id, "status": "added"}

    def test_add_from_stdin(self, ck, store_dir):
        result = ck("add", input="Piped note\n")
        assert result.exit_code == 0, result.output
        assert reload(store_dir).get_all()[0].content == "Piped note"

    def test_add_empty_fails(self, ck, store_dir):
        result = ck("add", "   ")
        assert result.exit_code == 1
        assert "content cannot be empty" in result.output
        assert not (store_dir / ITEMS_FILENAME).exists()

    def test_add_invalid_tag_fails(self, ck, store_dir):
        result = ck("add", "x", "--tags", "ok,bad.tag")
        assert result.exit_code == 1
        assert "bad.tag" in result.output
        assert not (store_dir / ITEMS_FILENAME).exists()

    def test_add_unencodable_content_fails_cleanly(self, ck, store_dir):
        """Undecodable argv bytes arrive as lone surrogates."""
        result = ck("add", "x \udcff")
        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)
        assert "Error: failed to encode" in result.output
        assert not (store_dir / ITEMS_FILENAME).exists()

    def test_default_project_from_env(self, ck, store_dir, monkeypatch):
        monkeypatch.setenv("CK_DEFAULT_PROJECT", "from-env")
        ck("add", "x")
        assert reload(store_dir).get_all()[0].project == "from-env"

    def test_default_project_from_config(self, ck, store_dir):
        ck("config", "set", "default_project", "from-config")
        ck("add", "x")
        assert reload(store_dir).get_all()[0].project == "from-config"

    def test_add_with_editor(self, ck, store_dir, monkeypatch):
        monkeypatch.setattr(cli, "open_editor", lambda initial, editor: "Written in editor\n")
        result = ck("add", "--editor")
        assert result.exit_code == 0, result.output
        assert reload(store_dir).get_all()[0].content == "Written in editor"

    def test_add_writes_ops_log(self, ck, store_dir):
        ck("init", "--path", str(store_dir.parent))
        ck("add", "logged")
        item = reload(store_dir).get_all()[0]
        assert f"added {item.id}" in (store_dir / "ck-ops.log").read_text()


class TestList:

    def test_hides_completed_and_archived(self, ck, seeded):
        result = ck("list")
        assert result.exit_code == 0
        assert "Fix login bug" in result.output
        assert "Write release notes" in result.output
        assert "Upgrade the database driver" not in result.output
        assert "Old idea about caching" not in result.output

    def test_line_format(self, ck, seeded):
        line = next(l for l in ck("list").output.splitlines() if "login" in l)
        assert line.startswith("[ ] [bc28a1] Fix login bug @web [bug, urgent] ")

    def test_all_includes_completed(self, ck, seeded):
        output = ck("list", "--all").output
        assert "[x] [d41d8c] Upgrade the database driver" in output
        assert "Old idea" not in output

    def test_archived_flag(self, ck, seeded):
        output = ck("list", "--archived").output
        assert "Old idea about caching" in output
        assert "(archived)" in output

    def test_filter_project(self, ck, seeded):
        output = ck("list", "-P", "docs").output
        assert "Write release notes" in output
        assert "Fix login bug" not in output

    def test_filter_tags(self, ck, seeded):
        output = ck("list", "--tags", "bug,urgent").output
        assert "Fix login bug" in output
        assert "release notes" not in output

    def test_empty(self, ck):
        result = ck("list")
        assert result.exit_code == 0
        assert "No items found." in result.output

    def test_json(self, ck, seeded):
        data = json.loads(ck("--json", "list").output)
        assert [d["fullId"] for d in data] == [BC28_A, BC28_B]
        first = data[0]
        assert first["id"] == "bc28a1f0"
        assert first["project"] == "web"
        assert first["tags"] == ["bug", "urgent"]
        assert first["completedAt"] is None
        assert first["createdAt"].endswith("Z")

    def test_corrupt_store_fails_cleanly(self, ck, store_dir):
        store_dir.mkdir(parents=True)
        (store_dir / ITEMS_FILENAME).write_text("{oops")
        result = ck("list")
        assert result.exit_code == 1
        assert "failed to decode" in result.output


class TestSearch:

    def test_content_case_insensitive(self, ck, seeded):
        output = ck("search", "LOGIN").output
        assert "Fix login bug" in output
        assert "release notes" not in output

    def test_matches_tags(self, ck, seeded):
        output = ck("search", "urg").output
        assert "Fix login bug" in output

    def test_all_and_archived(self, ck, seeded):
        assert "Old idea" not in ck("search", "bug").output
        assert "Old idea" in ck("search", "bug", "--archived").output
        assert "Upgrade" in ck("search", "database", "--all").output

    def test_tag_filter_only(self, ck, seeded):
        output = ck("search", "--tag", "docs").output
        assert "Write release notes" in output
        assert "Fix login bug" not in output


class TestDone:

    def test_marks_completed(self, ck, seeded, store_dir):
        result = ck("done", "bc28a")
        assert result.exit_code == 0, result.output
        assert "Marked item as completed: bc28a1f0" in result.output
        item = reload(store_dir).get_by_id(BC28_A)
        assert item.is_completed
        assert item.archived is False

    def test_already_completed(self, ck, seeded):
        result = ck("done", "d41d")
        assert result.exit_code == 0
        assert "Item already completed" in result.output

    def test_already_completed_json(self, ck, seeded):
        result = ck("--json", "done", "d41d")
        assert result.exit_code == 0
        assert json.loads(result.output) == {"id": "d41d8cd9", "status": "unchanged"}

    def test_ambiguous_prefix(self, ck, seeded, store_dir):
        before = (store_dir / ITEMS_FILENAME).read_bytes()
        result = ck("done", "bc28")

        assert result.exit_code == 1
        assert "2 items match 'bc28'" in result.output
        assert "  - bc28a1: Fix login bug" in result.output
        assert "  - bc28ff: Write release notes" in result.output
        assert "Use more characters to disambiguate:" in result.output
        assert f"  ck done {BC28_A}" in result.output
        assert f"  ck done {BC28_B}" in result.output
        assert (store_dir / ITEMS_FILENAME).read_bytes() == before

    def test_not_found(self, ck, seeded):
        result = ck("done", "ffff")
        assert result.exit_code == 1
        assert "item not found: ffff" in result.output

    def test_json(self, ck, seeded):
        assert json.loads(ck("--json", "done", BC28_B).output) == {
            "id": "bc28ff00",
            "status": "completed",
        }


class TestEdit:

    def test_content_option(self, ck, seeded, store_dir):
        result = ck("edit", "bc28f", "-c", "Write release notes for 0.3")
        assert result.exit_code == 0, result.output
        assert "Updated item: bc28ff00" in result.output
        item = reload(store_dir).get_by_id(BC28_B)
        assert item.content == "Write release notes for 0.3"
        assert item.tags == ["docs"]

    def test_unchanged(self, ck, seeded):
        result = ck("edit", "bc28f", "-c", "Write release notes")
        assert "No changes." in result.output

    def test_editor(self, ck, seeded, store_dir, monkeypatch):
        seen = {}

        def fake_editor(initial, editor):
            seen["initial"] = initial
            return initial + " (edited)\n"

        monkeypatch.setattr(cli, "open_editor", fake_editor)
        result = ck("edit", "bc28a")
        assert result.exit_code == 0, result.output
        assert seen["initial"] == "Fix login bug"
        assert reload(store_dir).get_by_id(BC28_A).content == "Fix login bug (edited)"

    def test_empty_content_rejected(self, ck, seeded, store_dir):
        result = ck("edit", "bc28a", "-c", "  ")
        assert result.exit_code == 1
        assert reload(store_dir).get_by_id(BC28_A).content == "Fix login bug"

    def test_ambiguous(self, ck, seeded):
        result = ck("edit", "bc", "-c", "x")
        assert result.exit_code == 1
        assert f"  ck edit {BC28_A}" in result.output


class TestArchive:

    def test_archives(self, ck, seeded, store_dir):
        result = ck("archive", "bc28a")
        assert result.exit_code == 0
        assert "Archived item: bc28a1f0" in result.output
        item = reload(store_dir).get_by_id(BC28_A)
        assert item.archived is True
        assert item.completed_at is None
        assert len(reload(store_dir).get_all()) == 4

    def test_already_archived(self, ck, seeded):
        assert "Item already archived" in ck("archive", "e5f6").output

    def test_already_archived_json(self, ck, seeded):
        assert json.loads(ck("--json", "archive", "e5f6").output) == {
            "id": "e5f6a7b8",
            "status": "unchanged",
        }


class TestRemove:

    def test_force(self, ck, seeded, store_dir):
        result = ck("remove", "bc28a", "--force")
        assert result.exit_code == 0, result.output
        assert "Removed item: bc28a1f0" in result.output
        assert [i.id for i in reload(store_dir).get_all()] == [
            BC28_B,
            "d41d8cd9-0000-4000-8000-000000000003",
            "e5f6a7b8-0000-4000-8000-000000000004",
        ]

    def test_confirm_yes(self, ck, seeded, store_dir):
        result = ck("remove", "d41d", input="y\n")
        assert result.exit_code == 0, result.output
        assert len(reload(store_dir).get_all()) == 3

    def test_confirm_no(self, ck, seeded, store_dir):
        result = ck("remove", "d41d", input="n\n")
        assert "Cancelled." in result.output
        assert len(reload(store_dir).get_all()) == 4

    def test_ambiguous_removes_nothing(self, ck, seeded, store_dir):
        result = ck("remove", "bc28", "--force")
        assert result.exit_code == 1
        assert f"  ck remove {BC28_B}" in result.output
        assert len(reload(store_dir).get_all()) == 4

    def test_not_found(self, ck, seeded):
        result = ck("remove", "zzz", "-f")
        assert result.exit_code == 1
        assert "item not found: zzz" in result.output


class TestStatus:

    def test_text(self, ck, seeded, store_dir):
        output = ck("status").output
        assert f"Storage Path: {store_dir}" in output
        assert "Total Items:  4" in output
        assert "Active:       3" in output
        assert "Completed:    1" in output
        assert "Archived:     1" in output

    def test_json(self, ck, seeded, store_dir):
        data = json.loads(ck("--json", "status").output)
        assert data == {
            "storagePath": str(store_dir),
            "totalItems": 4,
            "activeItems": 3,
            "completedItems": 1,
            "archivedItems": 1,
            "projects": ["docs", "web"],
            "tags": ["bug", "docs", "urgent"],
        }

    def test_empty_store(self, ck):
        result = ck("status")
        assert result.exit_code == 0
        assert "Total Items:  0" in result.output


class TestConfig:

    def test_show_defaults(self, ck, store_dir):
        result = ck("config", "show")
        assert result.exit_code == 0
        assert "default_project" in result.output
        assert not store_dir.exists()

    def test_set_and_get(self, ck, store_dir):
        result = ck("config", "set", "file_lock", "yes")
        assert result.exit_code == 0, result.output
        assert load_config(store_dir).file_lock is True
        assert ck("config", "get", "file_lock").output.strip() == "true"

    def test_unknown_key(self, ck):
        result = ck("config", "get", "colour")
        assert result.exit_code == 1
        assert "unknown config key: colour" in result.output

    def test_bad_value(self, ck):
        result = ck("config", "set", "file_lock", "maybe")
        assert result.exit_code == 1

    def test_reset(self, ck, store_dir):
        ck("config", "set", "editor", "nano")
        ck("config", "reset")
        assert load_config(store_dir).editor == ""

    def test_show_json(self, ck, store_dir):
        data = json.loads(ck("--json", "config", "show").output)
        assert data["path"] == str(store_dir)
        assert data["file_lock"] is False

    def test_file_lock_used_by_commands(self, ck, store_dir):
        ck("config", "set", "file_lock", "true")
        ck("add", "locked add")
        assert (store_dir / "items.json.lock").exists()


class TestHelpers:

    def test_filter_combines_criteria(self, make_item):
        items = [
            make_item(id="a", content="alpha", project="p", tags=["x", "y"]),
            make_item(id="b", content="beta", project="p", tags=["x"]),
            make_item(id="c", content="ALPHA two", project="q", tags=["x", "y"]),
        ]
        assert [i.id for i in filter_items(items, project="p", tags=["x", "y"])] == ["a"]
        assert [i.id for i in filter_items(items, query="alpha")] == ["a", "c"]

    def test_long_content_is_cut(self, make_item):
        line = format_item_line(make_item(id="abcdef12", content="word " * 30), "%Y")
        assert "..." in line
        assert line.startswith("[ ] [abcdef] ")


class TestMain:
    """main() turns unexpected errors into a message and a traceback log."""

    def test_error_log_in_resolved_store(self, store_dir, monkeypatch, capsys):
        def explode(*args, **kwargs):
            raise RuntimeError("unexpected failure")

        monkeypatch.setattr(cli, "filter_items", explode)
        monkeypatch.setattr(cli, "_resolved_store_dir", None)
        monkeypatch.setattr("sys.argv", ["ck", "--store", str(store_dir), "list"])

        with pytest.raises(SystemExit) as exc_info:
            cli.main()

        assert exc_info.value.code == 1
        log_path = store_dir / "ck-errors.log"
        assert "RuntimeError: unexpected failure" in log_path.read_text()
        err = capsys.readouterr().err
        assert "Error: unexpected failure" in err
        assert f"Details logged to {log_path}" in err
