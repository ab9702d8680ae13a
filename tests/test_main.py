"""End-to-end tests for the meowpad command line."""
import logging
from unittest.mock import patch

import pytest
from sqlalchemy import text

from meowpad import main as cli
from meowpad.storage.database import Database
from tests.fakes import FakeFetcher, article_html

URL = "https://blog.example/post"


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo the handlers main() installs on the meowpad logger."""
    package_logger = logging.getLogger("meowpad")
    handlers = list(package_logger.handlers)
    level = package_logger.level
    yield
    for handler in package_logger.handlers:
        if handler not in handlers:
            handler.close()
    package_logger.handlers = handlers
    package_logger.setLevel(level)


@pytest.fixture
def fetcher():
    fake = FakeFetcher()
    with patch("meowpad.services.capture_service.PageFetcher", return_value=fake):
        yield fake


@pytest.fixture
def run(test_config, capsys):
    """Invoke main() against the per-test database; returns (code, stdout, stderr)."""
    database_path = str(test_config.database_path)

    def invoke(*args):
        code = cli.main(["--database-path", database_path, *args])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return invoke


@pytest.mark.integration
class TestAddAndList:
    """Tests for capturing and listing links."""

    def test_add_then_list(self, run, fetcher):
        fetcher.add_html(URL, article_html("Otters", "Otters hold hands."))

        code, out, _ = run("add", URL, "-t", "animals")
        assert code == 0
        assert out.strip() == f"created: {URL} [indexed]"

        code, out, _ = run("list", "-t", "animals")
        assert code == 0
        assert URL in out
        assert "Otters" in out

    def test_add_twice(self, run, fetcher):
        fetcher.add_page(URL, "text")
        run("add", URL)
        code, out, _ = run("add", URL)
        assert code == 0
        assert out.startswith("already_exists")

    def test_degraded_add_warns(self, run, fetcher):
        fetcher.add_page(URL, "binary", content_type="application/zip")
        code, out, err = run("add", URL)
        assert code == 0
        assert "[no_content]" in out
        assert "warning:" in err

    def test_fetch_failure(self, run, fetcher):
        code, _, err = run("add", URL)
        assert code == 1
        assert "Unable to fetch" in err
        _, out, _ = run("list", "--all")
        assert out == ""

    def test_search(self, run, fetcher):
        fetcher.add_page(URL, "quokkas smile")
        run("add", URL)
        run("note", "Island trip", "-m", "saw quokkas today")
        code, out, _ = run("search", "quokkas")
        assert code == 0
        assert f"link  {URL}" in out
        assert "note  Island trip" in out

    def test_invalid_tag_stores_nothing(self, run, fetcher):
        fetcher.add_html(URL, article_html("Otters", "Otters hold hands."))
        code, _, err = run("add", URL, "-t", "???")
        assert code == 1
        assert err.startswith("error:")
        assert fetcher.calls == []
        _, out, _ = run("list", "--all")
        assert out == ""

    def test_add_with_note_and_relation(self, run, fetcher):
        fetcher.add_page(URL, "text")
        code, _, _ = run(
            "add", URL, "-m", "worth a reread",
            "--related-link", "https://source.example/", "-r", "via",
        )
        assert code == 0
        _, out, _ = run("show", URL)
        assert "-> https://source.example/ (via)" in out
        assert f"note: {URL}" in out


@pytest.mark.integration
class TestNotes:
    """Tests for the note command."""

    def test_standalone_note(self, run):
        code, out, _ = run("note", "Idea", "-m", "Write more tests", "-t", "todo")
        assert code == 0
        assert out.strip() == "Saved note 'Idea'"
        _, out, _ = run("list", "--notes", "-t", "todo")
        assert "Idea" in out

    def test_link_note_via_editor(self, run, fetcher):
        fetcher.add_page(URL, "text")
        run("add", URL)
        with patch("meowpad.main.edit_text", return_value="my thoughts") as editor:
            code, out, _ = run("note", URL)
        assert code == 0
        editor.assert_called_once_with("")
        assert f"Saved note '{URL}'" in out

        with patch("meowpad.main.edit_text", return_value="my thoughts") as editor:
            _, out, _ = run("note", URL)
        editor.assert_called_once_with("my thoughts")
        assert out.strip() == "No changes"

    def test_note_for_unknown_link(self, run):
        code, _, err = run("note", URL, "-m", "text")
        assert code == 1
        assert "not found" in err


@pytest.mark.integration
class TestShowTagRelate:
    """Tests for show, tag, relate and rm."""

    def test_relate_and_show(self, run, fetcher):
        fetcher.add_page(URL, "text")
        run("add", URL)
        code, out, _ = run("relate", URL, "https://source.example/", "-r", "via")
        assert code == 0

        _, out, _ = run("show", URL)
        assert "-> https://source.example/ (via)" in out
        assert "indexed: yes" in out

        _, out, _ = run("show", "https://source.example/")
        assert f"<- {URL} (via)" in out
        assert "(secondary)" in out

        _, out, _ = run("list")
        assert "source.example" not in out

    def test_tag_and_untag(self, run, fetcher):
        fetcher.add_page(URL, "text")
        run("add", URL)
        _, out, _ = run("tag", URL, "Reading", "later")
        assert out.strip() == "later, Reading"
        _, out, _ = run("tag", URL, "later", "--remove")
        assert out.strip() == "Reading"

    def test_rm_link_and_tag(self, run, fetcher):
        fetcher.add_page(URL, "text")
        run("add", URL, "-t", "old")
        code, out, _ = run("rm", "--tag", "old")
        assert code == 0
        assert "1 items untagged" in out
        code, _, _ = run("rm", URL)
        assert code == 0
        _, out, _ = run("list", "--all")
        assert out == ""

    def test_rm_missing(self, run):
        code, _, err = run("rm", "nothing-by-this-name")
        assert code == 1
        assert err.startswith("error:")


@pytest.mark.integration
class TestFailureModes:
    """Tests for interrupts and unusable databases."""

    def test_interrupt_rolls_back(self, run, monkeypatch):
        def interrupted(store, args):
            with store.transaction():
                store.create_link(URL)
                raise KeyboardInterrupt

        monkeypatch.setitem(cli.COMMANDS, "rm", interrupted)
        code, _, err = run("rm", "anything")
        assert code == 130
        assert "rolled back" in err

        _, out, _ = run("list", "--all")
        assert out == ""

    def test_newer_database(self, run, test_config):
        run("list")
        db = Database(test_config.get_db_url())
        with db.engine.begin() as conn:
            conn.execute(text(
                "INSERT INTO schema_version (version, applied_at) VALUES (42, 'future')"
            ))
        db.dispose()

        code, _, err = run("list")
        assert code == 1
        assert "newer" in err
