"""Tests for handing text to an external editor."""
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from meowpad.editor import edit_text, resolve_editor
from meowpad.exceptions import EditorError


class TestResolveEditor:
    """Tests for choosing the editor command."""

    def test_argument_wins(self, test_config, monkeypatch):
        monkeypatch.setenv("EDITOR", "nano")
        assert resolve_editor("code --wait") == ["code", "--wait"]

    def test_config_before_environment(self, test_config, monkeypatch):
        monkeypatch.setattr(test_config, "editor", "emacs -nw")
        monkeypatch.setenv("VISUAL", "gedit")
        assert resolve_editor() == ["emacs", "-nw"]

    def test_visual_before_editor(self, test_config, monkeypatch):
        monkeypatch.setenv("VISUAL", "gedit")
        monkeypatch.setenv("EDITOR", "nano")
        assert resolve_editor() == ["gedit"]

    def test_default(self, test_config, monkeypatch):
        monkeypatch.delenv("VISUAL", raising=False)
        monkeypatch.delenv("EDITOR", raising=False)
        assert resolve_editor() == ["vi"]


class TestEditText:
    """Tests for the edit round trip."""

    def test_returns_saved_text(self, test_config):
        seen = {}

        def fake_editor(command, check):
            path = Path(command[-1])
            seen["path"] = path
            seen["initial"] = path.read_text(encoding="utf-8")
            path.write_text("edited text", encoding="utf-8")

        with patch("meowpad.editor.subprocess.run", side_effect=fake_editor):
            result = edit_text("initial text", editor="myeditor")

        assert result == "edited text"
        assert seen["initial"] == "initial text"
        assert seen["path"].suffix == ".md"
        assert not seen["path"].exists()

    def test_editor_failure(self, test_config):
        failure = subprocess.CalledProcessError(1, ["myeditor"])
        with patch("meowpad.editor.subprocess.run", side_effect=failure) as run:
            with pytest.raises(EditorError) as exc_info:
                edit_text("text", editor="myeditor")
        assert exc_info.value.command == "myeditor"
        assert not Path(run.call_args.args[0][-1]).exists()

    def test_missing_editor(self, test_config):
        with patch("meowpad.editor.subprocess.run", side_effect=FileNotFoundError("nope")):
            with pytest.raises(EditorError):
                edit_text("text", editor="no-such-editor")
