"""Hand-off of text to the user's editor."""
import logging
import os
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from meowpad.config import config
from meowpad.exceptions import EditorError

logger = logging.getLogger(__name__)

DEFAULT_EDITOR = "vi"


def resolve_editor(editor: Optional[str] = None) -> List[str]:
    """Editor command line, from the argument, config, $VISUAL or $EDITOR."""
    command = (
        editor
        or config.editor
        or os.environ.get("VISUAL")
        or os.environ.get("EDITOR")
        or DEFAULT_EDITOR
    )
    return shlex.split(command)


def edit_text(initial: str, editor: Optional[str] = None, suffix: str = ".md") -> str:
    """Open ``initial`` in an editor and return the saved text.

    The temporary file is removed afterwards whatever happens.

    Raises:
        EditorError: If the editor cannot be started or exits non-zero.
    """
    command = resolve_editor(editor)
    fd, name = tempfile.mkstemp(prefix="meowpad-", suffix=suffix)
    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(initial)

        logger.debug(f"Launching editor: {command} {path}")
        try:
            subprocess.run([*command, str(path)], check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise EditorError(" ".join(command), original_error=e) from e

        return path.read_text(encoding="utf-8")
    finally:
        path.unlink(missing_ok=True)
