"""
External editor support for writing and editing item content.
"""

import os
import shlex
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

# Tried in order after the configured editor, $EDITOR and $VISUAL
FALLBACK_EDITORS = ("vim", "vi", "nano", "code", "notepad")


class EditorError(RuntimeError):
    """No usable editor, or the editor exited with an error."""


def detect_editor(preferred: Optional[str] = None) -> Optional[list[str]]:
    """
    Find an editor command.

    Candidates may carry arguments (``code --wait``); only the program
    itself must be on PATH.

    Returns:
        The command as an argument list, or None if nothing is installed
    """
    candidates = [
        preferred,
        os.environ.get("EDITOR"),
        os.environ.get("VISUAL"),
        *FALLBACK_EDITORS,
    ]
    for candidate in candidates:
        if not candidate or not candidate.strip():
            continue
        argv = shlex.split(candidate)
        program = shutil.which(argv[0])
        if program:
            return [program, *argv[1:]]
    return None


def open_editor(initial: str = "", editor: Optional[str] = None) -> str:
    """
    Let the user edit text in their editor.

    Args:
        initial: Text to start from
        editor: Preferred editor command (e.g. from config)

    Returns:
        The saved file contents

    Raises:
        EditorError: If no editor is found or it fails
    """
    command = detect_editor(editor)
    if command is None:
        raise EditorError("No suitable editor found (set $EDITOR)")

    fd, tmp_name = tempfile.mkstemp(prefix="contextkeeper-", suffix=".md")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(initial)

        try:
            result = subprocess.run([*command, str(tmp_path)])
        except OSError as e:
            raise EditorError(f"Failed to start editor {command[0]}: {e}") from e
        if result.returncode != 0:
            raise EditorError(f"Editor exited with status {result.returncode}")

        return tmp_path.read_text(encoding="utf-8")
    finally:
        tmp_path.unlink(missing_ok=True)
