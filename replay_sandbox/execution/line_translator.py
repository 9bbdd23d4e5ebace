# replay_sandbox/execution/line_translator.py
"""
Map interpreter-reported line numbers back to the student's own source.

Scaffold text prepended around the student's code shifts every line number;
what the student sees is `Line N: Type: message` with N counted from their
first line.
"""

from __future__ import annotations

import re
from typing import Optional

# Frames that belong to the student's program, locally and on Judge0
_STUDENT_FILES = ("<student>", "<exec>", "script.py")

_FRAME_RE = re.compile(r'File "(?P<file>[^"]+)", line (?P<line>\d+)')
_FINAL_RE = re.compile(r"^(?P<type>[A-Za-z_][\w.]*(?:Error|Exception|Exit|Interrupt|Warning)): ?(?P<message>.*)$")


def translate_line(lineno: int, prepend_lines: int) -> int:
    """Student-facing line number, never below 1."""
    return max(1, lineno - prepend_lines)


def format_error(exc_type: str, message: str, lineno: Optional[int], prepend_lines: int = 0) -> str:
    head = f"{exc_type}: {message}" if message else exc_type
    if lineno is None:
        return head
    return f"Line {translate_line(lineno, prepend_lines)}: {head}"


def translate_traceback(text: str, prepend_lines: int = 0) -> str:
    """
    Reduce a full traceback to one student-facing line.

    Interpreter-internal frames are dropped: only the last frame in the
    student's file supplies the line number, and only the final
    `Type: message` line is kept.
    """
    if not text or not text.strip():
        return ""

    lineno = None
    for match in _FRAME_RE.finditer(text):
        if match.group("file").endswith(_STUDENT_FILES):
            lineno = int(match.group("line"))

    for line in reversed(text.strip().splitlines()):
        final = _FINAL_RE.match(line.strip())
        if final:
            exc_type = final.group("type").rsplit(".", 1)[-1]
            return format_error(exc_type, final.group("message"), lineno, prepend_lines)

    # No recognisable exception line; surface the last non-empty line
    return text.strip().splitlines()[-1].strip()
