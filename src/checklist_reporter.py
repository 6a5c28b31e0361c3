"""Two-channel output: free-form diagnostics and the checklist result stream.

The result stream carries one line per reportable item::

    key<TAB>OK|NG[<TAB>description]

Keys are dotted (``scenario.step``) and stable between runs so consumers can
diff them over time. In checklist mode diagnostics go to stderr and nothing
but checklist lines ever reaches the result stream.
"""

import re
import sys
from contextlib import contextmanager
from pathlib import Path

KEY_RE = re.compile(r"^[\w-]+(\.[\w-]+)*$")


def format_line(key: str, ok: bool, description: str | None = None) -> str:
    if not KEY_RE.match(key):
        raise ValueError(f"invalid checklist key: {key!r}")
    status = "OK" if ok else "NG"
    if description:
        # tabs and newlines would break the line protocol
        description = re.sub(r"[\t\r\n]+", " ", description).strip()
    if description:
        return f"{key}\t{status}\t{description}"
    return f"{key}\t{status}"


def parse_line(line: str) -> tuple[str, bool, str | None]:
    parts = line.rstrip("\n").split("\t", 2)
    if len(parts) < 2 or parts[1] not in ("OK", "NG"):
        raise ValueError(f"not a checklist line: {line!r}")
    return parts[0], parts[1] == "OK", parts[2] if len(parts) == 3 else None


class Reporter:
    """Sink passed to every component instead of calling ``print`` directly."""

    def __init__(self, checklist: bool = False, verbose: bool = False, result_stream=None, diag_stream=None):
        self.checklist = checklist
        self.verbose = verbose
        # Bound now, before any redirection is installed
        self.result_stream = result_stream if result_stream is not None else sys.stdout
        if diag_stream is not None:
            self.diag_stream = diag_stream
        else:
            self.diag_stream = sys.stderr if checklist else sys.stdout
        self.lines: list[str] = []

    def diag(self, message: str) -> None:
        print(message, file=self.diag_stream, flush=True)

    def debug(self, message: str) -> None:
        if self.verbose:
            self.diag(message)

    def result(self, key: str, ok: bool, description: str | None = None) -> str:
        line = format_line(key, ok, description)
        self.lines.append(line)
        print(line, file=self.result_stream, flush=True)
        return line

    @contextmanager
    def channel_guard(self):
        """Route stray stdout writes to the diagnostic stream while active.

        Only installed in checklist mode; the reporter keeps its own handle on
        the real result stream.
        """
        if not self.checklist or self.diag_stream is self.result_stream:
            yield self
            return
        saved = sys.stdout
        sys.stdout = self.diag_stream
        try:
            yield self
        finally:
            sys.stdout = saved

    def write_tsv(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(line + "\n" for line in self.lines), encoding="utf-8")
        return path
