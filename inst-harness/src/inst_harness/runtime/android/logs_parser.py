from __future__ import annotations

from typing import List, Optional

_MARKER_PREFIX = "INSTRUMENTATION_"
_STACK_PREFIX = "INSTRUMENTATION_STATUS: stack="
_CODE_PREFIX = "INSTRUMENTATION_CODE:"


class InstrumentationLogsParser:
    """Incremental parser for `am instrument -r` output.

    Chunks may split lines arbitrarily; only complete lines are consumed until
    `flush()`. A stack trace runs from `INSTRUMENTATION_STATUS: stack=` up to
    the next `INSTRUMENTATION_*` line. The last one seen wins.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._stack_lines: Optional[List[str]] = None
        self.stack_trace = ""
        self.result_code: Optional[int] = None

    def parse(self, chunk: str) -> None:
        self._buffer += chunk
        complete, sep, partial = self._buffer.rpartition("\n")
        if not sep:
            return
        self._buffer = partial
        for line in complete.split("\n"):
            self._consume_line(line.rstrip("\r"))

    def flush(self) -> None:
        if self._buffer:
            self._consume_line(self._buffer.rstrip("\r"))
            self._buffer = ""
        self._close_stack()

    def contains_stack_trace(self) -> bool:
        return bool(self.stack_trace)

    def get_stack_trace(self) -> str:
        return self.stack_trace

    def _consume_line(self, line: str) -> None:
        if not line.startswith(_MARKER_PREFIX):
            if self._stack_lines is not None:
                self._stack_lines.append(line)
            return

        self._close_stack()
        if line.startswith(_STACK_PREFIX):
            self._stack_lines = [line[len(_STACK_PREFIX) :]]
        elif line.startswith(_CODE_PREFIX):
            raw = line[len(_CODE_PREFIX) :].strip()
            try:
                self.result_code = int(raw)
            except ValueError:
                self.result_code = None

    def _close_stack(self) -> None:
        if self._stack_lines is None:
            return
        trace = "\n".join(self._stack_lines).strip()
        if trace:
            self.stack_trace = trace
        self._stack_lines = None
