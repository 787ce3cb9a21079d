"""
BFVM Console Device
===================
Connects the engine's '.' and ',' instructions to the host terminal.

Output bytes go straight to a binary stream (normally ``sys.stdout.buffer``)
or, with no stream attached, collect in ``tx_buffer`` for the caller to
drain.  Input is read one character at a time from a text stream (normally
``sys.stdin``), the same stream the interactive loop reads its lines from,
so a program's ',' picks up whatever the user types after the line that
started it.

The text stream should decode with ``errors="surrogateescape"`` so that bytes
which are not valid UTF-8 reach the program unchanged.
"""

from __future__ import annotations
import sys
from collections import deque
from typing import BinaryIO, Callable, Optional, TextIO


class Console:
    """Byte-level terminal for one engine session."""

    def __init__(self, stdin: Optional[TextIO] = None,
                 stdout: Optional[BinaryIO] = None):
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout
        self.tx_buffer: deque[int] = deque()   # output, when no stream is attached
        self.rx_buffer: deque[int] = deque()   # input waiting to be read
        self.at_eof = False

        # Callbacks
        self.on_tx: Optional[Callable[[int], None]] = None

    # -- Output --

    def write8(self, value: int):
        value &= 0xFF
        if self.stdout is not None:
            self.stdout.write(bytes((value,)))
            if value == 0x0A:
                self.stdout.flush()
        else:
            self.tx_buffer.append(value)
        if self.on_tx:
            self.on_tx(value)

    def flush(self):
        if self.stdout is not None:
            self.stdout.flush()

    def drain_tx(self) -> bytes:
        """Return all pending TX bytes and clear the buffer."""
        out = bytes(self.tx_buffer)
        self.tx_buffer.clear()
        return out

    # -- Input --

    def read8(self) -> Optional[int]:
        """Next input byte, or None at end of input."""
        if not self.rx_buffer and not self.at_eof:
            self.flush()
            ch = self.stdin.read(1)
            if ch:
                self.rx_buffer.extend(ch.encode("utf-8", errors="surrogateescape"))
            else:
                self.at_eof = True
        if self.rx_buffer:
            return self.rx_buffer.popleft()
        return None

    def inject_input(self, data: bytes | str):
        """Queue bytes ahead of the input stream."""
        if isinstance(data, str):
            data = data.encode("utf-8", errors="surrogateescape")
        for b in data:
            self.rx_buffer.append(b & 0xFF)

    @property
    def has_rx_data(self) -> bool:
        return len(self.rx_buffer) > 0


def read_program(path: str) -> str:
    """Read a whole program file.  Every byte becomes one character."""
    with open(path, "rb") as f:
        return f.read().decode("latin-1")
