"""
BFVM Execution Engine
=====================
A virtual machine for the eight-instruction byte language ``> < + - . , [ ]``.

Memory is a tape of fixed-size chunks, each roughly one system page.  When
the data pointer runs off either end of the chunks allocated so far, a new
zero-filled chunk is created on that side, so the tape is unbounded in both
directions.

Loops are resolved at run time with no compile pass.  On ``[`` the engine
scans right for the matching ``]``.  A zero cell jumps straight over the
body; a non-zero cell pushes the bracket's position on a jump stack.  On
``]`` a non-zero cell jumps back to the position on top of the stack, and
a zero cell pops it.
"""

from __future__ import annotations
import logging
import mmap
from typing import Callable, Optional

log = logging.getLogger("bfvm")

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MASK8 = 0xFF

# Bytes held back from each page for the allocator's own bookkeeping.
CHUNK_MARGIN = 32

# What ',' stores at end of input: C's EOF (-1) squeezed into a byte.
EOF_SENTINEL = 0xFF

INSTRUCTIONS = "><+-.,[]"


def default_chunk_len() -> int:
    """Page size minus CHUNK_MARGIN, or the full page on tiny pages."""
    n = mmap.PAGESIZE - CHUNK_MARGIN
    if n <= 0:
        n += CHUNK_MARGIN
    return n


CHUNK_LEN = default_chunk_len()

# ---------------------------------------------------------------------------
#  Helpers
# ---------------------------------------------------------------------------

def u8(v: int) -> int:
    """Mask to unsigned 8 bits."""
    return v & MASK8


def match_right(program: str, pos: int) -> Optional[int]:
    """Return the index of the ']' matching the '[' at *pos*, or None.

    Nested brackets are counted; the match is the first ']' seen with the
    nesting counter at zero.
    """
    depth = 0
    for i in range(pos + 1, len(program)):
        c = program[i]
        if c == '[':
            depth += 1
        elif c == ']':
            if depth:
                depth -= 1
            else:
                return i
    return None

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class BFVMError(Exception):
    """Base for engine-generated errors."""
    pass


class BracketError(BFVMError):
    """Unbalanced bracket.  Aborts one invocation; the tape survives."""

    bracket = ""
    default_message = "unbalanced bracket"

    def __init__(self, pos: int, message: str = ""):
        self.pos = pos
        super().__init__(message or self.default_message)


class UnmatchedOpenError(BracketError):
    bracket = "["
    default_message = "'[' with no matching ']'"


class UnmatchedCloseError(BracketError):
    bracket = "]"
    default_message = "']' with no matching '['"


class AllocationError(BFVMError):
    """Out of memory.  There is no way to keep running after this."""
    pass

# ---------------------------------------------------------------------------
#  Tape
# ---------------------------------------------------------------------------

class Tape:
    """Unbounded byte tape built from lazily allocated chunks.

    Chunks are kept in a dict keyed by signed chunk index, 0 being the
    chunk the cursor starts in.  Chunks only come into existence when the
    cursor walks into them, so the allocated indices are always a
    contiguous run and ``index - 1`` / ``index + 1`` are the left and right
    neighbours.
    """

    def __init__(self, chunk_len: int = CHUNK_LEN):
        if chunk_len < 1:
            raise ValueError(f"chunk length must be positive, got {chunk_len}")
        self.chunk_len = chunk_len
        self.chunks: dict[int, bytearray] = {}
        self.lo = 0     # leftmost allocated chunk index
        self.hi = 0     # rightmost allocated chunk index
        self.index = 0
        self.page = self._alloc(0)
        # Start mid-chunk so the first few moves either way stay put.
        self.origin = chunk_len // 2
        self.offset = self.origin

    def _alloc(self, index: int) -> bytearray:
        try:
            chunk = bytearray(self.chunk_len)
        except MemoryError as e:
            raise AllocationError("could not allocate a chunk of memory") from e
        self.chunks[index] = chunk
        self.lo = min(self.lo, index)
        self.hi = max(self.hi, index)
        log.debug("allocated chunk %d (%d bytes, %d chunks total)",
                  index, self.chunk_len, len(self.chunks))
        return chunk

    def _enter(self, index: int):
        page = self.chunks.get(index)
        if page is None:
            page = self._alloc(index)
        self.index = index
        self.page = page

    # -- Cursor movement --

    def advance(self):
        if self.offset + 1 < self.chunk_len:
            self.offset += 1
        else:
            self._enter(self.index + 1)
            self.offset = 0

    def retreat(self):
        if self.offset > 0:
            self.offset -= 1
        else:
            self._enter(self.index - 1)
            self.offset = self.chunk_len - 1

    # -- Cell access --

    def increment(self):
        self.page[self.offset] = (self.page[self.offset] + 1) & MASK8

    def decrement(self):
        self.page[self.offset] = (self.page[self.offset] - 1) & MASK8

    def read(self) -> int:
        return self.page[self.offset]

    def write(self, value: int):
        self.page[self.offset] = u8(value)

    # -- Inspection (never allocates) --

    @property
    def position(self) -> int:
        """Cursor as a signed cell number; the starting cell is 0."""
        return self.index * self.chunk_len + self.offset - self.origin

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def extent(self) -> tuple[int, int]:
        """(lowest, highest) absolute cell backed by an allocated chunk."""
        low = self.lo * self.chunk_len - self.origin
        high = (self.hi + 1) * self.chunk_len - 1 - self.origin
        return low, high

    def peek(self, pos: int) -> int:
        index, offset = divmod(pos + self.origin, self.chunk_len)
        chunk = self.chunks.get(index)
        return chunk[offset] if chunk is not None else 0

    def window(self, start: int, count: int) -> bytes:
        return bytes(self.peek(p) for p in range(start, start + count))

# ---------------------------------------------------------------------------
#  Jump stack
# ---------------------------------------------------------------------------

class JumpStack(list):
    """Positions of '[' still waiting for their ']'; innermost on top."""

    def push(self, pos: int):
        try:
            self.append(pos)
        except MemoryError as e:
            raise AllocationError("could not allocate a jump record") from e

# ---------------------------------------------------------------------------
#  Engine
# ---------------------------------------------------------------------------

class Engine:
    """Long-lived interpreter session.

    The tape survives between calls to :meth:`execute`, so a sequence of
    programs (a file followed by interactive lines, say) all run against
    the same memory.

    *on_output* is called with each byte emitted by '.'; when it is None
    the bytes collect in :attr:`output`.  *on_input* returns the next input
    byte or None at end of input; when it is None input is always at end.
    *eof* is the byte ',' stores at end of input, or None to leave the
    cell alone.
    """

    def __init__(self, chunk_len: int = CHUNK_LEN,
                 on_output: Optional[Callable[[int], None]] = None,
                 on_input: Optional[Callable[[], Optional[int]]] = None,
                 eof: Optional[int] = EOF_SENTINEL):
        self.tape = Tape(chunk_len)
        self.on_output = on_output
        self.on_input = on_input
        self.eof = eof
        self.output = bytearray()
        self.steps = 0          # instructions executed over the session
        self.invocations = 0

    def reset(self):
        """Throw the tape away and start over with a fresh one."""
        self.tape = Tape(self.tape.chunk_len)
        self.output.clear()
        self.steps = 0
        self.invocations = 0

    # -- I/O --

    def _emit(self, value: int):
        if self.on_output is not None:
            self.on_output(value)
        else:
            self.output.append(value)

    def _receive(self):
        value = self.on_input() if self.on_input is not None else None
        if value is None:
            if self.eof is not None:
                self.tape.write(self.eof)
        else:
            self.tape.write(value)

    # -- Execution --

    def execute(self, program: str | bytes) -> int:
        """Run one complete program.  Returns instructions executed.

        Raises :class:`BracketError` on unbalanced brackets.  Whatever the
        program did to the tape before the error stays done.
        """
        if isinstance(program, (bytes, bytearray)):
            program = program.decode("latin-1")
        nul = program.find("\0")
        if nul >= 0:
            program = program[:nul]

        self.invocations += 1
        tape = self.tape
        stack = JumpStack()
        steps = 0
        ip = 0
        end = len(program)

        try:
            while ip < end:
                c = program[ip]
                if c == '>':
                    tape.advance()
                elif c == '<':
                    tape.retreat()
                elif c == '+':
                    tape.increment()
                elif c == '-':
                    tape.decrement()
                elif c == '.':
                    self._emit(tape.read())
                elif c == ',':
                    self._receive()
                elif c == '[':
                    right = match_right(program, ip)
                    if right is None:
                        raise UnmatchedOpenError(ip)
                    if tape.read() == 0:
                        ip = right
                    else:
                        stack.push(ip)
                elif c == ']':
                    if not stack:
                        raise UnmatchedCloseError(ip)
                    if tape.read() != 0:
                        ip = stack.pop()
                        steps += 1
                        continue    # back onto the '[' itself
                    stack.pop()
                else:
                    ip += 1
                    continue        # comment
                steps += 1
                ip += 1
        finally:
            self.steps += steps

        log.debug("invocation %d: %d instructions, cursor at %d",
                  self.invocations, steps, tape.position)
        return steps
