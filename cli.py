#!/usr/bin/env python3
"""
BFVM Interpreter / Monitor
==========================
Command-line front end for the BFVM execution engine.

Provides:
  - File mode: run a program file against a fresh tape
  - Interactive mode: every line typed is run as a complete program,
    all against the same tape
  - Monitor commands for looking at the tape between programs

Usage:
  python cli.py [PROGRAM] [-e CODE] [--batch] [--eof {255,0,keep}]
                [--chunk-size N] [-v]
"""

from __future__ import annotations
import argparse
import cmd
import logging
import readline  # noqa: F401  (line editing and history for input())
import shlex
import sys
from typing import Optional

from bfvm import (Engine, BracketError, AllocationError, CHUNK_LEN,
                  EOF_SENTINEL, INSTRUCTIONS)
from console import Console, read_program

log = logging.getLogger("bfvm.cli")

EOF_CHOICES = {"255": EOF_SENTINEL, "0": 0, "keep": None}


def report_bracket_error(e: BracketError):
    print(f"Input Error: {e} (at {e.pos})", file=sys.stderr)


def run_program(engine: Engine, console: Console, program: str) -> bool:
    """Run one invocation.  Returns False if it stopped on a bracket error.

    AllocationError is not caught here; it ends the process.
    """
    try:
        engine.execute(program)
    except BracketError as e:
        report_bracket_error(e)
        return False
    finally:
        console.flush()
    return True


def run_file(engine: Engine, console: Console, path: str) -> bool:
    try:
        program = read_program(path)
    except OSError as e:
        log.debug("open %r failed: %s", path, e)
        print(f"IO Error: Could not open '{path}'", file=sys.stderr)
        return False
    return run_program(engine, console, program)


# ---------------------------------------------------------------------------
#  Interactive loop
# ---------------------------------------------------------------------------

class BFVMCLI(cmd.Cmd):
    """Read-execute loop: one line, one program, one shared tape."""

    intro = ("BFVM interactive mode.  Each line is a complete program.\n"
             "Type 'help' for monitor commands, 'quit' to exit.")
    prompt = "bfvm: "

    def __init__(self, engine: Engine, console: Console,
                 stdin=None, stdout=None):
        super().__init__(stdin=stdin, stdout=stdout)
        if stdin is not None:
            self.use_rawinput = False
        self.engine = engine
        self.console = console
        self.tx_count = 0
        console.on_tx = self._count_tx

    def _print(self, text: str = ""):
        self.stdout.write(text + "\n")

    def _parse_int(self, s: str) -> int:
        return int(s.strip(), 0)

    def _count_tx(self, value: int):
        self.tx_count += 1

    # -- Dispatch --

    def parseline(self, line):
        # A monitor command starts with a letter and holds no instruction
        # characters.  Any other line is program text, whatever word it
        # starts with.
        if (line.strip()[:1].isalpha()
                and not any(c in INSTRUCTIONS for c in line)):
            return super().parseline(line)
        return None, None, line

    def default(self, line):
        """Anything that is not a monitor command is a program."""
        self.stdout.flush()
        run_program(self.engine, self.console, line)

    def emptyline(self):
        """Don't repeat the last line on empty input."""
        pass

    # ================================================================
    #  Commands
    # ================================================================

    def do_send(self, arg):
        """Queue input for ',': send <text|byte> ...
        Numbers (10, 0x2c) are single bytes; other words are sent as text,
        separated by spaces.  Instruction characters cannot appear on a
        command line, so give them as numbers (44 is ',')."""
        try:
            words = shlex.split(arg)
        except ValueError:
            words = []
        if not words:
            self._print("Usage: send <text|byte> ...")
            return
        data = bytearray()
        text = []
        for word in words:
            try:
                value = self._parse_int(word)
            except ValueError:
                text.append(word)
                continue
            if not 0 <= value <= 0xFF:
                self._print(f"  Byte out of range: {word}")
                return
            if text:
                data += " ".join(text).encode("utf-8")
                text = []
            data.append(value)
        if text:
            data += " ".join(text).encode("utf-8")
        self.console.inject_input(bytes(data))
        self._print(f"  Queued {len(data)} input bytes.")

    def do_tape(self, arg):
        """Hex dump of cells around the cursor: tape [count]
        Count defaults to 32; the cursor cell is bracketed."""
        try:
            count = self._parse_int(arg) if arg.strip() else 32
        except ValueError:
            self._print("Usage: tape [count]")
            return
        count = max(count, 1)
        tape = self.engine.tape
        start = tape.position - count // 2
        data = tape.window(start, count)
        for row in range(0, count, 16):
            cells = []
            for i, b in enumerate(data[row:row + 16]):
                pos = start + row + i
                cells.append(f"[{b:02x}]" if pos == tape.position else f" {b:02x} ")
            self._print(f"  {start + row:+8d}: {''.join(cells)}")

    def do_cell(self, arg):
        """Show the cursor: absolute cell, chunk, offset and value."""
        tape = self.engine.tape
        v = tape.read()
        ch = chr(v) if 0x20 <= v < 0x7F else '.'
        self._print(f"  cell {tape.position:+d}  chunk {tape.index:+d} "
                    f"offset {tape.offset}  value {v} ({v:#04x} '{ch}')")

    def do_stats(self, arg):
        """Show instruction count, tape size and console traffic."""
        e = self.engine
        low, high = e.tape.extent
        self._print(f"  {e.steps} instructions in {e.invocations} programs")
        self._print(f"  {e.tape.chunk_count} chunks of {e.tape.chunk_len} bytes, "
                    f"cells {low:+d} .. {high:+d}")
        self._print(f"  {self.tx_count} bytes output")
        if self.console.has_rx_data:
            self._print(f"  {len(self.console.rx_buffer)} input bytes queued")

    def do_reset(self, arg):
        """Discard the tape and start again with an empty one."""
        self.engine.reset()
        self._print("  Tape reset.")

    def do_quit(self, arg):
        """Exit the interpreter."""
        return True
    do_exit = do_quit
    do_q = do_quit

    def do_EOF(self, arg):
        self._print()
        return self.do_quit(arg)


# ---------------------------------------------------------------------------
#  Main
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="BFVM interpreter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py                       # interactive\n"
               "  python cli.py hello.b               # run file, then interactive\n"
               "  python cli.py hello.b --batch       # run file and exit\n"
               "  python cli.py -e '++++++++[>++++++++<-]>+.' --batch\n"
    )
    parser.add_argument("program", nargs="?", default=None,
                        help="Program file to run before the interactive loop")
    parser.add_argument("-e", "--execute", action="append", default=[],
                        metavar="CODE",
                        help="Run CODE as its own program (can repeat)")
    parser.add_argument("--batch", action="store_true",
                        help="Exit after running PROGRAM/-e instead of "
                             "starting the interactive loop")
    parser.add_argument("--eof", choices=sorted(EOF_CHOICES), default="255",
                        help="Value ',' stores at end of input "
                             "(default: 255; 'keep' leaves the cell alone)")
    parser.add_argument("--chunk-size", type=int, default=CHUNK_LEN,
                        metavar="N",
                        help=f"Tape chunk size in bytes (default: {CHUNK_LEN})")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging on stderr")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.chunk_size < 1:
        parser.error("--chunk-size must be at least 1")

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr,
                            format="[%(name)s] %(message)s")

    # Input bytes that are not UTF-8 must still reach ',' as themselves.
    if hasattr(sys.stdin, "reconfigure"):
        sys.stdin.reconfigure(errors="surrogateescape")
    console = Console(sys.stdin, sys.stdout.buffer)
    engine = Engine(chunk_len=args.chunk_size,
                    on_output=console.write8,
                    on_input=console.read8,
                    eof=EOF_CHOICES[args.eof])

    try:
        if args.program:
            run_file(engine, console, args.program)
        for code in args.execute:
            run_program(engine, console, code)

        if args.batch:
            return 0

        cli = BFVMCLI(engine, console)
        if not sys.stdin.isatty():
            cli.intro = ""
        try:
            cli.cmdloop()
        except KeyboardInterrupt:
            print("\nInterrupted.")
    except AllocationError as e:
        console.flush()
        print(f"Memory Allocation Error: {e}, exiting", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
