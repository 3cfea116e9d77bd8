#!/usr/bin/env python3
"""
Fardriver Utilities - capture files in, frames out.

Turns hex dumps (a file, stdin or a single value) into 16-byte frames
for the replay path of fd_monitor.
"""

from typing import Iterator, List, Optional
import os
import sys

from fardriver.codec import FRAME_LENGTH


def parse_hex(hex_str: str) -> bytes:
    """Parse hex string to bytes, tolerating spaces, colons and a 0x prefix."""
    cleaned = hex_str.strip()
    if cleaned.lower().startswith("0x"):
        cleaned = cleaned[2:]
    return bytes.fromhex(cleaned.replace(' ', '').replace(':', ''))


def parse_frame(hex_str: str) -> bytes:
    """Parse one 16-byte frame from hex. Raises ValueError on error."""
    try:
        frame = parse_hex(hex_str)
    except ValueError as e:
        raise ValueError(f"Invalid frame hex: {e}") from e
    if len(frame) != FRAME_LENGTH:
        raise ValueError(f"Frame must be {FRAME_LENGTH} bytes, got {len(frame)}")
    return frame


def iter_input_lines(input_arg: Optional[str] = None,
                     stdin: bool = True,
                     skip_empty: bool = True,
                     skip_comments: bool = True) -> Iterator[str]:
    """
    Unified input iterator: a file, "-" for stdin, or a direct value.

    Lines are stripped; trailing "# ..." comments are removed when
    skip_comments is set.
    """
    def clean(line: str) -> Optional[str]:
        line = line.strip()
        if skip_comments:
            line = line.split('#', 1)[0].strip()
        if skip_empty and not line:
            return None
        return line

    def iter_stream(stream) -> Iterator[str]:
        for line in stream:
            line = clean(line)
            if line is not None:
                yield line

    if input_arg and input_arg != "-":
        if os.path.isfile(input_arg):
            with open(input_arg, 'r') as f:
                yield from iter_stream(f)
        else:
            line = clean(input_arg)
            if line is not None:
                yield line
        return

    if stdin and (input_arg == "-" or not sys.stdin.isatty()):
        yield from iter_stream(sys.stdin)
        return

    raise ValueError("No input provided")


def read_frames(input_arg: Optional[str] = None) -> List[bytes]:
    """Read hex frames, one per line; lines that are not a 16-byte frame are skipped."""
    frames = []
    for line in iter_input_lines(input_arg):
        try:
            frames.append(parse_frame(line))
        except ValueError as e:
            print(f"WARNING: skipping line '{line}': {e}", file=sys.stderr)
    return frames
