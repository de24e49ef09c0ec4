"""Compressed trace files and the context-switch schedule read at start-up."""

from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

_SEPARATORS = re.compile(r"[ /,.\-]+")

_DECOMPRESSORS = {
    "g": ("gunzip", "-c"),
    "x": ("xz", "-dc"),
}


class UnsupportedTraceError(ValueError):
    """Raised for a trace whose compression cannot be recognised."""


@dataclass(frozen=True)
class ContextSwitch:
    """One scheduled swap of the traces running on two cores."""

    index: int
    cycle: int
    swap_cpu: Tuple[int, int]

    def involves(self, cpu: int) -> bool:
        """Whether this switch touches the given core."""
        return cpu in self.swap_cpu


def decompress_command(path) -> List[str]:
    """Return the command that writes the decompressed trace to stdout."""
    text = os.fspath(path)
    dot = text.rfind(".")
    if dot == -1:
        raise UnsupportedTraceError(f"trace has no extension: {text}")
    suffix = text[dot + 1 : dot + 2]
    tool = _DECOMPRESSORS.get(suffix)
    if tool is None:
        raise UnsupportedTraceError(
            "traces other than gz or xz compression are not supported: " + text
        )
    return [*tool, text]


def trace_seed(path) -> int:
    """Seed derived from the application name: the third token from the end."""
    tokens = [token for token in _SEPARATORS.split(os.fspath(path)) if token]
    if len(tokens) < 3:
        raise ValueError(f"cannot derive an application name from {os.fspath(path)!r}")
    return sum(tokens[-3].encode())


def open_trace(path) -> subprocess.Popen:
    """Start decompressing a trace; its records are read from the process's stdout."""
    if not Path(path).is_file():
        raise FileNotFoundError(f"trace file does not exist: {os.fspath(path)}")
    command = decompress_command(path)
    return subprocess.Popen(command, stdout=subprocess.PIPE)


def read_context_switches(path) -> List[ContextSwitch]:
    """Parse a schedule of 'cycle cpu_a cpu_b' triples separated by whitespace."""
    file_path = Path(path)
    if not file_path.is_file():
        raise FileNotFoundError(f"context switch file does not exist: {os.fspath(path)}")
    tokens = file_path.read_text().split()
    if len(tokens) % 3:
        raise ValueError("context switch file ends with an incomplete record")
    try:
        values = [int(token) for token in tokens]
    except ValueError as exc:
        raise ValueError(f"malformed context switch file: {exc}") from None
    triples = zip(values[0::3], values[1::3], values[2::3])
    return [
        ContextSwitch(index=index, cycle=cycle, swap_cpu=(cpu_a, cpu_b))
        for index, (cycle, cpu_a, cpu_b) in enumerate(triples)
    ]