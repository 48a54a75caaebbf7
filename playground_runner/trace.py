"""Reconstruct a call trace from program log lines."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

from .models import TraceEntry

INVOKE_RE = re.compile(r"^Program ([A-Za-z0-9]+) invoke \[(\d*)\]")
SUCCESS_RE = re.compile(r"^Program ([A-Za-z0-9]+) success")
FAILED_RE = re.compile(r"^Program ([A-Za-z0-9]+) failed")


def _close_frame(stack: List[TraceEntry], program: str, status: str) -> None:
    match: Optional[TraceEntry] = None
    for entry in reversed(stack):
        if entry.program == program:
            match = entry
            break
    if match is not None:
        match.status = status
    if stack:
        stack.pop()


def parse_transaction_logs(lines: Iterable[str]) -> List[TraceEntry]:
    """Single pass over ``lines``; frames are emitted in invocation order."""

    stack: List[TraceEntry] = []
    output: List[TraceEntry] = []

    for line in lines:
        invoke = INVOKE_RE.match(line)
        if invoke:
            raw_depth = invoke.group(2)
            depth = int(raw_depth) if raw_depth else 0
            entry = TraceEntry(program=invoke.group(1), depth=depth or len(stack) + 1)
            stack.append(entry)
            output.append(entry)
            continue

        success = SUCCESS_RE.match(line)
        if success:
            _close_frame(stack, success.group(1), "success")
            continue

        failed = FAILED_RE.match(line)
        if failed:
            _close_frame(stack, failed.group(1), "failed")
            continue

        if stack:
            stack[-1].logs.append(line)

    return output
