"""Subprocess wrappers used for the build toolchain, deploys and the validator.

``ProcessRunner`` is the only place the runner touches ``subprocess``; the
engine, compiler and validator supervisor take a runner so tests can swap in a
fake without any real binary on the path.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import logging
import os
import signal
import subprocess
import threading
import time
from typing import Deque, Iterable, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

_OUTPUT_HISTORY = 2000


@dataclass
class ProcessResult:
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        parts = [part.strip() for part in (self.stdout, self.stderr) if part and part.strip()]
        return "\n".join(parts)

    def error_text(self, fallback: str) -> str:
        return self.stderr.strip() or self.stdout.strip() or fallback


def _merged_env(env: Optional[Mapping[str, str]]) -> dict[str, str]:
    merged = os.environ.copy()
    if env:
        merged.update(env)
    return merged


class ManagedProcess:
    """A long-lived child process whose output is drained on background threads."""

    def __init__(self, proc: subprocess.Popen) -> None:
        self._proc = proc
        self._lines: Deque[str] = deque(maxlen=_OUTPUT_HISTORY)
        self._cond = threading.Condition()
        self._readers = [
            threading.Thread(target=self._drain, args=(proc.stdout, False), daemon=True),
            threading.Thread(target=self._drain, args=(proc.stderr, True), daemon=True),
        ]
        for reader in self._readers:
            reader.start()

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.poll()

    @property
    def output_lines(self) -> List[str]:
        with self._cond:
            return list(self._lines)

    def _drain(self, stream, is_stderr: bool) -> None:
        if stream is None:
            return
        for raw in iter(stream.readline, ""):
            line = raw.rstrip("\n")
            if is_stderr:
                lowered = line.lower()
                if line and "warn" not in lowered:
                    logger.warning("pid %s stderr: %s", self._proc.pid, line)
                continue
            with self._cond:
                self._lines.append(line)
                self._cond.notify_all()
        stream.close()
        with self._cond:
            self._cond.notify_all()

    def wait_for_output(self, markers: Iterable[str], timeout: float) -> bool:
        """Block until a stdout line contains one of ``markers``.

        Returns False when ``timeout`` elapses or the process exits first.
        """

        wanted = [marker.lower() for marker in markers]
        deadline = time.monotonic() + timeout
        seen = 0
        with self._cond:
            while True:
                lines = list(self._lines)
                for line in lines[seen:]:
                    lowered = line.lower()
                    if any(marker in lowered for marker in wanted):
                        return True
                seen = len(lines)
                if self._proc.poll() is not None:
                    return False
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(min(remaining, 0.25))

    def is_alive(self) -> bool:
        if self._proc.poll() is not None:
            return False
        try:
            os.kill(self._proc.pid, 0)
        except OSError:
            return False
        return True

    def terminate(self, grace: float) -> Optional[int]:
        if self._proc.poll() is None:
            self._proc.send_signal(signal.SIGTERM)
            try:
                self._proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                logger.warning("pid %s ignored SIGTERM; killing", self._proc.pid)
                self._proc.kill()
                self._proc.wait()
        return self._proc.returncode


class ProcessRunner:
    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ProcessResult:
        args = [str(part) for part in cmd]
        logger.debug("Running: %s (cwd=%s)", " ".join(args), cwd or ".")
        try:
            proc = subprocess.run(
                args,
                cwd=cwd,
                env=_merged_env(env),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            stdout = exc.stdout.decode() if isinstance(exc.stdout, bytes) else (exc.stdout or "")
            return ProcessResult(
                args=args,
                returncode=-9,
                stdout=stdout,
                stderr=f"{args[0]} timed out after {timeout}s",
            )
        return ProcessResult(
            args=args,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )

    def spawn(
        self,
        cmd: Sequence[str],
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> ManagedProcess:
        args = [str(part) for part in cmd]
        logger.debug("Spawning: %s", " ".join(args))
        proc = subprocess.Popen(
            args,
            cwd=cwd,
            env=_merged_env(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
        )
        return ManagedProcess(proc)
