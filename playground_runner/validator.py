"""Lifecycle of the local ``solana-test-validator`` process."""

from __future__ import annotations

import logging
from pathlib import Path
import threading
import time
from typing import List, Optional, Sequence

from .constants import (
    DEFAULT_VALIDATOR_PORT,
    VALIDATOR_READY_MARKERS,
    VALIDATOR_SETTLE_DELAY,
    VALIDATOR_STARTUP_TIMEOUT,
    VALIDATOR_STOP_GRACE,
)
from .errors import ValidatorExited, ValidatorSpawnFailed, ValidatorStartupTimeout
from .process import ManagedProcess, ProcessRunner

logger = logging.getLogger(__name__)


class ValidatorSupervisor:
    """Owns at most one validator process.

    ``ensure_running`` is serialized by a lock, so concurrent first calls start
    a single process. Failures are raised once and never retried here.
    """

    def __init__(
        self,
        rpc_port: int = DEFAULT_VALIDATOR_PORT,
        runner: Optional[ProcessRunner] = None,
        command: str = "solana-test-validator",
        ledger_dir: Optional[str | Path] = None,
        startup_timeout: float = VALIDATOR_STARTUP_TIMEOUT,
        grace: float = VALIDATOR_STOP_GRACE,
        settle_delay: float = VALIDATOR_SETTLE_DELAY,
        markers: Sequence[str] = VALIDATOR_READY_MARKERS,
    ) -> None:
        self.rpc_port = rpc_port
        self.runner = runner or ProcessRunner()
        self.command = command
        self.ledger_dir = Path(ledger_dir) if ledger_dir else None
        self.startup_timeout = startup_timeout
        self.grace = grace
        self.settle_delay = settle_delay
        self.markers = tuple(markers)
        self._process: Optional[ManagedProcess] = None
        self._lock = threading.RLock()

    @property
    def endpoint(self) -> str:
        return f"http://127.0.0.1:{self.rpc_port}"

    def get_endpoint(self) -> str:
        return self.endpoint

    def _command(self) -> List[str]:
        cmd = [self.command, "--reset", "--rpc-port", str(self.rpc_port)]
        if self.ledger_dir is not None:
            cmd.extend(["--ledger", str(self.ledger_dir)])
        return cmd

    def is_running(self) -> bool:
        proc = self._process
        return proc is not None and proc.is_alive()

    def ensure_running(self) -> bool:
        """Start the validator unless it is alive; True when a new process was started."""

        with self._lock:
            if self.is_running():
                return False
            self.start()
            if self.settle_delay > 0:
                time.sleep(self.settle_delay)
            return True

    def start(self) -> None:
        with self._lock:
            if self.is_running():
                return
            if self.ledger_dir is not None:
                self.ledger_dir.mkdir(parents=True, exist_ok=True)
            try:
                proc = self.runner.spawn(self._command())
            except OSError as exc:
                raise ValidatorSpawnFailed(f"Failed to start validator: {exc}") from exc

            if proc.wait_for_output(self.markers, self.startup_timeout):
                self._process = proc
                logger.info("Validator ready on port %s (pid %s)", self.rpc_port, proc.pid)
                return

            code = proc.returncode
            if code is not None:
                tail = "\n".join(proc.output_lines[-5:])
                message = f"Validator exited with code {code} before becoming ready"
                raise ValidatorExited(f"{message}: {tail}" if tail else message)

            proc.terminate(self.grace)
            raise ValidatorStartupTimeout(
                f"Validator startup timeout after {self.startup_timeout:g}s"
            )

    def stop(self) -> None:
        with self._lock:
            proc, self._process = self._process, None
            if proc is None:
                return
            code = proc.terminate(self.grace)
            logger.info("Validator stopped (pid %s, code %s)", proc.pid, code)

    def reset(self) -> None:
        with self._lock:
            self.stop()
            self.start()
