"""Composition root: template lookup, mode dispatch and the wall-clock bound."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
import logging
from typing import Optional

from .adapter import LocalValidatorAdapter, ScenarioInput, TransactionInput
from .config import Settings
from .constants import CUSTOM_TRANSACTION_SCENARIO
from .errors import ExecutionTimeout, TemplateNotFound
from .models import MODE_TRANSACTION, AccountSnapshot, ExecutionRequest, ExecutionResult
from .templates import Scenario, TemplateLoader
from .trace import parse_transaction_logs

logger = logging.getLogger(__name__)


def _request_label(request: ExecutionRequest) -> str:
    if request.type == MODE_TRANSACTION:
        return CUSTOM_TRANSACTION_SCENARIO
    return request.scenario or request.instruction or ""


def precomputed_result(scenario: Scenario) -> ExecutionResult:
    """Replay a scenario's stored snapshots as a successful result."""

    return ExecutionResult(
        success=True,
        scenario=scenario.name,
        accounts_before=[AccountSnapshot.from_dict(raw) for raw in scenario.accounts_before],
        accounts_after=[AccountSnapshot.from_dict(raw) for raw in scenario.accounts_after],
        logs=list(scenario.logs),
        compute_units=scenario.compute_units,
        trace=parse_transaction_logs(scenario.logs),
    )


class ExecutionEngine:
    def __init__(
        self,
        loader: TemplateLoader,
        adapter: Optional[LocalValidatorAdapter] = None,
        settings: Optional[Settings] = None,
        max_workers: int = 4,
    ) -> None:
        self.settings = settings or Settings()
        self.loader = loader
        self.adapter = adapter or LocalValidatorAdapter(self.settings)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="execution")

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        label = _request_label(request)
        try:
            template = self.loader.load(request.template_id)
        except TemplateNotFound as exc:
            return ExecutionResult.failure(label, exc.message)
        except ValueError as exc:
            return ExecutionResult.failure(label, f"Template \"{request.template_id}\" could not be loaded: {exc}")

        if request.type == MODE_TRANSACTION:
            return self.adapter.execute_transaction(TransactionInput(template, request.transaction))

        scenario = template.find_scenario(request.scenario, request.instruction)
        if scenario is None:
            return ExecutionResult.failure(
                label,
                f"Scenario \"{label}\" not found for template \"{request.template_id}\"",
            )

        if self.settings.precomputed_fallback and not self.adapter.supports(template.id):
            logger.info("Serving precomputed %s for %s", scenario.name, template.id)
            return precomputed_result(scenario)

        if scenario.args is not None:
            args = list(scenario.args)
        elif request.args is not None:
            args = list(request.args)
        else:
            args = []
        return self.adapter.execute_scenario(
            ScenarioInput(template, scenario.name, scenario.instruction, args)
        )

    def execute_with_timeout(self, request: ExecutionRequest) -> ExecutionResult:
        """Race ``execute`` against ``max_execution_time``.

        A timed-out run that already started keeps going on its worker thread;
        its own ``finally`` removes the workspace. One still queued is cancelled.
        """

        future = self._executor.submit(self.execute, request)
        try:
            return future.result(timeout=self.settings.max_execution_time)
        except FutureTimeout:
            if future.cancel():
                logger.debug("%s: dropped queued request", request.template_id)
            error = ExecutionTimeout(f"Execution timed out after {self.settings.max_execution_time_ms}ms")
            logger.warning("%s: %s", request.template_id, error.message)
            return ExecutionResult.failure(_request_label(request), error.message)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.adapter.close()
