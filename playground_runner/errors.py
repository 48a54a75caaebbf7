"""Failure taxonomy for the execution engine.

Every failure the engine knows how to attribute is an ``ExecutionError``
subclass. The adapter converts them into ``ExecutionResult(success=False)``;
only bugs escape as plain exceptions.
"""

from __future__ import annotations

from typing import List, Optional


class ExecutionError(Exception):
    """Base class for failures that become a failed execution result."""

    reason = "unknown_execution_error"

    def __init__(self, message: str, logs: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.logs = list(logs or [])


class TemplateNotFound(ExecutionError):
    reason = "template_not_found"


class UnsupportedTemplate(ExecutionError):
    reason = "unsupported_template"


class CompilationFailed(ExecutionError):
    reason = "compilation_failed"


class MissingBuildArtifact(ExecutionError):
    reason = "missing_build_artifact"


class ValidatorStartupTimeout(ExecutionError):
    reason = "validator_startup_timeout"


class ValidatorUnavailable(ExecutionError):
    reason = "validator_unavailable"


class ValidatorSpawnFailed(ValidatorUnavailable):
    reason = "validator_spawn_failed"


class ValidatorExited(ValidatorUnavailable):
    reason = "validator_exited"


class AccountResolutionFailed(ExecutionError):
    reason = "account_resolution_failed"


class InstructionNotFound(ExecutionError):
    reason = "instruction_not_found"


class ExecutionTimeout(ExecutionError):
    reason = "execution_timeout"


class UnknownExecutionError(ExecutionError):
    reason = "unknown_execution_error"


class RequestValidationError(ValueError):
    """Raised when an execution request body is malformed."""

    def __init__(self, problems: List[str]) -> None:
        super().__init__("; ".join(problems))
        self.problems = problems
