"""Live execution against the local validator.

One request walks ``idle -> validator-ready -> compiled -> deployed ->
accounts-resolved -> invoked -> captured -> done``. The first failing stage
ends the run with a failed ``ExecutionResult``; the workspace is always removed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import threading
from typing import Any, Callable, List, Optional, Sequence, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .accounts import AccountResolver, ExecutionSession, ResolvedAccounts, unique_labels, write_keypair
from .chain import ChainClient
from .compiler import CompileResult, ProgramCompiler
from .config import Settings
from .constants import CUSTOM_TRANSACTION_SCENARIO, PAYER_AIRDROP_LAMPORTS
from .errors import (
    AccountResolutionFailed,
    CompilationFailed,
    ExecutionError,
    MissingBuildArtifact,
    UnknownExecutionError,
    UnsupportedTemplate,
)
from .interface import AccountLayout, ProgramInterface, load_interface, sighash
from .models import AccountSnapshot, ExecutionResult, TransactionSpec
from .prerequisites import prerequisites_for
from .process import ProcessRunner
from .state import StateCapture, annotate_changes, compute_state_diff
from .templates import Template
from .trace import parse_transaction_logs
from .util import snake_case
from .validator import ValidatorSupervisor
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)

Labels = List[Tuple[Pubkey, str]]


@dataclass
class ScenarioInput:
    template: Template
    scenario_name: str
    instruction: str
    args: List[Any] = field(default_factory=list)


@dataclass
class TransactionInput:
    template: Template
    transaction: TransactionSpec


@dataclass
class _Run:
    """State threaded through one execution attempt."""

    template: Template
    scenario: str
    stage: str = "idle"
    session: Optional[ExecutionSession] = None
    chain: Optional[ChainClient] = None
    program_id: Optional[Pubkey] = None
    interface: Optional[ProgramInterface] = None
    state: Optional[StateCapture] = None

    def advance(self, stage: str) -> None:
        logger.info("%s [%s]: %s -> %s", self.template.id, self.scenario, self.stage, stage)
        self.stage = stage


def layouts_from_program_map(template: Template) -> List[AccountLayout]:
    return [
        AccountLayout(decl.name, sighash("account", decl.name), list(decl.fields))
        for decl in template.program_map.accounts
    ]


class LocalValidatorAdapter:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: Optional[ProcessRunner] = None,
        validator: Optional[ValidatorSupervisor] = None,
        compiler: Optional[ProgramCompiler] = None,
        workspaces: Optional[WorkspaceManager] = None,
        chain_factory: Optional[Callable[[str], ChainClient]] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.runner = runner or ProcessRunner()
        self.validator = validator or ValidatorSupervisor(
            rpc_port=self.settings.validator_port,
            runner=self.runner,
            command=self.settings.validator_bin,
            ledger_dir=Path(self.settings.workspace_dir) / "validator-ledger",
        )
        self.compiler = compiler or ProgramCompiler(
            self.settings.build_cache_dir,
            runner=self.runner,
            anchor_bin=self.settings.anchor_bin,
            timeout=self.settings.max_execution_time,
        )
        self.workspaces = workspaces or WorkspaceManager(self.settings.workspace_dir)
        self.chain_factory = chain_factory or ChainClient
        self._chain: Optional[ChainClient] = None
        self._payer: Optional[Keypair] = None
        self._payer_funded = False
        self._lock = threading.Lock()

    def supports(self, template_id: str) -> bool:
        return template_id in self.settings.supported_templates

    # -- entry points -----------------------------------------------------

    def execute_scenario(self, inp: ScenarioInput) -> ExecutionResult:
        def run(ctx: _Run) -> Tuple[List[AccountSnapshot], Labels]:
            resolver = AccountResolver(ctx.session)
            resolved = self._resolve(resolver, ctx, inp.instruction)
            ctx.advance("accounts-resolved")
            before = ctx.state.capture_multiple_accounts(resolved.labels)

            for prereq in prerequisites_for(ctx.template.id, inp.instruction):
                logger.debug("Bootstrapping %s with %s%s", inp.instruction, prereq.instruction, prereq.args)
                setup = self._resolve(resolver, ctx, prereq.instruction)
                self._invoke(ctx, prereq.instruction, list(prereq.args), setup, record=False)

            resolved = self._resolve(resolver, ctx, inp.instruction)
            self._invoke(ctx, inp.instruction, inp.args, resolved, record=True)
            ctx.advance("invoked")
            return before, resolved.labels

        return self._execute_common(inp.template, inp.scenario_name, run)

    def execute_transaction(self, inp: TransactionInput) -> ExecutionResult:
        def run(ctx: _Run) -> Tuple[List[AccountSnapshot], Labels]:
            resolver = AccountResolver(ctx.session)
            groups: List[ResolvedAccounts] = []
            for instruction in inp.transaction.instructions:
                if instruction.program_id and instruction.program_id != str(ctx.program_id):
                    logger.debug(
                        "Ignoring programId %s on %s; using deployed %s",
                        instruction.program_id,
                        instruction.instruction_name,
                        ctx.program_id,
                    )
                groups.append(
                    resolver.resolve_transaction_accounts(
                        ctx.template,
                        instruction,
                        ctx.program_id,
                        ctx.interface.instruction(instruction.instruction_name),
                    )
                )
            labels = unique_labels(groups)
            ctx.advance("accounts-resolved")
            before = ctx.state.capture_multiple_accounts(labels)

            for instruction, resolved in zip(inp.transaction.instructions, groups):
                self._invoke(ctx, instruction.instruction_name, instruction.args, resolved, record=True)
            ctx.advance("invoked")
            return before, labels

        return self._execute_common(inp.template, CUSTOM_TRANSACTION_SCENARIO, run)

    def close(self) -> None:
        self.validator.stop()

    # -- pipeline ---------------------------------------------------------

    def _execute_common(
        self,
        template: Template,
        scenario: str,
        run: Callable[[_Run], Tuple[List[AccountSnapshot], Labels]],
    ) -> ExecutionResult:
        if not self.supports(template.id):
            return self._fail(
                scenario,
                UnsupportedTemplate(f"Live execution is not yet supported for \"{template.id}\"."),
            )

        ctx = _Run(template=template, scenario=scenario)
        workspace: Optional[Path] = None
        try:
            ctx.chain = self._ensure_validator()
            payer = self._get_payer(ctx.chain)
            ctx.session = ExecutionSession(payer=payer)
            ctx.advance("validator-ready")

            workspace = self.workspaces.create(template.id)
            compiled = self.compiler.compile(template.id, template.code, workspace)
            self._check_compiled(compiled)
            ctx.program_id = Pubkey.from_string(compiled.program_id)
            ctx.interface = self._load_interface(template, compiled.idl_path)
            ctx.advance("compiled")

            payer_path = write_keypair(payer, workspace / "keys" / "payer.json")
            self._deploy(compiled, payer_path)
            ctx.state = StateCapture(ctx.chain, ctx.interface, ctx.program_id)
            ctx.advance("deployed")

            before, labels = run(ctx)

            after = ctx.state.capture_multiple_accounts(labels)
            diff = compute_state_diff(before, after)
            accounts_after = annotate_changes(after, diff)
            ctx.advance("captured")

            logs = list(ctx.session.logs)
            result = ExecutionResult(
                success=True,
                scenario=scenario,
                accounts_before=before,
                accounts_after=accounts_after,
                logs=logs,
                compute_units=ctx.session.compute_units,
                trace=parse_transaction_logs(logs),
            )
            ctx.advance("done")
            return result
        except ExecutionError as exc:
            logger.warning("%s failed at stage %s: %s", template.id, ctx.stage, exc.message)
            return self._fail(scenario, exc)
        except Exception as exc:
            logger.exception("%s failed at stage %s", template.id, ctx.stage)
            return self._fail(scenario, UnknownExecutionError(str(exc) or exc.__class__.__name__))
        finally:
            if workspace is not None:
                self.workspaces.cleanup(workspace)

    def _ensure_validator(self) -> ChainClient:
        with self._lock:
            if self.validator.ensure_running() or self._chain is None:
                self._chain = self.chain_factory(self.validator.get_endpoint())
                self._payer_funded = False
            return self._chain

    def _get_payer(self, chain: ChainClient) -> Keypair:
        with self._lock:
            if self._payer is None:
                self._payer = Keypair()
            if not self._payer_funded:
                chain.airdrop(self._payer.pubkey(), PAYER_AIRDROP_LAMPORTS)
                self._payer_funded = True
            return self._payer

    @staticmethod
    def _check_compiled(compiled: CompileResult) -> None:
        if compiled.success:
            return
        if compiled.reason == MissingBuildArtifact.reason:
            if not compiled.program_keypair_path:
                raise MissingBuildArtifact("Program keypair not found after build.")
            if not compiled.idl_path:
                raise MissingBuildArtifact("IDL not found after compilation.")
            raise MissingBuildArtifact(compiled.error or "Build artifact missing.")
        raise CompilationFailed(f"Compilation failed: {compiled.error}")

    @staticmethod
    def _load_interface(template: Template, idl_path: Optional[str]) -> ProgramInterface:
        if not idl_path:
            raise MissingBuildArtifact("IDL not found after compilation.")
        try:
            interface = load_interface(idl_path)
        except (OSError, ValueError) as exc:
            raise MissingBuildArtifact(f"IDL could not be read: {exc}") from exc
        interface.add_layouts(layouts_from_program_map(template))
        return interface

    def _deploy(self, compiled: CompileResult, payer_path: Path) -> None:
        cmd = [
            self.settings.solana_bin,
            "program",
            "deploy",
            compiled.program_path,
            "--program-id",
            compiled.program_keypair_path,
            "--keypair",
            str(payer_path),
            "--url",
            self.validator.get_endpoint(),
        ]
        try:
            proc = self.runner.run(cmd, timeout=self.settings.max_execution_time)
        except OSError as exc:
            raise UnknownExecutionError(f"{self.settings.solana_bin}: {exc}") from exc
        if not proc.ok:
            raise UnknownExecutionError(
                f"Program deploy failed: {proc.error_text(f'exit code {proc.returncode}')}"
            )
        logger.info("Deployed %s", compiled.program_id)

    @staticmethod
    def _resolve(resolver: AccountResolver, ctx: _Run, instruction: str) -> ResolvedAccounts:
        return resolver.resolve_accounts(
            ctx.template,
            instruction,
            ctx.program_id,
            ctx.interface.instruction(instruction),
        )

    def _invoke(
        self,
        ctx: _Run,
        name: str,
        args: Sequence[Any],
        resolved: ResolvedAccounts,
        record: bool,
    ) -> None:
        ix_interface = ctx.interface.instruction(name)
        try:
            data = ix_interface.encode_args(list(args))
        except ValueError as exc:
            raise UnknownExecutionError(f"Invalid arguments for \"{name}\": {exc}") from exc

        metas: List[AccountMeta] = []
        for role in ix_interface.accounts:
            address = resolved.accounts.get(snake_case(role.name))
            if address is None:
                raise AccountResolutionFailed(
                    f"Account \"{role.name}\" required by \"{name}\" was not provided."
                )
            metas.append(AccountMeta(address, role.is_signer, role.is_mut))

        payer = ctx.session.payer
        required = {meta.pubkey for meta in metas if meta.is_signer}
        signers = [kp for kp in resolved.signers if kp.pubkey() == payer.pubkey() or kp.pubkey() in required]
        missing = required - {kp.pubkey() for kp in signers}
        if missing:
            raise AccountResolutionFailed(
                f"No keypair available to sign \"{name}\" for: {', '.join(sorted(str(k) for k in missing))}"
            )

        instruction = Instruction(ctx.program_id, data, metas)
        signature = ctx.chain.send_instruction(instruction, payer, signers)
        logs, compute_units = ctx.chain.transaction_logs(signature)
        logger.debug("%s landed as %s (%s CU)", name, signature, compute_units)
        if record:
            ctx.session.record(logs, compute_units)

    @staticmethod
    def _fail(scenario: str, exc: ExecutionError) -> ExecutionResult:
        result = ExecutionResult.failure(scenario, exc.message)
        if exc.logs:
            result.logs = list(exc.logs)
            result.trace = parse_transaction_logs(exc.logs)
        return result
