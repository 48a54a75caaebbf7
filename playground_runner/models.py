"""Request and result types exchanged over the /execute boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import RequestValidationError

MODE_SCENARIO = "scenario"
MODE_TRANSACTION = "transaction"


@dataclass
class AccountSnapshot:
    address: str
    label: str
    owner: str
    lamports: int
    data_size: int
    data: Optional[Dict[str, Any]] = None
    changes: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "address": self.address,
            "label": self.label,
            "owner": self.owner,
            "lamports": self.lamports,
            "dataSize": self.data_size,
        }
        if self.data is not None:
            out["data"] = self.data
        if self.changes is not None:
            out["changes"] = list(self.changes)
        return out

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AccountSnapshot":
        changes = raw.get("changes")
        data = raw.get("data")
        return cls(
            address=str(raw.get("address", "")),
            label=str(raw.get("label", "")),
            owner=str(raw.get("owner", "")),
            lamports=int(raw.get("lamports") or 0),
            data_size=int(raw.get("dataSize") or 0),
            data=data if isinstance(data, dict) else None,
            changes=[str(c) for c in changes] if isinstance(changes, list) else None,
        )


@dataclass
class StateDiffEntry:
    address: str
    changes: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "changes": list(self.changes)}


@dataclass
class TraceEntry:
    program: str
    depth: int
    status: str = "invoke"
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"program": self.program, "depth": self.depth, "status": self.status, "logs": list(self.logs)}


@dataclass
class ExecutionResult:
    success: bool
    scenario: str
    accounts_before: List[AccountSnapshot] = field(default_factory=list)
    accounts_after: List[AccountSnapshot] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)
    compute_units: int = 0
    trace: List[TraceEntry] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def failure(cls, scenario: str, message: str) -> "ExecutionResult":
        return cls(success=False, scenario=scenario, error=message)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "scenario": self.scenario,
            "accountsBefore": [acc.to_dict() for acc in self.accounts_before],
            "accountsAfter": [acc.to_dict() for acc in self.accounts_after],
            "logs": list(self.logs),
            "computeUnits": self.compute_units,
            "trace": [entry.to_dict() for entry in self.trace],
        }
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class TransactionAccount:
    pubkey: str  # caller-chosen label, e.g. "account-0"
    name: str  # account name declared by the instruction
    is_signer: bool = False
    is_writable: bool = False


@dataclass
class TransactionInstruction:
    instruction_name: str
    accounts: List[TransactionAccount] = field(default_factory=list)
    args: List[Any] = field(default_factory=list)
    program_id: Optional[str] = None


@dataclass
class TransactionSpec:
    instructions: List[TransactionInstruction]


@dataclass
class ExecutionRequest:
    template_id: str
    type: str = MODE_SCENARIO
    scenario: Optional[str] = None
    instruction: Optional[str] = None
    args: Optional[List[Any]] = None
    transaction: Optional[TransactionSpec] = None


def _parse_transaction(raw: Any, problems: List[str]) -> Optional[TransactionSpec]:
    if not isinstance(raw, dict):
        problems.append("transaction must be an object")
        return None
    raw_instructions = raw.get("instructions")
    if not isinstance(raw_instructions, list) or not raw_instructions:
        problems.append("transaction.instructions must be a non-empty list")
        return None
    instructions: List[TransactionInstruction] = []
    for idx, item in enumerate(raw_instructions):
        where = f"transaction.instructions[{idx}]"
        if not isinstance(item, dict):
            problems.append(f"{where} must be an object")
            continue
        name = item.get("instructionName")
        if not isinstance(name, str) or not name:
            problems.append(f"{where}.instructionName must be a non-empty string")
            continue
        args = item.get("args")
        if args is not None and not isinstance(args, list):
            problems.append(f"{where}.args must be a list")
            continue
        accounts: List[TransactionAccount] = []
        raw_accounts = item.get("accounts") or []
        if not isinstance(raw_accounts, list):
            problems.append(f"{where}.accounts must be a list")
            continue
        for acc_idx, acc in enumerate(raw_accounts):
            if (
                not isinstance(acc, dict)
                or not isinstance(acc.get("pubkey"), str)
                or not isinstance(acc.get("name"), str)
            ):
                problems.append(f"{where}.accounts[{acc_idx}] needs string pubkey and name")
                continue
            accounts.append(
                TransactionAccount(
                    pubkey=acc["pubkey"],
                    name=acc["name"],
                    is_signer=bool(acc.get("isSigner", False)),
                    is_writable=bool(acc.get("isWritable", False)),
                )
            )
        program_id = item.get("programId")
        instructions.append(
            TransactionInstruction(
                instruction_name=name,
                accounts=accounts,
                args=list(args or []),
                program_id=program_id if isinstance(program_id, str) else None,
            )
        )
    return TransactionSpec(instructions=instructions)


def parse_request(body: Any) -> ExecutionRequest:
    """Validate a decoded JSON body; raises RequestValidationError listing every problem."""

    problems: List[str] = []
    if not isinstance(body, dict):
        raise RequestValidationError(["request body must be a JSON object"])

    template_id = body.get("templateId")
    if not isinstance(template_id, str) or not template_id:
        problems.append("templateId must be a non-empty string")

    mode = body.get("type", MODE_SCENARIO)
    if mode not in (MODE_SCENARIO, MODE_TRANSACTION):
        problems.append("type must be 'scenario' or 'transaction'")

    args = body.get("args")
    if args is not None and not isinstance(args, list):
        problems.append("args must be a list")

    for key in ("scenario", "instruction"):
        if body.get(key) is not None and not isinstance(body.get(key), str):
            problems.append(f"{key} must be a string")

    transaction: Optional[TransactionSpec] = None
    if mode == MODE_TRANSACTION:
        transaction = _parse_transaction(body.get("transaction"), problems)
    elif mode == MODE_SCENARIO:
        if body.get("transaction") is not None:
            problems.append("scenario requests must not carry a transaction")
        if not body.get("scenario") and not body.get("instruction"):
            problems.append("scenario requests need a scenario or an instruction")

    if problems:
        raise RequestValidationError(problems)

    return ExecutionRequest(
        template_id=template_id,
        type=mode,
        scenario=body.get("scenario"),
        instruction=body.get("instruction"),
        args=list(args) if isinstance(args, list) else None,
        transaction=transaction,
    )
