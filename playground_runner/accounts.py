"""Account resolution: program-map names and caller labels to concrete addresses.

Resolution priority for each declared account:

1. the system program account maps to the well-known system address
2. a PDA is derived from its seeds and the program id
3. authority roles (``user``/``authority``/``payer``) resolve to the fee payer
4. a name already resolved in this session reuses the cached address and signer
5. anything else gets a fresh keypair, cached by name and registered as a signer

The fee payer is always the first signer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .constants import (
    ACCOUNT_LABELS,
    AUTHORITY_ROLES,
    PAYER_SEED_TOKENS,
    SYSTEM_PROGRAM_ACCOUNT,
    SYSTEM_PROGRAM_ID,
    SYSTEM_PROGRAM_LABEL,
)
from .errors import AccountResolutionFailed
from .interface import InstructionInterface
from .models import TransactionInstruction
from .templates import AccountDecl, Template
from .util import snake_case

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM = Pubkey.from_string(SYSTEM_PROGRAM_ID)

MAX_SEEDS = 16
MAX_SEED_LEN = 32


def load_keypair(path: str | Path) -> Keypair:
    raw = json.loads(Path(path).expanduser().read_text())
    return Keypair.from_bytes(bytes(raw))


def write_keypair(keypair: Keypair, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(list(bytes(keypair))))
    return path


@dataclass
class ExecutionSession:
    """Mutable per-request caches; a new session starts every top-level execution."""

    payer: Keypair
    accounts: Dict[str, Pubkey] = field(default_factory=dict)
    signers: Dict[str, Keypair] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)
    compute_units: int = 0

    def record(self, logs: Sequence[str], compute_units: int) -> None:
        self.logs.extend(logs)
        self.compute_units += compute_units


@dataclass
class ResolvedAccounts:
    accounts: Dict[str, Pubkey] = field(default_factory=dict)
    signers: List[Keypair] = field(default_factory=list)
    labels: List[Tuple[Pubkey, str]] = field(default_factory=list)

    def add_signer(self, keypair: Keypair) -> None:
        pubkey = keypair.pubkey()
        if all(existing.pubkey() != pubkey for existing in self.signers):
            self.signers.append(keypair)

    def ensure_payer_first(self, payer: Keypair) -> None:
        pubkey = payer.pubkey()
        self.signers = [payer] + [s for s in self.signers if s.pubkey() != pubkey]


def derive_pda(seeds: Sequence[str], payer: Pubkey, program_id: Pubkey) -> Pubkey:
    if not seeds:
        raise AccountResolutionFailed("PDA seeds are required but missing.")
    buffers: List[bytes] = []
    for seed in seeds:
        if seed in PAYER_SEED_TOKENS:
            buffers.append(bytes(payer))
        else:
            buffers.append(seed.encode("utf-8"))
    if len(buffers) >= MAX_SEEDS or any(len(buf) > MAX_SEED_LEN for buf in buffers):
        raise AccountResolutionFailed(
            f"PDA seeds {list(seeds)} exceed {MAX_SEEDS - 1} seeds of {MAX_SEED_LEN} bytes"
        )
    try:
        address, _bump = Pubkey.find_program_address(buffers, program_id)
    except (ValueError, TypeError) as exc:
        raise AccountResolutionFailed(f"Unable to derive PDA from seeds {list(seeds)}: {exc}") from exc
    return address


def _check_declared(name: str, interface: Optional[InstructionInterface]) -> None:
    if interface is None or not interface.accounts:
        return
    if interface.account(name) is None:
        known = ", ".join(role.name for role in interface.accounts)
        raise AccountResolutionFailed(
            f"Account \"{name}\" is not declared by instruction \"{interface.name}\" (expected one of: {known})"
        )


class AccountResolver:
    def __init__(self, session: ExecutionSession) -> None:
        self.session = session

    @property
    def payer(self) -> Keypair:
        return self.session.payer

    def _cached_or_new(self, key: str, resolved: ResolvedAccounts) -> Pubkey:
        cached = self.session.accounts.get(key)
        if cached is not None:
            signer = self.session.signers.get(key)
            if signer is not None:
                resolved.add_signer(signer)
            return cached
        keypair = Keypair()
        self.session.accounts[key] = keypair.pubkey()
        self.session.signers[key] = keypair
        resolved.add_signer(keypair)
        logger.debug("Generated keypair %s for %s", keypair.pubkey(), key)
        return keypair.pubkey()

    def _resolve_one(
        self,
        name: str,
        decl: Optional[AccountDecl],
        program_id: Pubkey,
        resolved: ResolvedAccounts,
    ) -> Tuple[Pubkey, str]:
        payer_pubkey = self.payer.pubkey()
        if name == SYSTEM_PROGRAM_ACCOUNT:
            return SYSTEM_PROGRAM, SYSTEM_PROGRAM_LABEL
        if decl is not None and decl.is_pda:
            return derive_pda(decl.seeds, payer_pubkey, program_id), name
        if name in AUTHORITY_ROLES:
            return payer_pubkey, name
        return self._cached_or_new(name, resolved), ACCOUNT_LABELS.get(name, name)

    def resolve_accounts(
        self,
        template: Template,
        instruction_name: str,
        program_id: Pubkey,
        interface: Optional[InstructionInterface] = None,
    ) -> ResolvedAccounts:
        decl = template.program_map.instruction(instruction_name)
        if decl is None:
            raise AccountResolutionFailed(f"Instruction \"{instruction_name}\" not found in program map.")

        resolved = ResolvedAccounts()
        for account in decl.accounts:
            _check_declared(account.name, interface)
            address, label = self._resolve_one(account.name, account, program_id, resolved)
            resolved.accounts[snake_case(account.name)] = address
            resolved.labels.append((address, label))

        resolved.ensure_payer_first(self.payer)
        return resolved

    def resolve_transaction_accounts(
        self,
        template: Template,
        instruction: TransactionInstruction,
        program_id: Pubkey,
        interface: Optional[InstructionInterface] = None,
    ) -> ResolvedAccounts:
        """Resolve caller labels, keyed by the instruction's declared account names."""

        decl = template.program_map.instruction(instruction.instruction_name)
        resolved = ResolvedAccounts()
        for account in instruction.accounts:
            _check_declared(account.name, interface)
            declared = decl.account(account.name) if decl is not None else None
            label = account.pubkey
            if declared is not None and declared.is_pda:
                address = derive_pda(declared.seeds, self.payer.pubkey(), program_id)
            else:
                address, _ = self._resolve_one(label, None, program_id, resolved)
            resolved.accounts[snake_case(account.name)] = address
            resolved.labels.append((address, label))

        resolved.ensure_payer_first(self.payer)
        return resolved


def unique_labels(groups: Iterable[ResolvedAccounts]) -> List[Tuple[Pubkey, str]]:
    """Merge label lists keyed by address, keeping first-seen order and label.

    One caller label can name different addresses across instructions (a PDA
    role in one, a keypair role in another); each address is kept.
    """

    merged: Dict[Pubkey, str] = {}
    for group in groups:
        for address, label in group.labels:
            merged.setdefault(address, label)
    return list(merged.items())
