"""Account snapshots and before/after diffs."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from solders.pubkey import Pubkey

from .constants import SYSTEM_PROGRAM_ID
from .interface import ProgramInterface
from .models import AccountSnapshot, StateDiffEntry

logger = logging.getLogger(__name__)


class StateCapture:
    def __init__(
        self,
        chain,
        interface: Optional[ProgramInterface] = None,
        program_id: Optional[Pubkey] = None,
    ) -> None:
        self.chain = chain
        self.interface = interface
        self.program_id = program_id

    def _decode(self, owner: Pubkey, data: bytes) -> Optional[Dict]:
        if self.interface is None or self.program_id is None or owner != self.program_id:
            return None
        return self.interface.decode_account(data)

    def capture_account_state(self, address: Pubkey, label: str) -> AccountSnapshot:
        try:
            info = self.chain.get_account(address)
        except Exception:
            logger.error("Failed to capture state for %s", address)
            raise

        if info is None:
            return AccountSnapshot(
                address=str(address),
                label=label,
                owner=SYSTEM_PROGRAM_ID,
                lamports=0,
                data_size=0,
            )

        data = bytes(info.data)
        return AccountSnapshot(
            address=str(address),
            label=label,
            owner=str(info.owner),
            lamports=int(info.lamports),
            data_size=len(data),
            data=self._decode(info.owner, data),
        )

    def capture_multiple_accounts(self, accounts: Sequence[tuple]) -> List[AccountSnapshot]:
        """Snapshot ``(address, label)`` pairs, preserving order."""

        return [self.capture_account_state(address, label) for address, label in accounts]


def compute_state_diff(
    before: Sequence[AccountSnapshot],
    after: Sequence[AccountSnapshot],
) -> List[StateDiffEntry]:
    previous = {}
    for snapshot in before:
        previous.setdefault(snapshot.address, snapshot)

    diff: List[StateDiffEntry] = []
    for snapshot in after:
        prior = previous.get(snapshot.address)
        changes: List[str] = []
        if prior is None:
            changes.append("Account created")
        else:
            if prior.lamports != snapshot.lamports:
                delta = snapshot.lamports - prior.lamports
                direction = "increased" if delta > 0 else "decreased"
                changes.append(f"Lamports {direction} by {abs(delta)}")
            if prior.data_size != snapshot.data_size:
                changes.append(f"Data size changed from {prior.data_size} to {snapshot.data_size}")
        if changes:
            diff.append(StateDiffEntry(address=snapshot.address, changes=changes))
    return diff


def annotate_changes(
    after: Sequence[AccountSnapshot],
    diff: Sequence[StateDiffEntry],
) -> List[AccountSnapshot]:
    by_address = {entry.address: entry.changes for entry in diff}
    for snapshot in after:
        snapshot.changes = list(by_address.get(snapshot.address, []))
    return list(after)
