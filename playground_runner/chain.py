"""Thin RPC client for the local validator."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.account import Account
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from .errors import UnknownExecutionError

logger = logging.getLogger(__name__)


def _preflight_logs(exc: RPCException) -> List[str]:
    payload = exc.args[0] if exc.args else None
    data = getattr(payload, "data", None)
    logs = getattr(data, "logs", None)
    return [str(line) for line in logs] if logs else []


def _preflight_message(exc: RPCException) -> str:
    payload = exc.args[0] if exc.args else None
    message = getattr(payload, "message", None)
    return str(message) if message else str(exc)


class ChainClient:
    def __init__(self, endpoint: str, timeout: float = 30.0) -> None:
        self.endpoint = endpoint
        self._client = Client(endpoint, commitment=Confirmed, timeout=timeout)

    def airdrop(self, pubkey: Pubkey, lamports: int) -> None:
        try:
            sig = self._client.request_airdrop(pubkey, lamports).value
            self._client.confirm_transaction(sig, commitment=Confirmed)
        except RPCException as exc:
            raise UnknownExecutionError(f"Airdrop to {pubkey} failed: {_preflight_message(exc)}") from exc
        logger.info("Airdropped %s lamports to %s", lamports, pubkey)

    def get_account(self, pubkey: Pubkey) -> Optional[Account]:
        return self._client.get_account_info(pubkey, commitment=Confirmed).value

    def send_instruction(
        self,
        instruction: Instruction,
        payer: Keypair,
        signers: Sequence[Keypair],
    ) -> Signature:
        tx = Transaction.new_with_payer([instruction], payer.pubkey())
        blockhash = self._client.get_latest_blockhash(commitment=Confirmed).value.blockhash
        tx.sign(list(signers), blockhash)
        try:
            sig = self._client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed),
            ).value
        except RPCException as exc:
            raise UnknownExecutionError(_preflight_message(exc), logs=_preflight_logs(exc)) from exc

        statuses = self._client.confirm_transaction(sig, commitment=Confirmed).value
        status = statuses[0] if statuses else None
        if status is not None and status.err is not None:
            logs, _ = self.transaction_logs(sig)
            raise UnknownExecutionError(f"Transaction {sig} failed: {status.err}", logs=logs)
        return sig

    def transaction_logs(self, signature: Signature) -> Tuple[List[str], int]:
        resp = self._client.get_transaction(
            signature,
            encoding="json",
            commitment=Confirmed,
            max_supported_transaction_version=0,
        )
        tx = resp.value
        meta = tx.transaction.meta if tx is not None else None
        if meta is None:
            return [], 0
        logs = list(meta.log_messages or [])
        compute_units = meta.compute_units_consumed or 0
        return logs, int(compute_units)
