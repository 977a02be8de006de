#!/usr/bin/env python3
"""
Block fetching and the block/transaction data model.

Blocks that the endpoint has not produced yet (null result, or the
"not available" error codes) are retried with backoff. Skipped slots are
reported straight away since retrying cannot make them appear.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from solana_utils import RpcError, SlotSkippedError, ShapeMismatchError, logger
from solana_base import SolanaTool
from solana_rpc import (
    SolanaRpcClient, BLOCK_NOT_AVAILABLE, BLOCK_STATUS_NOT_AVAILABLE_YET,
    SLOT_SKIPPED, LONG_TERM_STORAGE_SLOT_SKIPPED
)
from retry_engine import retry_call, classify_absent_retryable

_ABSENT_CODES = (BLOCK_NOT_AVAILABLE, BLOCK_STATUS_NOT_AVAILABLE_YET)
_SKIPPED_CODES = (SLOT_SKIPPED, LONG_TERM_STORAGE_SLOT_SKIPPED)


@dataclass
class Transaction:
    """A transaction as seen in a block: signatures, account table and logs"""
    signatures: List[str]
    account_keys: List[str]
    log_messages: Optional[List[str]] = None
    index: Optional[int] = None

    @property
    def signature(self) -> str:
        """Primary identifier (first signature)"""
        return self.signatures[0]


@dataclass
class Block:
    """A block and its transactions in on-chain order"""
    slot: int
    transactions: List[Transaction] = field(default_factory=list)
    blockhash: Optional[str] = None
    parent_slot: Optional[int] = None
    block_time: Optional[int] = None


def parse_transaction(raw: Dict[str, Any], index: int = 0) -> Transaction:
    """
    Build a Transaction from one entry of a getBlock ``transactions`` list.

    Args:
        raw: Transaction entry ({'transaction': {...}, 'meta': {...}})
        index: Position in the block, kept on the Transaction

    Returns:
        Parsed Transaction

    Raises:
        ShapeMismatchError: If signatures or account keys are missing
    """
    tx_data = raw.get('transaction') if isinstance(raw, dict) else None
    if not isinstance(tx_data, dict):
        raise ShapeMismatchError(f"missing transaction at index {index}")

    signatures = tx_data.get('signatures')
    if not isinstance(signatures, list) or not signatures:
        raise ShapeMismatchError(f"missing signatures in transaction at index {index}")

    message = tx_data.get('message')
    account_keys = message.get('accountKeys') if isinstance(message, dict) else None
    if not isinstance(account_keys, list):
        raise ShapeMismatchError(f"missing message/accountKeys in transaction at index {index}")

    meta = raw.get('meta')
    log_messages = meta.get('logMessages') if isinstance(meta, dict) else None

    return Transaction(
        signatures=[str(s) for s in signatures],
        account_keys=[str(k) for k in account_keys],
        log_messages=list(log_messages) if isinstance(log_messages, list) else None,
        index=index,
    )


def parse_block(slot: int, raw: Dict[str, Any]) -> Block:
    """
    Build a Block from a getBlock result.

    Malformed transaction entries are logged and left out; the rest keep
    their index within the block.
    """
    if not isinstance(raw, dict):
        raise ShapeMismatchError(f"block {slot}: result is not an object")

    transactions = raw.get('transactions')
    if not isinstance(transactions, list):
        raise ShapeMismatchError(f"block {slot}: missing transactions")

    parsed = []
    for i, tx in enumerate(transactions):
        try:
            parsed.append(parse_transaction(tx, i))
        except ShapeMismatchError as e:
            logger.warning(f"Block {slot}: skipping transaction: {e}")

    return Block(
        slot=slot,
        transactions=parsed,
        blockhash=raw.get('blockhash'),
        parent_slot=raw.get('parentSlot'),
        block_time=raw.get('blockTime'),
    )


class BlockFetcher(SolanaTool):
    """Fetches blocks by slot with retries for blocks that are not available yet"""

    def __init__(self, rpc_client: Optional[SolanaRpcClient] = None,
                 sleep: Optional[Callable[[float], None]] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.rpc = rpc_client or SolanaRpcClient(rpc_url=self.rpc_url, headers=self.headers)
        self.sleep = sleep

    def _get_block_once(self, slot: int) -> Optional[Dict[str, Any]]:
        try:
            return self.rpc.get_block(slot)
        except RpcError as e:
            if e.code in _ABSENT_CODES:
                return None
            if e.code in _SKIPPED_CODES:
                raise SlotSkippedError(f"Slot {slot} was skipped or is missing from storage",
                                       slot=slot) from e
            raise

    def fetch(self, slot: int) -> Optional[Block]:
        """
        Fetch the block at ``slot``.

        Args:
            slot: Slot number

        Returns:
            The Block, or None if it could not be obtained within the retry budget

        Raises:
            SlotSkippedError: If the cluster reports the slot as skipped
            SolanaToolError: The last error seen, when fetching failed fatally
                or kept being rate limited until retries ran out
        """
        result = retry_call(
            lambda: self._get_block_once(slot),
            classify=classify_absent_retryable,
            base_delay=self.base_delay,
            max_attempts=self.max_attempts,
            description=f"Block {slot}",
            sleep=self.sleep,
        )
        raw = result.unwrap()
        if raw is None:
            logger.warning(f"No block found for slot {slot} after {result.attempts} attempts")
            return None
        return parse_block(slot, raw)
