#!/usr/bin/env python3
"""
Vote transaction filtering.

Picks the transactions in a block that invoked the vote program, keeping
their position in the block, and narrows them down to one voting account.
"""

from typing import List, Tuple

from solana_utils import VOTE_PROGRAM_INVOKE_PREFIX
from block_fetcher import Block, Transaction

IndexedTransaction = Tuple[int, Transaction]


def invokes_vote_program(tx: Transaction) -> bool:
    """True if any log line shows the vote program being invoked"""
    if not tx.log_messages:
        return False
    return any(line.startswith(VOTE_PROGRAM_INVOKE_PREFIX) for line in tx.log_messages)


def filter_vote_transactions(block: Block) -> List[IndexedTransaction]:
    """
    Select the vote transactions of a block.

    Args:
        block: Block to scan

    Returns:
        (index in block, transaction) pairs in block order
    """
    return [(i if tx.index is None else tx.index, tx)
            for i, tx in enumerate(block.transactions) if invokes_vote_program(tx)]


def match_account(vote_transactions: List[IndexedTransaction], account: str) -> List[IndexedTransaction]:
    """Keep the vote transactions whose first account key is ``account``"""
    # The first account key of a vote transaction is the fee payer / vote authority
    return [(i, tx) for i, tx in vote_transactions
            if tx.account_keys and tx.account_keys[0] == account]
