#!/usr/bin/env python3
"""
Solana Vote Checker

Walks a descending range of slots and reports, for each block, whether a
given validator voted in it and which slot that vote was for. Each slot is
shown next to its scheduled leader.

Usage:
    python3 vote_checker.py --url https://api.mainnet-beta.solana.com \\
        --account <vote authority> --slot 312345678 --distance 10
"""

import argparse
import json
import random
import sys
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional

from solana_utils import (
    SolanaToolError, SlotSkippedError, LeaderScheduleError, InvalidInputError,
    JITTER_MIN, JITTER_MAX, load_config, settings_from_config, format_timestamp,
    logger
)
from solana_base import SolanaTool
from solana_rpc import SolanaRpcClient
from block_fetcher import BlockFetcher, Transaction
from leader_schedule import LeaderScheduleResolver, LeaderScheduleMap
from vote_filter import filter_vote_transactions, match_account
from vote_instruction import VoteInstructionDecoder

# Version number (semantic versioning: MAJOR.MINOR.PATCH)
__version__ = "1.0.0"

STATUS_VOTED = 'voted'
STATUS_NO_VOTE = 'no_vote'
STATUS_SKIPPED = 'skipped'
STATUS_ERROR = 'error'


@dataclass
class VoteRecord:
    """One matched vote transaction in a slot"""
    slot: int
    signature: str
    position: int
    voted_slot: Optional[int] = None
    latency: Optional[int] = None
    error: Optional[str] = None
    diagnostics: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SlotReport:
    """Outcome for one slot of the scan"""
    slot: int
    leader: str
    status: str
    vote_count: int = 0
    block_time: Optional[int] = None
    votes: List[VoteRecord] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VoteReport:
    """All slot reports of a run, in scan order"""
    account: str
    start_slot: int
    distance: int
    epoch: Optional[int] = None
    slots: List[SlotReport] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for s in self.slots if s.status == status)

    @property
    def votes(self) -> List[VoteRecord]:
        return [vote for s in self.slots for vote in s.votes]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['summary'] = {
            STATUS_VOTED: self.count(STATUS_VOTED),
            STATUS_NO_VOTE: self.count(STATUS_NO_VOTE),
            STATUS_SKIPPED: self.count(STATUS_SKIPPED),
            STATUS_ERROR: self.count(STATUS_ERROR),
        }
        return data


def slot_range(start_slot: int, distance: int) -> List[int]:
    """``start_slot`` down to ``start_slot - distance``, stopping at slot 0"""
    return list(range(start_slot, max(start_slot - distance, 0) - 1, -1))


class VoteChecker(SolanaTool):
    """
    Scans slots for votes cast by one account.

    Requests are strictly sequential. Consecutive transaction lookups are
    spaced by a random pause so bursts do not trip the endpoint's rate limits.
    """

    def __init__(self, rpc_client: Optional[SolanaRpcClient] = None,
                 jitter_min: Optional[float] = None, jitter_max: Optional[float] = None,
                 sleep: Optional[Callable[[float], None]] = None,
                 rng: Optional[random.Random] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.rpc = rpc_client or SolanaRpcClient(rpc_url=self.rpc_url, headers=self.headers)

        shared = dict(rpc_client=self.rpc, sleep=sleep, rpc_url=self.rpc_url, headers=self.headers,
                      base_delay=self.base_delay, max_attempts=self.max_attempts)
        self.block_fetcher = BlockFetcher(**shared)
        self.leader_resolver = LeaderScheduleResolver(**shared)
        self.decoder = VoteInstructionDecoder(**shared)

        self.jitter_min = JITTER_MIN if jitter_min is None else jitter_min
        self.jitter_max = JITTER_MAX if jitter_max is None else jitter_max
        self.sleep = sleep
        self.rng = rng or random.Random()
        self._decodes_issued = 0

    def _pause(self) -> None:
        delay = self.rng.uniform(self.jitter_min, self.jitter_max)
        logger.debug(f"Pausing {delay:.2f}s before next transaction lookup")
        (self.sleep or time.sleep)(delay)

    def check_vote(self, slot: int, position: int, tx: Transaction) -> VoteRecord:
        """Decode one matched vote transaction into a VoteRecord"""
        if self._decodes_issued:
            self._pause()
        self._decodes_issued += 1

        signature = tx.signature
        try:
            decoded = self.decoder.decode(signature)
        except SolanaToolError as e:
            logger.warning(f"Could not fetch transaction {signature}: {e}")
            return VoteRecord(slot=slot, signature=signature, position=position, error=str(e))

        record = VoteRecord(slot=slot, signature=signature, position=position,
                            voted_slot=decoded.voted_slot, diagnostics=decoded.diagnostics)
        if decoded.voted_slot is not None:
            record.latency = slot - decoded.voted_slot
        return record

    def check_slot(self, slot: int, account: str, leader_map: LeaderScheduleMap) -> SlotReport:
        """Fetch one block and report the target account's votes in it"""
        leader = leader_map.leader_for(slot)

        try:
            block = self.block_fetcher.fetch(slot)
        except SlotSkippedError as e:
            return SlotReport(slot=slot, leader=leader, status=STATUS_SKIPPED, error=str(e))
        except SolanaToolError as e:
            return SlotReport(slot=slot, leader=leader, status=STATUS_ERROR,
                              error=f"Failed to fetch block {slot}: {e}")

        if block is None:
            return SlotReport(slot=slot, leader=leader, status=STATUS_ERROR,
                              error=f"No block found for {slot}")

        vote_txs = filter_vote_transactions(block)
        matches = match_account(vote_txs, account)

        report = SlotReport(
            slot=slot,
            leader=leader,
            status=STATUS_VOTED if matches else STATUS_NO_VOTE,
            vote_count=len(vote_txs),
            block_time=block.block_time,
        )
        for position, tx in matches:
            report.votes.append(self.check_vote(slot, position, tx))
        return report

    def run(self, account: str, slot: int, distance: int,
            on_slot: Optional[Callable[[SlotReport], None]] = None) -> VoteReport:
        """
        Scan ``slot`` down to ``slot - distance`` for votes by ``account``.

        Args:
            account: Voting account (first account key of its vote transactions)
            slot: Start slot
            distance: Number of preceding slots to scan as well
            on_slot: Called with each SlotReport as soon as it is complete

        Returns:
            VoteReport with one SlotReport per scanned slot

        Raises:
            InvalidInputError: If the inputs are out of range
            LeaderScheduleError: If the leader schedule could not be obtained
        """
        if not account:
            raise InvalidInputError("An account is required")
        if slot < 0 or distance < 0:
            raise InvalidInputError(f"Slot and distance must not be negative (slot={slot}, distance={distance})")

        leader_map = self.leader_resolver.resolve(slot)

        report = VoteReport(account=account, start_slot=slot, distance=distance, epoch=leader_map.epoch)
        self._decodes_issued = 0

        for current in slot_range(slot, distance):
            slot_report = self.check_slot(current, account, leader_map)
            report.slots.append(slot_report)
            logger.info(f"Slot {current}: {slot_report.status} "
                        f"({slot_report.vote_count} vote transactions)")
            if on_slot is not None:
                on_slot(slot_report)

        return report


def format_header(account: str, slot: int, distance: int) -> str:
    markdown = "# Vote Check\n\n"
    markdown += f"**Account:** {account}\n"
    markdown += f"**Slot:** {slot}  **Distance:** {distance}\n"
    return markdown


def format_slot_report(report: SlotReport) -> str:
    """Render one slot as markdown"""
    if report.status == STATUS_ERROR:
        return f"**Error:** {report.error}\n"

    if report.status == STATUS_SKIPPED:
        return f"## Slot {report.slot} [skipped]\n\n**Leader:** {report.leader}\n"

    marker = "" if report.status == STATUS_VOTED else " [X]"
    markdown = f"## Slot {report.slot}{marker}\n\n"
    markdown += f"**Votes:** {report.vote_count}  **Leader:** {report.leader}\n"
    if report.block_time is not None:
        markdown += f"**Block Time:** {format_timestamp(report.block_time)}\n"

    for vote in report.votes:
        markdown += "\n"
        markdown += f"- **Signature:** {vote.signature}\n"
        if vote.error:
            markdown += f"  - **Voted slot:** [error] ({vote.error})\n"
        elif vote.voted_slot is None:
            markdown += "  - **Voted slot:** [unknown]\n"
        else:
            markdown += f"  - **Voted slot:** {vote.voted_slot} (latency {vote.latency})\n"
        markdown += f"  - **Position:** {vote.position}\n"
    return markdown


def format_report(report: VoteReport) -> str:
    """Render a whole run as markdown"""
    markdown = format_header(report.account, report.start_slot, report.distance)
    if report.epoch is not None:
        markdown += f"**Epoch:** {report.epoch}\n"
    markdown += "\n"
    for slot_report in report.slots:
        markdown += format_slot_report(slot_report) + "\n"
    markdown += (f"**Summary:** {report.count(STATUS_VOTED)} voted, "
                 f"{report.count(STATUS_NO_VOTE)} without vote, "
                 f"{report.count(STATUS_SKIPPED)} skipped, "
                 f"{report.count(STATUS_ERROR)} errors\n")
    return markdown


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Check vote transactions by slot/account')
    parser.add_argument('--url', required=True, help='RPC endpoint URL')
    parser.add_argument('--account', required=True, help='Voting account (vote authority) to look for')
    parser.add_argument('--slot', required=True, type=int, help='Start slot')
    parser.add_argument('--distance', required=True, type=int, help='Number of preceding slots to scan')
    parser.add_argument('-o', '--output', help='Output file (optional)')
    parser.add_argument('--config', help='Alternate config.yaml for retry/jitter settings')
    parser.add_argument('--json', action='store_true', help='Emit the report as JSON')
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    args = parser.parse_args(argv)

    settings = settings_from_config(load_config(args.config) if args.config else {})
    checker = VoteChecker(rpc_url=args.url, **settings)

    streaming = not args.output and not args.json
    if streaming:
        print(format_header(args.account, args.slot, args.distance))

    def print_slot(slot_report: SlotReport) -> None:
        print(format_slot_report(slot_report))

    try:
        report = checker.run(args.account, args.slot, args.distance,
                             on_slot=print_slot if streaming else None)
    except InvalidInputError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except LeaderScheduleError as e:
        logger.error(f"Could not fetch leader schedule (rate limited or RPC error): {e}")
        print(f"Error: Could not fetch leader schedule. Exiting. ({e})", file=sys.stderr)
        return 1

    if args.json:
        result = json.dumps(report.to_dict(), indent=2)
    else:
        result = format_report(report)

    if args.output:
        with open(args.output, 'w') as f:
            f.write(result)
        print(f"Results written to {args.output}")
    elif args.json:
        print(result)
    else:
        print("All done!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
