#!/usr/bin/env python3
"""
Leader schedule resolution.

Works out which epoch a slot belongs to from the cluster's epoch schedule
(including the warm-up period where epochs start at 32 slots and double),
fetches that epoch's leader schedule and expands it into an
absolute slot -> leader identity table.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from solana_utils import ShapeMismatchError, LeaderScheduleError, UNKNOWN_LEADER, logger
from solana_base import SolanaTool
from solana_rpc import SolanaRpcClient
from retry_engine import retry_call, classify_present

MINIMUM_SLOTS_PER_EPOCH = 32


def _next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (n - 1).bit_length()


def _trailing_zeros(power_of_two: int) -> int:
    return power_of_two.bit_length() - 1


@dataclass(frozen=True)
class EpochSchedule:
    """Epoch schedule parameters as returned by getEpochSchedule"""
    slots_per_epoch: int
    leader_schedule_slot_offset: int
    warmup: bool
    first_normal_epoch: int
    first_normal_slot: int

    @classmethod
    def from_rpc(cls, result: Dict[str, Any]) -> "EpochSchedule":
        """Parse a getEpochSchedule result"""
        try:
            return cls(
                slots_per_epoch=int(result['slotsPerEpoch']),
                leader_schedule_slot_offset=int(result.get('leaderScheduleSlotOffset', 0)),
                warmup=bool(result.get('warmup', False)),
                first_normal_epoch=int(result.get('firstNormalEpoch', 0)),
                first_normal_slot=int(result.get('firstNormalSlot', 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ShapeMismatchError(f"Invalid getEpochSchedule result {result!r}: {e}")

    def get_epoch_and_slot_index(self, slot: int) -> Tuple[int, int]:
        """Return (epoch, index of the slot within that epoch)"""
        if slot < self.first_normal_slot:
            epoch = (_trailing_zeros(_next_power_of_two(slot + MINIMUM_SLOTS_PER_EPOCH + 1))
                     - _trailing_zeros(MINIMUM_SLOTS_PER_EPOCH) - 1)
            epoch_len = 2 ** (epoch + _trailing_zeros(MINIMUM_SLOTS_PER_EPOCH))
            return epoch, slot - (epoch_len - MINIMUM_SLOTS_PER_EPOCH)

        normal_slot_index = slot - self.first_normal_slot
        normal_epoch_index = normal_slot_index // self.slots_per_epoch
        return (self.first_normal_epoch + normal_epoch_index,
                normal_slot_index % self.slots_per_epoch)

    def get_epoch(self, slot: int) -> int:
        return self.get_epoch_and_slot_index(slot)[0]

    def get_slots_in_epoch(self, epoch: int) -> int:
        if epoch < self.first_normal_epoch:
            return 2 ** (epoch + _trailing_zeros(MINIMUM_SLOTS_PER_EPOCH))
        return self.slots_per_epoch

    def get_first_slot_in_epoch(self, epoch: int) -> int:
        if epoch <= self.first_normal_epoch:
            return (2 ** epoch - 1) * MINIMUM_SLOTS_PER_EPOCH
        return (epoch - self.first_normal_epoch) * self.slots_per_epoch + self.first_normal_slot


class LeaderScheduleMap(Mapping):
    """
    Read-only absolute slot -> leader identity table for one epoch.

    Slots outside the table (e.g. in another epoch) look up as "unknown".
    """

    def __init__(self, slots: Optional[Dict[int, str]] = None,
                 epoch: Optional[int] = None, epoch_start: Optional[int] = None) -> None:
        self._slots: Dict[int, str] = dict(slots or {})
        self.epoch = epoch
        self.epoch_start = epoch_start

    def __getitem__(self, slot: int) -> str:
        return self._slots[slot]

    def __iter__(self) -> Iterator[int]:
        return iter(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    def leader_for(self, slot: int) -> str:
        """Leader identity for ``slot``, or "unknown" when not scheduled"""
        return self._slots.get(slot, UNKNOWN_LEADER)

    def __repr__(self) -> str:
        return f"LeaderScheduleMap(epoch={self.epoch}, slots={len(self._slots)})"


def expand_leader_schedule(epoch_start: int, schedule: Dict[str, List[int]],
                           epoch: Optional[int] = None) -> LeaderScheduleMap:
    """
    Expand an identity -> [epoch-relative offsets] schedule into absolute slots.

    Args:
        epoch_start: First slot of the epoch the schedule belongs to
        schedule: getLeaderSchedule result
        epoch: Epoch number, kept on the map for display

    Returns:
        LeaderScheduleMap with ``epoch_start + offset -> identity`` entries
    """
    if not isinstance(schedule, dict):
        raise ShapeMismatchError(f"Leader schedule is not an object: {type(schedule).__name__}")

    slots: Dict[int, str] = {}
    for identity, offsets in schedule.items():
        if not isinstance(offsets, list):
            raise ShapeMismatchError(f"Leader schedule entry for {identity} is not a list")
        for offset in offsets:
            slots[epoch_start + int(offset)] = identity
    return LeaderScheduleMap(slots, epoch=epoch, epoch_start=epoch_start)


class LeaderScheduleResolver(SolanaTool):
    """Builds the LeaderScheduleMap for the epoch containing a reference slot"""

    def __init__(self, rpc_client: Optional[SolanaRpcClient] = None,
                 sleep: Optional[Callable[[float], None]] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.rpc = rpc_client or SolanaRpcClient(rpc_url=self.rpc_url, headers=self.headers)
        self.sleep = sleep

    def _resolve_once(self, reference_slot: int) -> LeaderScheduleMap:
        epoch_schedule = EpochSchedule.from_rpc(self.rpc.get_epoch_schedule())
        epoch = epoch_schedule.get_epoch(reference_slot)
        epoch_start = epoch_schedule.get_first_slot_in_epoch(epoch)

        schedule = self.rpc.get_leader_schedule(epoch_start)
        if schedule is None:
            raise LeaderScheduleError(f"No leader schedule found for epoch {epoch}")
        return expand_leader_schedule(epoch_start, schedule, epoch=epoch)

    def resolve(self, reference_slot: int) -> LeaderScheduleMap:
        """
        Resolve the leader schedule for the epoch containing ``reference_slot``.

        Raises:
            LeaderScheduleError: If no schedule could be obtained; the run
                cannot continue without it
        """
        result = retry_call(
            lambda: self._resolve_once(reference_slot),
            classify=classify_present,
            base_delay=self.base_delay,
            max_attempts=self.max_attempts,
            description="Leader schedule",
            sleep=self.sleep,
        )
        if result.error is not None:
            if isinstance(result.error, LeaderScheduleError):
                raise result.error
            raise LeaderScheduleError(
                f"Failed to fetch leader schedule after {result.attempts} attempts: {result.error}"
            ) from result.error

        leader_map = result.value
        logger.info(
            f"Loaded leader schedule for epoch {leader_map.epoch} "
            f"(starts at slot {leader_map.epoch_start}, {len(leader_map)} slots)"
        )
        return leader_map
