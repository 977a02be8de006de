#!/usr/bin/env python3
"""
Vote instruction decoding.

Vote program instructions are bincode-encoded ``VoteInstruction`` enums,
base58-encoded in the ``data`` field of a JSON transaction. Two variants
carry a usable voted slot:

    Vote       (tag 2)   slots: Vec<u64>, hash, timestamp: Option<i64>
                         The last slot is the most recent vote
                         (implicit confirmation count 1).
    TowerSync  (tag 14)  compact form: root (u64::MAX = none), short_vec of
                         (varint slot offset, u8 confirmation count),
                         hash, timestamp: Option<i64>, block id
                         The lockout with confirmation count 1 is the
                         most recent vote.

Every other variant decodes to ``OtherInstruction`` and yields no slot.
"""

import json
import struct
import base58
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from solana_utils import VOTE_PROGRAM_ID, VoteDecodeError, logger, shorten
from solana_base import SolanaTool
from solana_rpc import SolanaRpcClient
from retry_engine import retry_call, classify_present

U64_MAX = 2 ** 64 - 1
HASH_LEN = 32
ZERO_HASH = bytes(HASH_LEN)

VOTE_TAG = 2
TOWER_SYNC_TAG = 14

VOTE_INSTRUCTION_NAMES = {
    0: 'InitializeAccount',
    1: 'Authorize',
    2: 'Vote',
    3: 'Withdraw',
    4: 'UpdateValidatorIdentity',
    5: 'UpdateCommission',
    6: 'VoteSwitch',
    7: 'AuthorizeChecked',
    8: 'UpdateVoteState',
    9: 'UpdateVoteStateSwitch',
    10: 'AuthorizeWithSeed',
    11: 'AuthorizeCheckedWithSeed',
    12: 'CompactUpdateVoteState',
    13: 'CompactUpdateVoteStateSwitch',
    14: 'TowerSync',
    15: 'TowerSyncSwitch',
}


@dataclass(frozen=True)
class Lockout:
    """A voted slot and how many votes have been stacked on top of it"""
    slot: int
    confirmation_count: int


@dataclass
class VotePayload:
    """Legacy Vote: confirmation counts are implied by position"""
    slots: List[int]
    hash: bytes = ZERO_HASH
    timestamp: Optional[int] = None

    @property
    def lockouts(self) -> List[Lockout]:
        n = len(self.slots)
        return [Lockout(slot, n - i) for i, slot in enumerate(self.slots)]


@dataclass
class TowerSyncPayload:
    """TowerSync: explicit lockouts"""
    lockouts: List[Lockout]
    root: Optional[int] = None
    hash: bytes = ZERO_HASH
    timestamp: Optional[int] = None
    block_id: bytes = ZERO_HASH


@dataclass
class OtherInstruction:
    """Any vote program instruction that carries no usable voted slot"""
    tag: int
    name: str


VoteInstructionPayload = Union[VotePayload, TowerSyncPayload, OtherInstruction]


class _ByteReader:
    """Sequential little-endian reader over instruction bytes"""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read(self, n: int) -> bytes:
        if n > self.remaining:
            raise VoteDecodeError(
                f"unexpected end of data at offset {self.offset}: need {n} bytes, have {self.remaining}"
            )
        chunk = self.data[self.offset:self.offset + n]
        self.offset += n
        return chunk

    def u8(self) -> int:
        return self.read(1)[0]

    def u32(self) -> int:
        return struct.unpack('<I', self.read(4))[0]

    def u64(self) -> int:
        return struct.unpack('<Q', self.read(8))[0]

    def i64(self) -> int:
        return struct.unpack('<q', self.read(8))[0]

    def hash(self) -> bytes:
        return self.read(HASH_LEN)

    def option_i64(self) -> Optional[int]:
        tag = self.u8()
        if tag == 0:
            return None
        if tag == 1:
            return self.i64()
        raise VoteDecodeError(f"invalid Option tag {tag} at offset {self.offset - 1}")

    def varint(self) -> int:
        """LEB128 unsigned varint, at most u64"""
        value = 0
        shift = 0
        while True:
            byte = self.u8()
            value |= (byte & 0x7F) << shift
            if not (byte & 0x80):
                break
            shift += 7
            if shift >= 64:
                raise VoteDecodeError(f"varint too long at offset {self.offset}")
        if value > U64_MAX:
            raise VoteDecodeError(f"varint overflows u64 at offset {self.offset}")
        return value

    def short_vec_len(self) -> int:
        """compact-u16 length prefix (1 to 3 bytes)"""
        value = 0
        for i in range(3):
            byte = self.u8()
            value |= (byte & 0x7F) << (7 * i)
            if not (byte & 0x80):
                return value
        raise VoteDecodeError(f"short_vec length too long at offset {self.offset}")


def _decode_vote(reader: _ByteReader) -> VotePayload:
    count = reader.u64()
    if count * 8 > reader.remaining:
        raise VoteDecodeError(f"Vote claims {count} slots but only {reader.remaining} bytes remain")
    slots = [reader.u64() for _ in range(count)]
    vote_hash = reader.hash()
    timestamp = reader.option_i64()
    return VotePayload(slots=slots, hash=vote_hash, timestamp=timestamp)


def _decode_tower_sync(reader: _ByteReader) -> TowerSyncPayload:
    raw_root = reader.u64()
    root = None if raw_root == U64_MAX else raw_root

    count = reader.short_vec_len()
    lockouts = []
    slot = root or 0
    for _ in range(count):
        offset = reader.varint()
        confirmation_count = reader.u8()
        slot += offset
        if slot > U64_MAX:
            raise VoteDecodeError("lockout slot overflows u64")
        lockouts.append(Lockout(slot, confirmation_count))

    vote_hash = reader.hash()
    timestamp = reader.option_i64()
    block_id = reader.hash()
    return TowerSyncPayload(lockouts=lockouts, root=root, hash=vote_hash,
                            timestamp=timestamp, block_id=block_id)


def decode_vote_instruction(data: bytes) -> VoteInstructionPayload:
    """
    Deserialize raw vote instruction bytes.

    Args:
        data: bincode-encoded VoteInstruction

    Returns:
        VotePayload, TowerSyncPayload or OtherInstruction

    Raises:
        VoteDecodeError: If the bytes are truncated or malformed
    """
    reader = _ByteReader(data)
    tag = reader.u32()

    if tag == VOTE_TAG:
        return _decode_vote(reader)
    if tag == TOWER_SYNC_TAG:
        return _decode_tower_sync(reader)
    return OtherInstruction(tag=tag, name=VOTE_INSTRUCTION_NAMES.get(tag, f"Unknown({tag})"))


def decode_instruction_data(encoded: str) -> bytes:
    """Decode base58 instruction data"""
    try:
        return base58.b58decode(encoded)
    except ValueError as e:
        raise VoteDecodeError(f"base58 decode failed: {e}")


def recovered_slot(payload: VoteInstructionPayload) -> Optional[int]:
    """The most recently voted slot (confirmation count 1), if the payload has one"""
    if isinstance(payload, VotePayload):
        for lockout in payload.lockouts:
            if lockout.confirmation_count == 1:
                return lockout.slot
        return None
    if isinstance(payload, TowerSyncPayload):
        for lockout in payload.lockouts:
            if lockout.confirmation_count == 1:
                return lockout.slot
        return None
    if isinstance(payload, OtherInstruction):
        return None
    raise TypeError(f"Not a vote instruction payload: {payload!r}")


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _encode_short_vec_len(value: int) -> bytes:
    if value > 0xFFFF:
        raise ValueError(f"short_vec length {value} exceeds u16")
    return _encode_varint(value)


def _encode_option_i64(value: Optional[int]) -> bytes:
    if value is None:
        return b'\x00'
    return b'\x01' + struct.pack('<q', value)


def encode_vote_instruction(slots: Sequence[int], vote_hash: bytes = ZERO_HASH,
                            timestamp: Optional[int] = None) -> bytes:
    """Encode a Vote instruction (tag 2) in bincode"""
    out = struct.pack('<IQ', VOTE_TAG, len(slots))
    out += b''.join(struct.pack('<Q', s) for s in slots)
    return out + vote_hash + _encode_option_i64(timestamp)


def encode_tower_sync_instruction(lockouts: Sequence[Tuple[int, int]], root: Optional[int] = None,
                                  vote_hash: bytes = ZERO_HASH, timestamp: Optional[int] = None,
                                  block_id: bytes = ZERO_HASH) -> bytes:
    """
    Encode a TowerSync instruction (tag 14) in its compact form.

    Args:
        lockouts: (slot, confirmation_count) pairs in ascending slot order
        root: Root slot, or None
    """
    out = struct.pack('<IQ', TOWER_SYNC_TAG, U64_MAX if root is None else root)
    out += _encode_short_vec_len(len(lockouts))
    previous = root or 0
    for slot, confirmation_count in lockouts:
        if slot < previous:
            raise ValueError("lockout slots must be ascending and not below the root")
        out += _encode_varint(slot - previous) + struct.pack('<B', confirmation_count)
        previous = slot
    return out + vote_hash + _encode_option_i64(timestamp) + block_id


@dataclass
class VoteDecodeResult:
    """What the decoder found for one signature"""
    signature: str
    voted_slot: Optional[int] = None
    payload: Optional[VoteInstructionPayload] = None
    instruction_index: Optional[int] = None
    diagnostics: List[str] = field(default_factory=list)


def _loaded_addresses(result: Dict[str, Any]) -> List[str]:
    # Versioned transactions index lookup-table addresses after the static keys
    meta = result.get('meta')
    loaded = meta.get('loadedAddresses') if isinstance(meta, dict) else None
    if not isinstance(loaded, dict):
        return []
    return list(loaded.get('writable') or []) + list(loaded.get('readonly') or [])


def extract_voted_slot(response: Dict[str, Any], signature: str) -> VoteDecodeResult:
    """
    Find the voted slot in a getTransaction response.

    Instructions are scanned in order; the first vote program instruction
    that yields a slot wins. Each dead end is recorded as a diagnostic and
    logged with the full response.

    Args:
        response: Full JSON-RPC response from getTransaction
        signature: Transaction signature (for diagnostics)

    Returns:
        VoteDecodeResult; ``voted_slot`` is None when nothing was recovered
    """
    outcome = VoteDecodeResult(signature=signature)

    def note(reason: str) -> None:
        outcome.diagnostics.append(reason)
        logger.debug(
            f"Could not extract voted slot for signature {signature} ({reason}). "
            f"Full transaction JSON:\n{json.dumps(response, indent=2, default=str)}"
        )

    result = response.get('result') if isinstance(response, dict) else None
    if not isinstance(result, dict):
        note("missing result")
        return outcome

    tx = result.get('transaction')
    message = tx.get('message') if isinstance(tx, dict) else None
    if not isinstance(message, dict):
        note("missing transaction/message")
        return outcome

    instructions = message.get('instructions')
    if not isinstance(instructions, list):
        note("missing instructions")
        return outcome

    account_keys = message.get('accountKeys')
    if not isinstance(account_keys, list):
        note("missing accountKeys")
        return outcome
    account_keys = account_keys + _loaded_addresses(result)

    for index, instr in enumerate(instructions):
        if not isinstance(instr, dict):
            note(f"instruction {index}: not an object")
            continue

        program_index = instr.get('programIdIndex')
        if not isinstance(program_index, int) or isinstance(program_index, bool):
            note(f"instruction {index}: missing programIdIndex")
            continue
        if not 0 <= program_index < len(account_keys):
            note(f"instruction {index}: programIdIndex {program_index} out of bounds "
                 f"({len(account_keys)} account keys)")
            continue

        if account_keys[program_index] != VOTE_PROGRAM_ID:
            continue

        encoded_data = instr.get('data')
        if not isinstance(encoded_data, str):
            note(f"instruction {index}: missing data in instruction")
            continue

        try:
            payload = decode_vote_instruction(decode_instruction_data(encoded_data))
        except VoteDecodeError as e:
            note(f"instruction {index}: {e}")
            continue

        if isinstance(payload, OtherInstruction):
            note(f"instruction {index}: decoded {payload.name}, not Vote or TowerSync")
            continue

        slot = recovered_slot(payload)
        if slot is None:
            kind = 'Vote' if isinstance(payload, VotePayload) else 'TowerSync'
            note(f"instruction {index}: {kind} has no lockout with confirmation count 1")
            continue

        outcome.voted_slot = slot
        outcome.payload = payload
        outcome.instruction_index = index
        return outcome

    note("no matching instruction found")
    return outcome


class VoteInstructionDecoder(SolanaTool):
    """Fetches vote transactions and recovers the slot they voted for"""

    def __init__(self, rpc_client: Optional[SolanaRpcClient] = None,
                 sleep: Optional[Callable[[float], None]] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.rpc = rpc_client or SolanaRpcClient(rpc_url=self.rpc_url, headers=self.headers)
        self.sleep = sleep

    def decode(self, signature: str) -> VoteDecodeResult:
        """
        Fetch ``signature`` and decode its vote instruction.

        Raises:
            SolanaToolError: The last fetch error, when the transaction could
                not be fetched (fatal error or rate limited until retries ran out)
        """
        result = retry_call(
            lambda: self.rpc.get_transaction(signature),
            classify=classify_present,
            base_delay=self.base_delay,
            max_attempts=self.max_attempts,
            description=f"Transaction {shorten(signature)}",
            sleep=self.sleep,
        )
        response = result.unwrap()

        decoded = extract_voted_slot(response, signature)
        if decoded.voted_slot is None:
            logger.warning(
                f"No voted slot recovered for {shorten(signature)}: {decoded.diagnostics[-1]}"
            )
        return decoded

    def decode_voted_slot(self, signature: str) -> Optional[int]:
        """
        Voted slot for ``signature``, or None if the transaction carried none.

        Raises:
            SolanaToolError: The last fetch error, as for ``decode``
        """
        return self.decode(signature).voted_slot
