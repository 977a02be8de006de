#!/usr/bin/env python3
"""
Decode the vote instruction of a single transaction

Fetches one transaction by signature and prints every vote program
instruction it carries, with the decoded lockouts and the recovered
voted slot.
"""

import argparse
import sys

from solana_utils import DEFAULT_RPC_URL, VOTE_PROGRAM_ID, SolanaToolError, format_timestamp
from solana_rpc import SolanaRpcClient
from vote_instruction import (
    VotePayload, TowerSyncPayload, OtherInstruction,
    decode_instruction_data, decode_vote_instruction, extract_voted_slot, recovered_slot
)


def print_payload(payload):
    """Print a decoded vote instruction"""
    if isinstance(payload, OtherInstruction):
        print(f"  Variant: {payload.name} (tag {payload.tag}) - no voted slot")
        return

    if isinstance(payload, TowerSyncPayload):
        print("  Variant: TowerSync")
        print(f"  Root: {payload.root}")
    else:
        print("  Variant: Vote")

    if payload.timestamp is not None:
        print(f"  Timestamp: {format_timestamp(payload.timestamp)}")

    print(f"  Lockouts ({len(payload.lockouts)}):")
    for lockout in payload.lockouts:
        print(f"    slot {lockout.slot}  confirmations {lockout.confirmation_count}")
    print(f"  Voted slot: {recovered_slot(payload)}")


def decode_vote_signature(rpc_url: str, signature: str):
    """Decode every vote instruction in a transaction"""
    client = SolanaRpcClient(rpc_url=rpc_url)
    response = client.get_transaction(signature)

    print("=" * 70)
    print(f"Decoding vote transaction: {signature}")
    print("=" * 70)

    result = response.get('result') or {}
    message = (result.get('transaction') or {}).get('message') or {}
    account_keys = message.get('accountKeys') or []

    for index, instr in enumerate(message.get('instructions') or []):
        program_index = instr.get('programIdIndex')
        if program_index is None or program_index >= len(account_keys):
            continue
        if account_keys[program_index] != VOTE_PROGRAM_ID:
            continue

        print(f"\nInstruction {index}:")
        try:
            payload = decode_vote_instruction(decode_instruction_data(instr.get('data', '')))
        except SolanaToolError as e:
            print(f"  ? Could not decode: {e}")
            continue
        print_payload(payload)

    decoded = extract_voted_slot(response, signature)
    print()
    print(f"Recovered voted slot: {decoded.voted_slot}")
    for reason in decoded.diagnostics:
        print(f"  note: {reason}")
    return decoded


def main():
    parser = argparse.ArgumentParser(description='Decode the vote instruction of a transaction')
    parser.add_argument('signature', help='Transaction signature')
    parser.add_argument('--url', default=DEFAULT_RPC_URL, help='RPC endpoint URL')
    args = parser.parse_args()

    try:
        decode_vote_signature(args.url, args.signature)
    except SolanaToolError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
