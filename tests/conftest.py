"""
Pytest configuration and shared fixtures for Solana vote checker tests.
"""
import pytest
import base58
from unittest.mock import Mock, patch

from solana_utils import VOTE_PROGRAM_ID
from vote_instruction import encode_vote_instruction

TARGET_ACCOUNT = "TargetVoteAuthority111111111111111111111111"
OTHER_ACCOUNT = "OtherVoteAuthority1111111111111111111111111"
VOTE_ACCOUNT = "VoteAccount11111111111111111111111111111111"
SYSVAR_SLOT_HASHES = "SysvarS1otHashes111111111111111111111111111"


def vote_logs():
    return [
        f"Program {VOTE_PROGRAM_ID} invoke [1]",
        f"Program {VOTE_PROGRAM_ID} success",
    ]


def make_block_transaction(signature, first_key, vote=True):
    """A getBlock transaction entry"""
    return {
        'transaction': {
            'signatures': [signature],
            'message': {
                'accountKeys': [first_key, VOTE_ACCOUNT, VOTE_PROGRAM_ID],
                'instructions': [],
            },
        },
        'meta': {
            'logMessages': vote_logs() if vote else [
                "Program ComputeBudget111111111111111111111111111111 invoke [1]",
                "Program ComputeBudget111111111111111111111111111111 success",
            ],
        },
    }


def make_transaction_response(instruction_data, account_keys=None, program_id_index=2):
    """A getTransaction response with one instruction per data item"""
    if account_keys is None:
        account_keys = [TARGET_ACCOUNT, VOTE_ACCOUNT, VOTE_PROGRAM_ID]
    return {
        'jsonrpc': '2.0',
        'id': 1,
        'result': {
            'slot': 100,
            'transaction': {
                'signatures': ['SIG'],
                'message': {
                    'accountKeys': account_keys,
                    'instructions': [
                        {'programIdIndex': program_id_index, 'accounts': [1], 'data': data}
                        for data in instruction_data
                    ],
                },
            },
            'meta': {'logMessages': vote_logs()},
        },
    }


def b58(data):
    return base58.b58encode(data).decode()


@pytest.fixture
def vote_data_10_11_12():
    """base58 Vote instruction voting on slots 10, 11, 12"""
    return b58(encode_vote_instruction([10, 11, 12]))


@pytest.fixture
def sample_block_result():
    """getBlock result: one non-vote, one foreign vote, one target vote"""
    return {
        'blockhash': 'BlockHash1111111111111111111111111111111111',
        'parentSlot': 99,
        'blockTime': 1700000000,
        'transactions': [
            make_block_transaction('NONVOTE', TARGET_ACCOUNT, vote=False),
            make_block_transaction('OTHERSIG', OTHER_ACCOUNT),
            make_block_transaction('SIG1', TARGET_ACCOUNT),
        ],
    }


@pytest.fixture
def sample_epoch_schedule():
    """Mainnet-style epoch schedule (no warm-up)"""
    return {
        'slotsPerEpoch': 432000,
        'leaderScheduleSlotOffset': 432000,
        'warmup': False,
        'firstNormalEpoch': 0,
        'firstNormalSlot': 0,
    }


@pytest.fixture
def mock_post():
    """Mock requests.post used by the RPC client"""
    with patch('solana_rpc.requests.post') as mock_req:
        yield mock_req


def rpc_response(payload, status_code=200):
    """Build a mock HTTP response carrying a JSON-RPC payload"""
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.raise_for_status = Mock()
    return response
