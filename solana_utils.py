#!/usr/bin/env python3
"""
Solana Vote Tools - Shared Utilities

Common constants, configuration, logging and exceptions used across the
vote checker modules.
"""

import logging
import yaml
from pathlib import Path
from datetime import datetime
from typing import Dict, Optional, Any
import pytz

# Set up basic logging first (before config loading)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

# Custom exception classes
class SolanaToolError(Exception):
    """Base exception for all Solana vote tool errors"""
    pass


class RpcError(SolanaToolError):
    """Raised when the RPC endpoint answers with an error (HTTP or JSON-RPC)"""
    def __init__(self, message: str, code: Optional[int] = None, data: Optional[Any] = None):
        super().__init__(message)
        self.code = code
        self.data = data


class NetworkError(SolanaToolError):
    """Raised when network requests fail"""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class SlotSkippedError(SolanaToolError):
    """Raised when the cluster reports that no block exists for a slot"""
    def __init__(self, message: str, slot: Optional[int] = None):
        super().__init__(message)
        self.slot = slot


class ShapeMismatchError(SolanaToolError):
    """Raised when an RPC response is missing an expected field"""
    pass


class VoteDecodeError(SolanaToolError):
    """Raised when vote instruction data cannot be decoded"""
    pass


class LeaderScheduleError(SolanaToolError):
    """Raised when no leader schedule could be obtained"""
    pass


class InvalidInputError(SolanaToolError):
    """Raised when user input is invalid"""
    pass

# Configuration loading
def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file"""
    if config_path is None:
        config_path = Path(__file__).parent / "config.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        # Return defaults if config file doesn't exist
        return {}

    try:
        with open(config_path, 'r') as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load config file {config_path}: {e}")
        return {}

# Load configuration
_config = load_config()

# Reconfigure logging with config if available
_log_config = _config.get('logging', {})
if _log_config:
    log_level = getattr(logging, _log_config.get('level', 'INFO').upper(), logging.INFO)
    log_format = _log_config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    log_datefmt = _log_config.get('datefmt', '%Y-%m-%d %H:%M:%S')
    logging.basicConfig(level=log_level, format=log_format, datefmt=log_datefmt, force=True)

# Well-known program ids
VOTE_PROGRAM_ID = "Vote111111111111111111111111111111111111111"
VOTE_PROGRAM_INVOKE_PREFIX = f"Program {VOTE_PROGRAM_ID} invoke"

UNKNOWN_LEADER = "unknown"

# Constants (with config override support)
_rpc_config = _config.get('rpc', {})
DEFAULT_RPC_URL = _rpc_config.get('url', "https://api.mainnet-beta.solana.com")

# Timeout values (with config override support)
_rpc_timeout_config = _rpc_config.get('timeout', {})
API_TIMEOUT_DEFAULT = _rpc_timeout_config.get('default', 20)
API_TIMEOUT_QUICK = _rpc_timeout_config.get('quick', 10)

# Default headers for RPC requests
DEFAULT_HEADERS = _rpc_config.get('headers', {
    'Content-Type': 'application/json',
    'User-Agent': 'solana-vote-checker/1.0'
})

# Retry and pacing settings (seconds)
_retry_config = _config.get('retry', {})
RETRY_BASE_DELAY = _retry_config.get('base_delay', 3)
RETRY_MAX_ATTEMPTS = _retry_config.get('max_attempts', 5)

_jitter_config = _config.get('jitter', {})
JITTER_MIN = _jitter_config.get('min', 3.0)
JITTER_MAX = _jitter_config.get('max', 6.0)


def settings_from_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Resolve retry and pacing settings from a config dict.

    Args:
        config: Parsed YAML config (may be empty)

    Returns:
        Dict with 'base_delay', 'max_attempts', 'jitter_min' and 'jitter_max',
        falling back to the module defaults for missing keys
    """
    retry = config.get('retry', {}) or {}
    jitter = config.get('jitter', {}) or {}
    return {
        'base_delay': retry.get('base_delay', RETRY_BASE_DELAY),
        'max_attempts': retry.get('max_attempts', RETRY_MAX_ATTEMPTS),
        'jitter_min': jitter.get('min', JITTER_MIN),
        'jitter_max': jitter.get('max', JITTER_MAX),
    }


def format_timestamp(timestamp: int, include_utc: bool = True) -> str:
    """
    Convert a block timestamp to human-readable format with both local and UTC times.

    Args:
        timestamp: Unix timestamp (integer)
        include_utc: If True, include both local and UTC times (default: True)

    Returns:
        Formatted timestamp string
    """
    try:
        # Create UTC datetime
        dt_utc = datetime.fromtimestamp(timestamp, tz=pytz.UTC)

        # Get local timezone
        local_tz = datetime.now().astimezone().tzinfo

        # Convert to local time
        dt_local = dt_utc.astimezone(local_tz)

        if include_utc:
            # Format both times
            utc_str = dt_utc.strftime("%B %d, %Y at %I:%M:%S %p UTC")
            local_str = dt_local.strftime("%B %d, %Y at %I:%M:%S %p %Z")
            return f"{local_str} / {utc_str}"
        else:
            # Format only local time
            return dt_local.strftime("%B %d, %Y at %I:%M:%S %p %Z")
    except (TypeError, ValueError, OverflowError, OSError) as e:
        return f"Unknown timestamp (Error: {e})"


def shorten(value: str, keep: int = 8) -> str:
    """Shorten a base58 identifier for display (e.g. 'Vote1111...1111')"""
    if len(value) <= keep * 2 + 3:
        return value
    return f"{value[:keep]}...{value[-keep:]}"
