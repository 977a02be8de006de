#!/usr/bin/env python3
"""
Solana Vote Tools - Base Class

Base class providing common functionality for all vote checker components
that talk to an RPC endpoint.
"""

from typing import Dict, Optional
from abc import ABC

from solana_utils import (
    DEFAULT_RPC_URL, DEFAULT_HEADERS, API_TIMEOUT_DEFAULT, API_TIMEOUT_QUICK,
    RETRY_BASE_DELAY, RETRY_MAX_ATTEMPTS
)


class SolanaTool(ABC):
    """
    Base class for all Solana vote checker components.

    Provides the endpoint, headers and retry budget shared by every
    component in a run.
    """

    def __init__(self, rpc_url: Optional[str] = None,
                 headers: Optional[Dict[str, str]] = None,
                 base_delay: Optional[float] = None,
                 max_attempts: Optional[int] = None) -> None:
        """
        Initialize the Solana tool.

        Args:
            rpc_url: Optional custom RPC endpoint (defaults to DEFAULT_RPC_URL)
            headers: Optional custom headers (defaults to DEFAULT_HEADERS)
            base_delay: First retry delay in seconds (defaults to RETRY_BASE_DELAY)
            max_attempts: Maximum calls per operation (defaults to RETRY_MAX_ATTEMPTS)
        """
        self.rpc_url: str = rpc_url or DEFAULT_RPC_URL
        self.headers: Dict[str, str] = headers or DEFAULT_HEADERS.copy()
        self.base_delay: float = RETRY_BASE_DELAY if base_delay is None else base_delay
        self.max_attempts: int = RETRY_MAX_ATTEMPTS if max_attempts is None else max_attempts

    def get_api_timeout(self, quick: bool = False) -> int:
        """
        Get API timeout value from config.

        Args:
            quick: If True, return quick timeout, otherwise default timeout

        Returns:
            Timeout value in seconds (from config or defaults)
        """
        return API_TIMEOUT_QUICK if quick else API_TIMEOUT_DEFAULT

    def __repr__(self) -> str:
        """String representation of the tool"""
        return f"{self.__class__.__name__}(rpc_url={self.rpc_url})"
