#!/usr/bin/env python3
"""
Solana JSON-RPC transport.

Thin wrapper around ``requests`` that sends JSON-RPC 2.0 requests and turns
HTTP failures, JSON-RPC error objects and transport problems into the
tool's exception types. No retrying happens here; see retry_engine.
"""

import requests
from typing import Any, Dict, List, Optional

from solana_utils import RpcError, NetworkError, logger
from solana_base import SolanaTool

# JSON-RPC error codes returned by Solana validators for block lookups
BLOCK_NOT_AVAILABLE = -32004
SLOT_SKIPPED = -32007
LONG_TERM_STORAGE_SLOT_SKIPPED = -32009
BLOCK_STATUS_NOT_AVAILABLE_YET = -32014

GET_BLOCK_CONFIG = {
    "encoding": "json",
    "transactionDetails": "full",
    "rewards": False,
    "maxSupportedTransactionVersion": 0,
}

GET_TRANSACTION_CONFIG = {
    "encoding": "json",
    "commitment": "confirmed",
}


class SolanaRpcClient(SolanaTool):
    """JSON-RPC client for the handful of read-only calls the checker needs."""

    def build_request(self, method: str, params: Optional[List[Any]] = None) -> Dict[str, Any]:
        """Build a JSON-RPC 2.0 request body"""
        body: Dict[str, Any] = {"jsonrpc": "2.0", "id": 1, "method": method}
        if params is not None:
            body["params"] = params
        return body

    def send_request(self, method: str, params: Optional[List[Any]] = None,
                     quick: bool = False) -> Dict[str, Any]:
        """
        Send a JSON-RPC request and return the decoded response.

        Args:
            method: JSON-RPC method name (e.g. 'getBlock')
            params: Positional params list
            quick: Use the quick timeout instead of the default one

        Returns:
            The full JSON-RPC response object

        Raises:
            RpcError: If the endpoint answers with an HTTP error, a JSON-RPC
                error object, or a body that is not JSON
            NetworkError: If the request could not be sent or timed out
        """
        body = self.build_request(method, params)
        logger.debug(f"RPC {method} -> {self.rpc_url} params={params}")

        try:
            response = requests.post(
                self.rpc_url,
                json=body,
                headers=self.headers,
                timeout=self.get_api_timeout(quick=quick),
            )
        except requests.Timeout as e:
            raise NetworkError(f"{method} request timed out: {e}", original_error=e)
        except requests.RequestException as e:
            raise NetworkError(f"Failed to send {method} request: {e}", original_error=e)

        if response.status_code == 429:
            raise RpcError(f"{method} rate limited (HTTP 429)", code=429)

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise RpcError(f"{method} failed with HTTP {response.status_code}: {e}",
                           code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise RpcError(f"Failed to parse {method} response: {e}")

        if not isinstance(data, dict):
            raise RpcError(f"Unexpected {method} response type: {type(data).__name__}")

        error = data.get('error')
        if error:
            if isinstance(error, dict):
                raise RpcError(
                    f"{method} error {error.get('code')}: {error.get('message', 'Unknown error')}",
                    code=error.get('code'),
                    data=error.get('data'),
                )
            raise RpcError(f"{method} error: {error}")

        return data

    def get_block(self, slot: int) -> Optional[Dict[str, Any]]:
        """Fetch a block by slot; returns None when the endpoint has no result yet"""
        return self.send_request("getBlock", [slot, dict(GET_BLOCK_CONFIG)]).get('result')

    def get_transaction(self, signature: str) -> Dict[str, Any]:
        """Fetch a transaction by signature; returns the full response for diagnostics"""
        return self.send_request("getTransaction", [signature, dict(GET_TRANSACTION_CONFIG)])

    def get_epoch_schedule(self) -> Dict[str, Any]:
        """Fetch the cluster's epoch schedule parameters"""
        result = self.send_request("getEpochSchedule", quick=True).get('result')
        if not isinstance(result, dict):
            raise RpcError("getEpochSchedule returned no result")
        return result

    def get_leader_schedule(self, slot: int) -> Optional[Dict[str, List[int]]]:
        """Fetch the leader schedule for the epoch containing ``slot``"""
        return self.send_request("getLeaderSchedule", [slot]).get('result')
