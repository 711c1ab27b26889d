"""JSON-RPC client for narfex-deployments library."""

import itertools
import logging
from typing import Any, Dict, List, Optional

import requests

from .constants import RPC_TIMEOUT, TRANSIENT_HTTP_STATUS, TRANSIENT_RPC_ERROR_CODES
from .exceptions import RpcError, TransientNetworkError

logger = logging.getLogger(__name__)


class JsonRpcClient:
    """
    Minimal Ethereum JSON-RPC 2.0 client over HTTP.

    Failures are classified for the executor: anything worth retrying raises
    TransientNetworkError, everything else RpcError.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = RPC_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Perform a JSON-RPC call.

        Args:
            method: RPC method name (e.g. "eth_chainId")
            params: Positional parameters

        Returns:
            The "result" member of the response

        Raises:
            TransientNetworkError: On connection errors, timeouts, rate limiting
            RpcError: If the node returns an error or a malformed response
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }

        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientNetworkError(f"Network error during {method}: {e}") from e
        except requests.RequestException as e:
            raise RpcError(f"Request error during {method}: {e}") from e

        # Check for HTTP errors
        if response.status_code in TRANSIENT_HTTP_STATUS:
            raise TransientNetworkError(
                f"RPC request {method} failed with status {response.status_code}"
            )
        if response.status_code != 200:
            raise RpcError(f"RPC request {method} failed with status {response.status_code}")

        try:
            result = response.json()
        except ValueError as e:
            raise RpcError(f"RPC response to {method} is not JSON") from e

        # Check for RPC errors
        if "error" in result:
            error = result["error"] or {}
            code = error.get("code")
            message = error.get("message") or ""
            if code in TRANSIENT_RPC_ERROR_CODES or "rate limit" in message.lower():
                raise TransientNetworkError(f"RPC error during {method}: {message} ({code})")
            raise RpcError(f"RPC error during {method}: {message}", code=code, data=error.get("data"))

        if "result" not in result:
            raise RpcError(f"RPC response to {method} has no result")

        return result["result"]

    def chain_id(self) -> int:
        return int(self.call("eth_chainId"), 16)

    def block_number(self) -> int:
        return int(self.call("eth_blockNumber"), 16)

    def gas_price(self) -> int:
        return int(self.call("eth_gasPrice"), 16)

    def estimate_gas(self, transaction: Dict[str, Any]) -> int:
        return int(self.call("eth_estimateGas", [transaction]), 16)

    def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(self.call("eth_getTransactionCount", [address, block]), 16)

    def send_raw_transaction(self, raw_transaction: str) -> str:
        return self.call("eth_sendRawTransaction", [raw_transaction])

    def send_transaction(self, transaction: Dict[str, Any]) -> str:
        return self.call("eth_sendTransaction", [transaction])

    def get_transaction(self, transaction_hash: str) -> Optional[Dict[str, Any]]:
        return self.call("eth_getTransactionByHash", [transaction_hash])

    def get_transaction_receipt(self, transaction_hash: str) -> Optional[Dict[str, Any]]:
        return self.call("eth_getTransactionReceipt", [transaction_hash])

    def eth_call(self, transaction: Dict[str, Any], block: str = "latest") -> str:
        return self.call("eth_call", [transaction, block])
