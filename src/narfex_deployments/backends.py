"""Network-level deployment backends for narfex-deployments library."""

import logging
from typing import Any, Dict, List, Mapping, Optional

from eth_abi import decode, encode
from eth_abi.exceptions import EncodingError
from eth_account import Account
from eth_utils import to_checksum_address

from .constants import ALREADY_KNOWN_MESSAGES, ERROR_STRING_SELECTOR
from .credentials import resolve_credential
from .exceptions import CredentialError, InvalidPlan, OnChainRevert, RpcError
from .parsers import load_artifact
from .rpc import JsonRpcClient
from .types import (
    ContractSpec,
    GasStrategy,
    NetworkProfile,
    PreparedDeployment,
    TransactionReceipt,
)

logger = logging.getLogger(__name__)

# Credential references of this form deploy from an account the node manages
UNLOCKED_PREFIX = "unlocked:"


class DeploymentBackend:
    """
    Interface between the executor and a network.

    Implementations raise TransientNetworkError for retryable failures and
    OnChainRevert when the network rejects the deployment deterministically.
    prepare() has no side effects; broadcast() of the same prepared
    deployment may be repeated safely.
    """

    def prepare(self, spec: ContractSpec, args: List[Any]) -> PreparedDeployment:
        """Build (and sign, where possible) a deployment of spec with resolved args."""
        raise NotImplementedError

    def broadcast(self, prepared: PreparedDeployment) -> str:
        """Send a prepared deployment, returning its transaction hash."""
        raise NotImplementedError

    def get_receipt(self, transaction_hash: str) -> Optional[TransactionReceipt]:
        """Receipt of a mined transaction, None while it is not mined."""
        raise NotImplementedError

    def is_known(self, transaction_hash: str) -> bool:
        """Whether the node still knows a transaction (mined or in its pool)."""
        raise NotImplementedError

    def confirmed_nonce(self) -> int:
        """Number of the sender's transactions mined so far (the lowest unused nonce)."""
        raise NotImplementedError

    def block_number(self) -> int:
        raise NotImplementedError


def coerce_argument(abi_type: str, value: Any) -> Any:
    """
    Convert a JSON literal into the Python value eth_abi expects for a type.

    Hex strings become bytes for bytes types, numeric strings become ints
    for integer types, addresses are checksummed.
    """
    if abi_type.endswith("]"):
        element_type = abi_type[: abi_type.rindex("[")]
        return [coerce_argument(element_type, item) for item in value]

    if abi_type == "address":
        return to_checksum_address(value)

    if abi_type.startswith("bytes") and isinstance(value, str):
        hex_value = value[2:] if value.startswith("0x") else value
        return bytes.fromhex(hex_value)

    if abi_type.startswith(("uint", "int")) and isinstance(value, str):
        return int(value, 0)

    if abi_type == "bool" and isinstance(value, str):
        return value.strip().lower() == "true"

    return value


def encode_deploy_data(bytecode: str, abi_types: List[str], args: List[Any]) -> str:
    """
    Build the data field of a contract-creation transaction.

    Args:
        bytecode: 0x-prefixed creation bytecode
        abi_types: Constructor parameter types
        args: Constructor arguments, one per type

    Returns:
        0x-prefixed hex string: bytecode followed by the ABI-encoded args
    """
    if len(abi_types) != len(args):
        raise InvalidPlan(f"Expected {len(abi_types)} constructor arguments, got {len(args)}")

    try:
        values = [coerce_argument(t, v) for t, v in zip(abi_types, args)]
        encoded = encode(abi_types, values) if abi_types else b""
    except (EncodingError, ValueError, TypeError) as e:
        raise InvalidPlan(f"Cannot encode constructor arguments {args!r}: {e}") from e
    return bytecode + encoded.hex()


def decode_revert_reason(data: Any) -> Optional[str]:
    """Decode an Error(string) revert payload, None for anything else."""
    if not isinstance(data, str) or not data.startswith(ERROR_STRING_SELECTOR):
        return None
    try:
        return decode(["string"], bytes.fromhex(data[len(ERROR_STRING_SELECTOR):]))[0]
    except Exception:  # Malformed payloads carry no readable reason
        return None


def _is_revert(error: RpcError) -> bool:
    return error.code == 3 or "revert" in str(error).lower()


class JsonRpcDeploymentBackend(DeploymentBackend):
    """Deploys through a node's JSON-RPC endpoint, signing locally when possible."""

    def __init__(
        self,
        profile: NetworkProfile,
        client: Optional[JsonRpcClient] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize the backend.

        Args:
            profile: Network to deploy to
            client: JSON-RPC client (defaults to one for profile.rpc_url)
            environ: Environment for credential lookup (defaults to os.environ)
        """
        self.profile = profile
        self.client = client or JsonRpcClient(profile.rpc_url)
        self._environ = environ
        self._account = None
        self._sender: Optional[str] = None
        self._chain_checked = False
        self._bytecode_cache: Dict[str, str] = {}

    @property
    def sender(self) -> str:
        """Address deployments are sent from."""
        if self._sender is None:
            self._load_signer()
        return self._sender

    def prepare(self, spec: ContractSpec, args: List[Any]) -> PreparedDeployment:
        self._check_chain()

        data = encode_deploy_data(self._bytecode(spec), spec.abi_types, args)
        sender = self.sender
        transaction: Dict[str, Any] = {"from": sender, "data": data, "value": "0x0"}

        # Gas
        try:
            estimated = self.client.estimate_gas(transaction)
        except RpcError as e:
            if _is_revert(e):
                reason = decode_revert_reason(e.data) or str(e)
                raise OnChainRevert(
                    f"Deployment of {spec.name} reverts: {reason}", reason=reason
                ) from e
            raise
        gas_limit = int(estimated * self.profile.gas.limit_multiplier)
        gas_price = self._gas_price()
        nonce = self.client.get_transaction_count(sender, "pending")

        logger.debug(
            "Prepared %s from %s (nonce=%d, gas=%d, gasPrice=%d)",
            spec.name,
            sender,
            nonce,
            gas_limit,
            gas_price,
        )

        if self._account is None:
            transaction.update(
                {"gas": hex(gas_limit), "gasPrice": hex(gas_price), "nonce": hex(nonce)}
            )
            return PreparedDeployment(
                contract=spec.name,
                data=data,
                sender=sender,
                nonce=nonce,
                transaction=transaction,
            )

        signed = self._account.sign_transaction(
            {
                "nonce": nonce,
                "gasPrice": gas_price,
                "gas": gas_limit,
                "value": 0,
                "data": data,
                "chainId": self.profile.chain_id,
            }
        )
        return PreparedDeployment(
            contract=spec.name,
            data=data,
            sender=sender,
            nonce=nonce,
            transaction_hash="0x" + bytes(signed.hash).hex(),
            raw_transaction="0x" + bytes(signed.raw_transaction).hex(),
        )

    def broadcast(self, prepared: PreparedDeployment) -> str:
        if prepared.raw_transaction is None:
            return self.client.send_transaction(prepared.transaction)

        try:
            return self.client.send_raw_transaction(prepared.raw_transaction)
        except RpcError as e:
            # A repeated broadcast of the same signed transaction
            if not any(m in str(e).lower() for m in ALREADY_KNOWN_MESSAGES):
                raise
            logger.info(
                "Transaction %s was already known to the node", prepared.transaction_hash
            )
            return prepared.transaction_hash

    def get_receipt(self, transaction_hash: str) -> Optional[TransactionReceipt]:
        receipt = self.client.get_transaction_receipt(transaction_hash)
        if receipt is None or receipt.get("blockNumber") is None:
            return None

        block = int(receipt["blockNumber"], 16)
        # Pre-Byzantium receipts have no status
        success = int(receipt.get("status") or "0x1", 16) == 1
        contract_address = receipt.get("contractAddress")
        if contract_address:
            contract_address = to_checksum_address(contract_address)

        revert_reason = None
        if not success:
            revert_reason = self._replay_for_reason(transaction_hash, block)

        return TransactionReceipt(
            transaction_hash=transaction_hash,
            block=block,
            success=success,
            contract_address=contract_address,
            revert_reason=revert_reason,
        )

    def is_known(self, transaction_hash: str) -> bool:
        return self.client.get_transaction(transaction_hash) is not None

    def confirmed_nonce(self) -> int:
        return self.client.get_transaction_count(self.sender, "latest")

    def block_number(self) -> int:
        return self.client.block_number()

    def _load_signer(self) -> None:
        reference = self.profile.credential
        if reference and reference.startswith(UNLOCKED_PREFIX):
            self._sender = to_checksum_address(reference[len(UNLOCKED_PREFIX):])
            return

        secret = resolve_credential(reference, self._environ)
        try:
            self._account = Account.from_key(secret)
        except Exception as e:
            # Never echo the secret itself
            raise CredentialError(
                f"Credential '{reference}' of network '{self.profile.name}' "
                "is not a valid private key"
            ) from e
        self._sender = self._account.address

    def _check_chain(self) -> None:
        if self._chain_checked:
            return
        chain_id = self.client.chain_id()
        if chain_id != self.profile.chain_id:
            raise RpcError(
                f"Endpoint of network '{self.profile.name}' reports chain id {chain_id}, "
                f"expected {self.profile.chain_id}"
            )
        self._chain_checked = True

    def _gas_price(self) -> int:
        if self.profile.gas.strategy is GasStrategy.FIXED:
            return self.profile.gas.price
        return self.client.gas_price()

    def _bytecode(self, spec: ContractSpec) -> str:
        if spec.bytecode:
            return spec.bytecode if spec.bytecode.startswith("0x") else "0x" + spec.bytecode
        if spec.name not in self._bytecode_cache:
            self._bytecode_cache[spec.name] = load_artifact(spec.artifact)["bytecode"]
        return self._bytecode_cache[spec.name]

    def _replay_for_reason(self, transaction_hash: str, block: int) -> Optional[str]:
        transaction = self.client.get_transaction(transaction_hash)
        if transaction is None:
            return None
        try:
            self.client.eth_call(
                {"from": transaction["from"], "data": transaction["input"]}, hex(block)
            )
        except RpcError as e:
            return decode_revert_reason(e.data) or str(e)
        return None
