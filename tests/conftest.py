"""Shared pytest fixtures for narfex-deployments tests."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from narfex_deployments.address_book import AddressBook
from narfex_deployments.backends import DeploymentBackend
from narfex_deployments.catalog import ContractSpecCatalog
from narfex_deployments.networks import NetworkProfileRegistry
from narfex_deployments.types import (
    ContractSpec,
    ExecutorSettings,
    GasPolicy,
    GasStrategy,
    NetworkProfile,
    ParameterSpec,
    PreparedDeployment,
    TransactionReceipt,
)

SENDER = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"


class FakeChain(DeploymentBackend):
    """In-memory network: every broadcast is recorded, mining is controllable.

    Nonces count up from 0 per chain; hashes count up from first_hash, so a
    second chain can hand out a different hash for the same nonce.
    """

    def __init__(self, auto_mine: bool = True, first_hash: int = 1):
        self.auto_mine = auto_mine
        self.head = 100
        self.submissions: List[Dict[str, Any]] = []
        self.receipts: Dict[str, TransactionReceipt] = {}
        self.known: set = set()
        self.reverting: set = set()  # contract names that revert once mined
        self.prepare_errors: List[Exception] = []
        self.broadcast_errors: List[Exception] = []
        self.receipt_errors: List[Exception] = []
        self.mined_nonce: Optional[int] = None  # overrides the count of receipts
        self._nonce = 0
        self._next_hash = first_hash

    def prepare(self, spec: ContractSpec, args: List[Any]) -> PreparedDeployment:
        if self.prepare_errors:
            raise self.prepare_errors.pop(0)
        transaction_hash = "0x%064x" % self._next_hash
        self._next_hash += 1
        self._nonce += 1
        return PreparedDeployment(
            contract=spec.name,
            data="0x6080",
            sender=SENDER,
            nonce=self._nonce - 1,
            transaction_hash=transaction_hash,
            raw_transaction="0xf86c",
            transaction={"args": list(args)},
        )

    def broadcast(self, prepared: PreparedDeployment) -> str:
        if self.broadcast_errors:
            raise self.broadcast_errors.pop(0)
        self.submissions.append(
            {
                "contract": prepared.contract,
                "args": prepared.transaction["args"],
                "hash": prepared.transaction_hash,
            }
        )
        self.known.add(prepared.transaction_hash)
        if self.auto_mine:
            self.mine(prepared.transaction_hash, success=prepared.contract not in self.reverting)
        return prepared.transaction_hash

    def mine(self, transaction_hash: str, success: bool = True) -> TransactionReceipt:
        number = int(transaction_hash, 16)
        receipt = TransactionReceipt(
            transaction_hash=transaction_hash,
            block=self.head,
            success=success,
            contract_address="0x%040x" % (0xC0DE0000 + number) if success else None,
            revert_reason=None if success else "Ownable: caller is not the owner",
        )
        self.receipts[transaction_hash] = receipt
        return receipt

    def get_receipt(self, transaction_hash: str) -> Optional[TransactionReceipt]:
        if self.receipt_errors:
            raise self.receipt_errors.pop(0)
        return self.receipts.get(transaction_hash)

    def is_known(self, transaction_hash: str) -> bool:
        return transaction_hash in self.known or transaction_hash in self.receipts

    def confirmed_nonce(self) -> int:
        if self.mined_nonce is not None:
            return self.mined_nonce
        return len(self.receipts)

    def block_number(self) -> int:
        return self.head

    def address_of(self, contract: str) -> Optional[str]:
        for submission in self.submissions:
            if submission["contract"] == contract:
                receipt = self.receipts.get(submission["hash"])
                return receipt.contract_address if receipt else None
        return None


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the path to the fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_plan_json(fixtures_dir: Path) -> Dict[str, Any]:
    """Load and return the sample plan fixture."""
    with open(fixtures_dir / "sample_plan.json") as f:
        return json.load(f)


@pytest.fixture
def local_profile() -> NetworkProfile:
    """A local network profile with a fixed gas price."""
    return NetworkProfile(
        name="localhost",
        rpc_url="http://127.0.0.1:8545",
        chain_id=31337,
        gas=GasPolicy(strategy=GasStrategy.FIXED, price=1_000_000_000),
        credential="env:DEPLOYER_PRIVATE_KEY",
    )


@pytest.fixture
def registry(local_profile: NetworkProfile) -> NetworkProfileRegistry:
    """Frozen registry holding only the local profile."""
    return NetworkProfileRegistry.from_profiles([local_profile])


@pytest.fixture
def catalog() -> ContractSpecCatalog:
    """Catalog with a token, a pool, a router and a parameterless contract."""
    catalog = ContractSpecCatalog()
    catalog.register(ContractSpec(name="Token", params=(ParameterSpec("supply", "uint256"),), bytecode="0x6080"))
    catalog.register(
        ContractSpec(
            name="Pool",
            params=(ParameterSpec("token", "address"), ParameterSpec("router", "address")),
            bytecode="0x6080",
        )
    )
    catalog.register(
        ContractSpec(
            name="Router",
            params=(ParameterSpec("pool", "address"), ParameterSpec("usdc", "address")),
            bytecode="0x6080",
        )
    )
    catalog.register(ContractSpec(name="Balances", bytecode="0x6080"))
    return catalog


@pytest.fixture
def address_book(tmp_path: Path) -> AddressBook:
    """Address book in a temporary state directory."""
    return AddressBook(tmp_path / "address_book")


@pytest.fixture
def chain() -> FakeChain:
    """Fake network that mines every broadcast immediately."""
    return FakeChain()


@pytest.fixture
def fast_settings() -> ExecutorSettings:
    """Executor settings without real waiting."""
    return ExecutorSettings(
        confirmation_timeout=0,
        poll_interval=0,
        max_attempts=3,
        initial_backoff=1.0,
        max_backoff=4.0,
    )


@pytest.fixture
def sleeps() -> List[float]:
    """Collects the delays passed to the injected sleep function."""
    return []


@pytest.fixture
def make_chain():
    """Factory for further fake networks (e.g. one that lost a transaction)."""
    return FakeChain
