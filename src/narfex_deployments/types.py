"""Data types and dataclasses for narfex-deployments library."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class GasStrategy(Enum):
    """How the gas price of a deployment transaction is chosen."""

    FIXED = "fixed"
    ESTIMATED = "estimated"


class RecordStatus(Enum):
    """
    Lifecycle state of a deployment record.

    Value strings define de/serialization law for the address book.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ExecutionPolicy(Enum):
    """What the executor does with the rest of a plan after a unit fails."""

    STRICT = "strict"  # stop the whole run
    LENIENT = "lenient"  # keep deploying independent subgraphs


@dataclass(frozen=True)
class GasPolicy:
    """Gas price policy of a network."""

    strategy: GasStrategy = GasStrategy.ESTIMATED
    price: Optional[int] = None  # wei, required for FIXED
    limit_multiplier: float = 1.2  # applied to eth_estimateGas

    def __post_init__(self):
        if self.strategy is GasStrategy.FIXED and self.price is None:
            raise ValueError("Fixed gas policy requires a gas price")


@dataclass(frozen=True)
class NetworkProfile:
    """Connection and signing settings of one network."""

    name: str
    rpc_url: str
    chain_id: int
    gas: GasPolicy = field(default_factory=GasPolicy)
    credential: Optional[str] = None  # e.g. "env:DEPLOYER_PRIVATE_KEY"
    confirmations: int = 1
    block_explorer_url: Optional[str] = None

    def __post_init__(self):
        if self.confirmations < 1:
            raise ValueError(f"Network '{self.name}' needs at least one confirmation")


@dataclass(frozen=True)
class Literal:
    """A constructor argument known when the plan is authored."""

    value: Any


@dataclass(frozen=True)
class Reference:
    """A constructor argument bound to the deployed address of another instance."""

    instance_id: str


Descriptor = Union[Literal, Reference]


@dataclass(frozen=True)
class ParameterSpec:
    """One constructor parameter of a contract spec."""

    name: str
    abi_type: str  # e.g. "address", "uint256", "bytes32"
    default: Optional[Descriptor] = None


@dataclass(frozen=True)
class ContractSpec:
    """Template of a deployable unit."""

    name: str
    params: Tuple[ParameterSpec, ...] = ()
    artifact: Optional[str] = None  # hardhat artifact JSON (abi + bytecode)
    bytecode: Optional[str] = None

    @property
    def abi_types(self) -> List[str]:
        return [p.abi_type for p in self.params]


@dataclass(frozen=True)
class DeploymentUnit:
    """One contract instance to deploy within a plan."""

    instance_id: str
    contract: str  # ContractSpec name
    bindings: Tuple[Descriptor, ...] = ()

    @property
    def references(self) -> List[str]:
        """Instance ids this unit depends on, in binding order."""
        return [b.instance_id for b in self.bindings if isinstance(b, Reference)]


@dataclass(frozen=True)
class DeploymentPlan:
    """The set of units targeted at one network for one run."""

    network: str
    units: Tuple[DeploymentUnit, ...] = ()
    external: Dict[str, str] = field(default_factory=dict)  # instance id -> address
    name: Optional[str] = None

    def unit(self, instance_id: str) -> Optional[DeploymentUnit]:
        for unit in self.units:
            if unit.instance_id == instance_id:
                return unit
        return None

    @property
    def instance_ids(self) -> List[str]:
        return [u.instance_id for u in self.units]


@dataclass(frozen=True)
class DeploymentRecord:
    """One append-only entry of the address book."""

    # Required fields
    instance_id: str
    network: str
    status: RecordStatus
    timestamp: int  # Unix timestamp

    # Optional fields
    contract: Optional[str] = None
    address: Optional[str] = None  # Checksummed address, set once confirmed
    transaction_hash: Optional[str] = None
    nonce: Optional[int] = None  # sender nonce of transaction_hash
    block: Optional[int] = None
    constructor_args: Optional[List[Any]] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status is RecordStatus.CONFIRMED

    def evolve(self, **changes: Any) -> "DeploymentRecord":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: Dict[str, Any] = {
            "instance_id": self.instance_id,
            "network": self.network,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }

        # Add optional fields
        for optional_field in [
            "contract",
            "address",
            "transaction_hash",
            "nonce",
            "block",
            "constructor_args",
            "error_kind",
            "error",
        ]:
            value = getattr(self, optional_field)
            if value is not None:
                result[optional_field] = value

        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentRecord":
        return cls(
            instance_id=data["instance_id"],
            network=data["network"],
            status=RecordStatus(data["status"]),
            timestamp=data["timestamp"],
            contract=data.get("contract"),
            address=data.get("address"),
            transaction_hash=data.get("transaction_hash"),
            nonce=data.get("nonce"),
            block=data.get("block"),
            constructor_args=data.get("constructor_args"),
            error_kind=data.get("error_kind"),
            error=data.get("error"),
        )


@dataclass
class PreparedDeployment:
    """A deployment transaction built and ready to broadcast."""

    contract: str
    data: str  # bytecode + encoded constructor args
    sender: str
    nonce: int
    transaction_hash: Optional[str] = None  # known up front when signed locally
    raw_transaction: Optional[str] = None  # signed payload for eth_sendRawTransaction
    transaction: Optional[Dict[str, Any]] = None  # unsigned payload for eth_sendTransaction


@dataclass
class TransactionReceipt:
    """Subset of an eth_getTransactionReceipt result the executor needs."""

    transaction_hash: str
    block: int
    success: bool
    contract_address: Optional[str] = None
    revert_reason: Optional[str] = None


@dataclass
class ExecutorSettings:
    """Tunables of a deployment run."""

    confirmation_timeout: float = 300.0  # seconds
    poll_interval: float = 2.0  # seconds
    max_attempts: int = 5  # per RPC operation, transient errors only
    initial_backoff: float = 1.0  # seconds
    max_backoff: float = 30.0  # seconds
    policy: ExecutionPolicy = ExecutionPolicy.STRICT


@dataclass
class ExecutionResult:
    """Outcome of one executor run over a resolved plan."""

    network: str
    order: List[str] = field(default_factory=list)
    deployed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    blocked: List[str] = field(default_factory=list)
    errors: Dict[str, Exception] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.failed and not self.blocked

    @property
    def first_failure(self) -> Optional[Tuple[str, Exception]]:
        for instance_id in self.failed:
            return instance_id, self.errors[instance_id]
        return None
