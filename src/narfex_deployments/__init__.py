"""
narfex-deployments: Python library for orchestrating Narfex smart contract deployments
"""

from importlib.metadata import PackageNotFoundError, version

from .address_book import AddressBook
from .backends import DeploymentBackend, JsonRpcDeploymentBackend
from .catalog import ContractSpecCatalog
from .deployments import DeploymentOrchestrator
from .exceptions import (
    AddressBookCorruption,
    ConfirmationTimeout,
    CyclicDependency,
    DeploymentError,
    DeploymentRunError,
    DuplicateNetwork,
    DuplicateSpec,
    InvalidPlan,
    MalformedSpec,
    OnChainRevert,
    RecordNotFound,
    TransientNetworkError,
    UnknownNetwork,
    UnknownSpec,
    UnresolvedReference,
    UnsettledTransaction,
)
from .executor import DeploymentExecutor
from .networks import NetworkProfileRegistry
from .reporter import DeploymentReporter
from .resolver import DependencyGraphResolver
from .types import (
    ContractSpec,
    DeploymentPlan,
    DeploymentRecord,
    DeploymentUnit,
    ExecutionPolicy,
    ExecutorSettings,
    GasPolicy,
    GasStrategy,
    Literal,
    NetworkProfile,
    ParameterSpec,
    RecordStatus,
    Reference,
)

try:
    __version__ = version("narfex-deployments")
except PackageNotFoundError:
    __version__ = None

__all__ = [
    "DeploymentOrchestrator",
    "DependencyGraphResolver",
    "DeploymentExecutor",
    "DeploymentReporter",
    "AddressBook",
    "NetworkProfileRegistry",
    "ContractSpecCatalog",
    "DeploymentBackend",
    "JsonRpcDeploymentBackend",
    "NetworkProfile",
    "GasPolicy",
    "GasStrategy",
    "ContractSpec",
    "ParameterSpec",
    "Literal",
    "Reference",
    "DeploymentUnit",
    "DeploymentPlan",
    "DeploymentRecord",
    "RecordStatus",
    "ExecutionPolicy",
    "ExecutorSettings",
    "DeploymentError",
    "DuplicateNetwork",
    "UnknownNetwork",
    "DuplicateSpec",
    "UnknownSpec",
    "MalformedSpec",
    "InvalidPlan",
    "CyclicDependency",
    "UnresolvedReference",
    "TransientNetworkError",
    "OnChainRevert",
    "ConfirmationTimeout",
    "UnsettledTransaction",
    "AddressBookCorruption",
    "RecordNotFound",
    "DeploymentRunError",
]
