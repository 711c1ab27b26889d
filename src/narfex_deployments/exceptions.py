"""Custom exception classes for narfex-deployments library."""

from typing import List, Optional


class DeploymentError(Exception):
    """Base exception for deployment-related errors."""

    @property
    def kind(self) -> str:
        """Error kind reported to the user (the exception class name)."""
        return type(self).__name__


class DuplicateNetwork(DeploymentError, ValueError):
    """Raised when a network name or chain id is registered twice."""

    pass


class UnknownNetwork(DeploymentError, KeyError):
    """Raised when a requested network profile is not registered."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep plain messages
        return Exception.__str__(self)


class RegistryFrozenError(DeploymentError, RuntimeError):
    """Raised when registering a network after the registry was loaded."""

    pass


class DuplicateSpec(DeploymentError, ValueError):
    """Raised when a contract spec name is registered twice."""

    pass


class UnknownSpec(DeploymentError, KeyError):
    """Raised when a requested contract spec is not in the catalog."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class MalformedSpec(DeploymentError, ValueError):
    """Raised when a contract spec or its parameter list is structurally invalid."""

    pass


class InvalidPlan(DeploymentError, ValueError):
    """Raised when a deployment plan cannot be executed as authored."""

    pass


class CyclicDependency(DeploymentError, ValueError):
    """Raised when the units of a plan reference each other in a cycle."""

    def __init__(self, message: str, cycle: Optional[List[str]] = None):
        super().__init__(message)
        self.cycle = list(cycle or [])


class UnresolvedReference(DeploymentError, LookupError):
    """Raised when a reference names neither a plan unit nor a known address."""

    def __init__(
        self,
        message: str,
        reference: Optional[str] = None,
        instance_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.reference = reference
        self.instance_id = instance_id


class CredentialError(DeploymentError, ValueError):
    """Raised when a signing credential reference cannot be resolved."""

    pass


class RpcError(DeploymentError, RuntimeError):
    """Raised when the node answers a JSON-RPC call with a non-retryable error."""

    def __init__(self, message: str, code: Optional[int] = None, data: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.data = data


class TransientNetworkError(DeploymentError, ConnectionError):
    """Raised for RPC failures worth retrying (connection reset, rate limiting)."""

    pass


class ExecutionFailure(DeploymentError):
    """Base class for errors raised while a unit is being deployed."""

    def __init__(self, message: str, instance_id: Optional[str] = None):
        super().__init__(message)
        self.instance_id = instance_id


class OnChainRevert(ExecutionFailure, RuntimeError):
    """Raised when a deployment transaction reverts. Never retried."""

    def __init__(
        self,
        message: str,
        instance_id: Optional[str] = None,
        reason: Optional[str] = None,
        transaction_hash: Optional[str] = None,
    ):
        super().__init__(message, instance_id)
        self.reason = reason
        self.transaction_hash = transaction_hash


class ConfirmationTimeout(ExecutionFailure, TimeoutError):
    """Raised when a submitted deployment is not confirmed in time.

    The unit's record stays pending and is reconciled on the next run.
    """

    def __init__(
        self,
        message: str,
        instance_id: Optional[str] = None,
        transaction_hash: Optional[str] = None,
    ):
        super().__init__(message, instance_id)
        self.transaction_hash = transaction_hash


class UnsettledTransaction(ExecutionFailure, RuntimeError):
    """Raised when a pending deployment vanished but its nonce has been used.

    Sending it again could deploy the contract twice, so the record stays
    pending until the transaction that took the nonce is found.
    """

    def __init__(
        self,
        message: str,
        instance_id: Optional[str] = None,
        transaction_hash: Optional[str] = None,
        nonce: Optional[int] = None,
    ):
        super().__init__(message, instance_id)
        self.transaction_hash = transaction_hash
        self.nonce = nonce


class AddressBookCorruption(DeploymentError, RuntimeError):
    """Raised when a persisted address book cannot be read back safely."""

    def __init__(self, message: str, network: Optional[str] = None):
        super().__init__(message)
        self.network = network


class RecordNotFound(DeploymentError, KeyError):
    """Raised when the address book holds no record for an instance."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class DeploymentRunError(DeploymentError, RuntimeError):
    """Raised when a deployment run finishes with at least one failed unit."""

    def __init__(self, message: str, instance_id: Optional[str] = None, cause_kind: Optional[str] = None):
        super().__init__(message)
        self.instance_id = instance_id
        self.cause_kind = cause_kind
