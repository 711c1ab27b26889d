"""Unit tests for custom exception classes."""

import pytest

from narfex_deployments.exceptions import (
    AddressBookCorruption,
    ConfirmationTimeout,
    CredentialError,
    CyclicDependency,
    DeploymentError,
    DeploymentRunError,
    DuplicateNetwork,
    DuplicateSpec,
    ExecutionFailure,
    InvalidPlan,
    MalformedSpec,
    OnChainRevert,
    RecordNotFound,
    RegistryFrozenError,
    RpcError,
    TransientNetworkError,
    UnknownNetwork,
    UnknownSpec,
    UnresolvedReference,
    UnsettledTransaction,
)


class TestExceptionCatching:
    """Test that exceptions can be caught as their base types."""

    def test_catch_unknown_network_as_key_error(self):
        """Test that UnknownNetwork can be caught as KeyError."""
        with pytest.raises(KeyError):
            raise UnknownNetwork("test")

    def test_catch_duplicate_network_as_value_error(self):
        """Test that DuplicateNetwork can be caught as ValueError."""
        with pytest.raises(ValueError):
            raise DuplicateNetwork("test")

    def test_catch_malformed_spec_as_value_error(self):
        """Test that MalformedSpec can be caught as ValueError."""
        with pytest.raises(ValueError):
            raise MalformedSpec("test")

    def test_catch_transient_error_as_connection_error(self):
        """Test that TransientNetworkError can be caught as ConnectionError."""
        with pytest.raises(ConnectionError):
            raise TransientNetworkError("test")

    def test_catch_confirmation_timeout_as_timeout_error(self):
        """Test that ConfirmationTimeout can be caught as TimeoutError."""
        with pytest.raises(TimeoutError):
            raise ConfirmationTimeout("test")

    def test_catch_execution_failures_as_execution_failure(self):
        """Test that per-unit failures share the ExecutionFailure base."""
        for exc in [OnChainRevert("test"), ConfirmationTimeout("test")]:
            with pytest.raises(ExecutionFailure):
                raise exc

    def test_catch_all_as_deployment_error(self):
        """Test that all custom exceptions can be caught as DeploymentError."""
        exceptions = [
            DuplicateNetwork("test"),
            UnknownNetwork("test"),
            RegistryFrozenError("test"),
            DuplicateSpec("test"),
            UnknownSpec("test"),
            MalformedSpec("test"),
            InvalidPlan("test"),
            CyclicDependency("test"),
            UnresolvedReference("test"),
            CredentialError("test"),
            RpcError("test"),
            TransientNetworkError("test"),
            OnChainRevert("test"),
            ConfirmationTimeout("test"),
            UnsettledTransaction("test"),
            AddressBookCorruption("test"),
            RecordNotFound("test"),
            DeploymentRunError("test"),
        ]

        for exc in exceptions:
            with pytest.raises(DeploymentError):
                raise exc


class TestExceptionDetails:
    """Test the attributes carried by exceptions."""

    def test_kind_is_class_name(self):
        """Test that kind names the concrete exception class."""
        assert OnChainRevert("test").kind == "OnChainRevert"
        assert UnknownSpec("test").kind == "UnknownSpec"

    def test_key_errors_keep_plain_message(self):
        """Test that KeyError subclasses do not quote their message."""
        assert str(UnknownNetwork("Network 'x' not found")) == "Network 'x' not found"
        assert str(RecordNotFound("missing")) == "missing"

    def test_cyclic_dependency_carries_cycle(self):
        """Test that CyclicDependency exposes the cycle members."""
        error = CyclicDependency("a -> b -> a", cycle=["a", "b"])
        assert error.cycle == ["a", "b"]

    def test_unresolved_reference_carries_names(self):
        """Test that UnresolvedReference names the reference and its unit."""
        error = UnresolvedReference("test", reference="router", instance_id="pool")
        assert error.reference == "router"
        assert error.instance_id == "pool"

    def test_on_chain_revert_carries_reason(self):
        """Test that OnChainRevert exposes reason and transaction hash."""
        error = OnChainRevert("test", instance_id="pool", reason="nope", transaction_hash="0xab")
        assert error.instance_id == "pool"
        assert error.reason == "nope"
        assert error.transaction_hash == "0xab"

    def test_rpc_error_carries_code_and_data(self):
        """Test that RpcError exposes the JSON-RPC error code and data."""
        error = RpcError("test", code=3, data="0x08c379a0")
        assert error.code == 3
        assert error.data == "0x08c379a0"
