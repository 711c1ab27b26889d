"""Unit tests for NetworkProfileRegistry."""

import pytest

from narfex_deployments.constants import NETWORK_CONFIG
from narfex_deployments.exceptions import DuplicateNetwork, RegistryFrozenError, UnknownNetwork
from narfex_deployments.networks import NetworkProfileRegistry, gas_policy_from_price
from narfex_deployments.types import GasPolicy, GasStrategy, NetworkProfile


def make_profile(name: str = "bsc", chain_id: int = 56) -> NetworkProfile:
    return NetworkProfile(name=name, rpc_url=f"https://{name}.example", chain_id=chain_id)


class TestRegister:
    """Test registering network profiles."""

    def test_register_and_lookup(self):
        """Test that a registered profile can be looked up by name."""
        registry = NetworkProfileRegistry()
        profile = make_profile()
        registry.register(profile)

        assert registry.lookup("bsc") is profile
        assert "bsc" in registry
        assert len(registry) == 1

    def test_duplicate_name_rejected(self):
        """Test that a second profile with the same name is rejected."""
        registry = NetworkProfileRegistry()
        registry.register(make_profile())

        with pytest.raises(DuplicateNetwork, match="already registered"):
            registry.register(make_profile(chain_id=97))

    def test_duplicate_chain_id_rejected(self):
        """Test that a second profile with the same chain id is rejected."""
        registry = NetworkProfileRegistry()
        registry.register(make_profile())

        with pytest.raises(DuplicateNetwork, match="Chain id 56"):
            registry.register(make_profile(name="bsc2"))

    def test_frozen_registry_rejects_registration(self):
        """Test that registration fails after freeze()."""
        registry = NetworkProfileRegistry.from_profiles([make_profile()])

        with pytest.raises(RegistryFrozenError):
            registry.register(make_profile(name="eth", chain_id=1))


class TestLookup:
    """Test looking up network profiles."""

    def test_unknown_network_lists_known(self):
        """Test that UnknownNetwork names the registered networks."""
        registry = NetworkProfileRegistry.from_profiles(
            [make_profile(), make_profile("eth", 1)]
        )

        with pytest.raises(UnknownNetwork, match="known: bsc, eth"):
            registry.lookup("polygon")

    def test_unknown_network_on_empty_registry(self):
        """Test the message when nothing is registered."""
        with pytest.raises(UnknownNetwork, match="known: none"):
            NetworkProfileRegistry().lookup("bsc")


class TestFromDefaults:
    """Test the built-in network table."""

    def test_contains_every_configured_network(self):
        """Test that every NETWORK_CONFIG entry is registered."""
        registry = NetworkProfileRegistry.from_defaults(environ={})

        assert registry.names() == sorted(NETWORK_CONFIG)
        with pytest.raises(RegistryFrozenError):
            registry.register(make_profile(name="extra", chain_id=424242))

    def test_chain_ids(self):
        """Test known chain ids of the built-in networks."""
        registry = NetworkProfileRegistry.from_defaults(environ={})

        assert registry.lookup("eth").chain_id == 1
        assert registry.lookup("bsc").chain_id == 56
        assert registry.lookup("polygon").chain_id == 137
        assert registry.lookup("arbitrum").chain_id == 42161
        assert registry.lookup("test").chain_id == 97

    def test_gas_prices(self):
        """Test that configured gas prices become fixed policies."""
        registry = NetworkProfileRegistry.from_defaults(environ={})

        assert registry.lookup("bsc").gas == GasPolicy(GasStrategy.FIXED, 20_000_000_000)
        assert registry.lookup("localhost").gas.strategy is GasStrategy.ESTIMATED

    def test_rpc_url_override(self):
        """Test that <NAME>_RPC_URL overrides the default endpoint."""
        registry = NetworkProfileRegistry.from_defaults(
            environ={"BSC_RPC_URL": "https://my-node.example"}
        )
        assert registry.lookup("bsc").rpc_url == "https://my-node.example"
        assert registry.lookup("eth").rpc_url == NETWORK_CONFIG["eth"]["rpc_url"]

    def test_default_credential(self):
        """Test that built-in networks sign with the deployer key variable."""
        registry = NetworkProfileRegistry.from_defaults(environ={})
        assert registry.lookup("polygon").credential == "env:DEPLOYER_PRIVATE_KEY"


class TestGasPolicy:
    """Test gas policy construction."""

    def test_gas_policy_from_price(self):
        """Test fixed and estimated policies."""
        assert gas_policy_from_price(5).strategy is GasStrategy.FIXED
        assert gas_policy_from_price(None).strategy is GasStrategy.ESTIMATED

    def test_fixed_policy_requires_price(self):
        """Test that a fixed policy without a price is rejected."""
        with pytest.raises(ValueError):
            GasPolicy(strategy=GasStrategy.FIXED)
