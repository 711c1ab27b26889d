"""Network profile registry for narfex-deployments library."""

import logging
import os
from typing import Dict, Iterator, List, Mapping, Optional

from .constants import DEFAULT_CREDENTIAL, NETWORK_CONFIG
from .exceptions import DuplicateNetwork, RegistryFrozenError, UnknownNetwork
from .types import GasPolicy, GasStrategy, NetworkProfile

logger = logging.getLogger(__name__)


class NetworkProfileRegistry:
    """Named network configurations, immutable once loaded."""

    def __init__(self):
        self._profiles: Dict[str, NetworkProfile] = {}
        self._chain_ids: Dict[int, str] = {}
        self._frozen = False

    def register(self, profile: NetworkProfile) -> None:
        """
        Add a network profile.

        Args:
            profile: Profile to add

        Raises:
            DuplicateNetwork: If the name or chain id is already registered
            RegistryFrozenError: If the registry has been frozen
        """
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register network '{profile.name}': registry is frozen"
            )
        if profile.name in self._profiles:
            raise DuplicateNetwork(f"Network '{profile.name}' is already registered")
        if profile.chain_id in self._chain_ids:
            raise DuplicateNetwork(
                f"Chain id {profile.chain_id} of network '{profile.name}' is already "
                f"used by network '{self._chain_ids[profile.chain_id]}'"
            )

        self._profiles[profile.name] = profile
        self._chain_ids[profile.chain_id] = profile.name

    def lookup(self, name: str) -> NetworkProfile:
        """
        Get a network profile by name.

        Raises:
            UnknownNetwork: If no profile has that name
        """
        try:
            return self._profiles[name]
        except KeyError:
            raise UnknownNetwork(
                f"Network '{name}' not found (known: {', '.join(self.names()) or 'none'})"
            ) from None

    def freeze(self) -> "NetworkProfileRegistry":
        """Reject further registrations for the rest of the run."""
        self._frozen = True
        return self

    def names(self) -> List[str]:
        return sorted(self._profiles)

    def __contains__(self, name: object) -> bool:
        return name in self._profiles

    def __iter__(self) -> Iterator[NetworkProfile]:
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)

    @classmethod
    def from_profiles(cls, profiles: List[NetworkProfile]) -> "NetworkProfileRegistry":
        registry = cls()
        for profile in profiles:
            registry.register(profile)
        return registry.freeze()

    @classmethod
    def from_defaults(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "NetworkProfileRegistry":
        """
        Build a frozen registry from the built-in network table.

        Args:
            environ: Environment used for RPC URL overrides (defaults to os.environ)

        Returns:
            Frozen NetworkProfileRegistry
        """
        if environ is None:
            environ = os.environ

        profiles = []
        for name, config in NETWORK_CONFIG.items():
            rpc_url = environ.get(config["default_rpc_env"]) or config["rpc_url"]
            profiles.append(
                NetworkProfile(
                    name=name,
                    rpc_url=rpc_url,
                    chain_id=config["chain_id"],
                    gas=gas_policy_from_price(config["gas_price"]),
                    credential=DEFAULT_CREDENTIAL,
                    block_explorer_url=config["block_explorer_url"],
                )
            )

        logger.debug("Loaded %d built-in network profiles", len(profiles))
        return cls.from_profiles(profiles)


def gas_policy_from_price(gas_price: Optional[int]) -> GasPolicy:
    """Fixed policy for a configured price, estimated policy otherwise."""
    if gas_price is None:
        return GasPolicy(strategy=GasStrategy.ESTIMATED)
    return GasPolicy(strategy=GasStrategy.FIXED, price=gas_price)
