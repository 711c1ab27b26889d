"""Configuration, plan and artifact parsers for narfex-deployments library."""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .catalog import ContractSpecCatalog
from .constants import UNLINKED_LIBRARY_MARKER
from .exceptions import InvalidPlan, MalformedSpec
from .networks import NetworkProfileRegistry, gas_policy_from_price
from .types import (
    ContractSpec,
    DeploymentPlan,
    DeploymentUnit,
    Descriptor,
    GasPolicy,
    GasStrategy,
    Literal,
    NetworkProfile,
    ParameterSpec,
    Reference,
)

PathLike = Union[str, Path]


def parse_descriptor(raw: Any) -> Descriptor:
    """
    Convert a JSON binding into a parameter descriptor.

    {"ref": "router"} is a Reference, {"value": x} or any other JSON value
    is a Literal.
    """
    if isinstance(raw, dict):
        if set(raw) == {"ref"}:
            return Reference(raw["ref"])
        if set(raw) == {"value"}:
            return Literal(raw["value"])
    return Literal(raw)


def descriptor_to_json(descriptor: Descriptor) -> Any:
    """Inverse of parse_descriptor, used for manifests and plan dumps."""
    if isinstance(descriptor, Reference):
        return {"ref": descriptor.instance_id}
    if isinstance(descriptor.value, dict):
        return {"value": descriptor.value}
    return descriptor.value


def parse_network_profile(
    name: str, data: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> NetworkProfile:
    """
    Parse one entry of a networks file.

    Args:
        name: Network name
        data: Entry with rpc_url, chain_id and optional gas_price / gas,
              credential, confirmations, block_explorer_url, rpc_env
        environ: Environment for the rpc_env override (defaults to os.environ)

    Returns:
        NetworkProfile
    """
    if environ is None:
        environ = os.environ

    rpc_url = data.get("rpc_url")
    if data.get("rpc_env"):
        rpc_url = environ.get(data["rpc_env"]) or rpc_url
    if not rpc_url:
        raise ValueError(f"Network '{name}' has no RPC endpoint")

    if "gas" in data:
        gas_data = data["gas"]
        gas = GasPolicy(
            strategy=GasStrategy(gas_data.get("strategy", "estimated")),
            price=gas_data.get("price"),
            limit_multiplier=gas_data.get("limit_multiplier", 1.2),
        )
    else:
        gas = gas_policy_from_price(data.get("gas_price"))

    return NetworkProfile(
        name=name,
        rpc_url=rpc_url,
        chain_id=int(data["chain_id"]),
        gas=gas,
        credential=data.get("credential"),
        confirmations=int(data.get("confirmations", 1)),
        block_explorer_url=data.get("block_explorer_url"),
    )


def load_network_profiles(
    file_path: PathLike, environ: Optional[Mapping[str, str]] = None
) -> NetworkProfileRegistry:
    """
    Load a networks JSON file into a frozen registry.

    Args:
        file_path: Path to a {"networks": {name: {...}}} file
        environ: Environment for RPC overrides

    Raises:
        DuplicateNetwork: If two entries share a chain id
    """
    with open(file_path) as f:
        data = json.load(f)

    profiles = [
        parse_network_profile(name, entry, environ)
        for name, entry in data["networks"].items()
    ]
    return NetworkProfileRegistry.from_profiles(profiles)


def parse_contract_spec(
    name: str, data: Dict[str, Any], base_dir: Optional[Path] = None
) -> ContractSpec:
    """
    Parse one entry of a contracts catalog.

    Args:
        name: Contract spec name
        data: Entry with params and artifact or bytecode
        base_dir: Directory relative artifact paths are resolved against

    Raises:
        MalformedSpec: If a parameter entry lacks its name or type
    """
    params: List[ParameterSpec] = []
    for raw in data.get("params", []):
        if not isinstance(raw, dict) or "name" not in raw or "type" not in raw:
            raise MalformedSpec(f"Parameter entry {raw!r} of '{name}' needs a name and a type")
        default = parse_descriptor(raw["default"]) if "default" in raw else None
        params.append(ParameterSpec(name=raw["name"], abi_type=raw["type"], default=default))

    artifact = data.get("artifact")
    if artifact and base_dir is not None and not Path(artifact).is_absolute():
        artifact = str(base_dir / artifact)

    return ContractSpec(
        name=data.get("contract", name),
        params=tuple(params),
        artifact=artifact,
        bytecode=data.get("bytecode"),
    )


def load_contract_catalog(file_path: PathLike) -> ContractSpecCatalog:
    """
    Load a contracts JSON file into a catalog.

    Raises:
        DuplicateSpec: If two entries resolve to the same name
        MalformedSpec: If an entry is structurally invalid
    """
    path = Path(file_path)
    with open(path) as f:
        data = json.load(f)

    catalog = ContractSpecCatalog()
    for name, entry in data["contracts"].items():
        catalog.register(parse_contract_spec(name, entry, base_dir=path.parent))
    return catalog


def bind_arguments(
    instance_id: str, spec: ContractSpec, args: Union[List[Any], Dict[str, Any], None]
) -> Tuple[Descriptor, ...]:
    """
    Match a unit's raw arguments against its spec's constructor parameters.

    Positional lists bind in order, dicts bind by parameter name; unbound
    parameters fall back to the spec's defaults.

    Raises:
        InvalidPlan: On unknown, missing or mistyped bindings
    """
    provided: Dict[str, Descriptor] = {}
    if args is None:
        args = []

    if isinstance(args, list):
        if len(args) > len(spec.params):
            raise InvalidPlan(
                f"Unit '{instance_id}' passes {len(args)} arguments to '{spec.name}', "
                f"which takes {len(spec.params)}"
            )
        for param, raw in zip(spec.params, args):
            provided[param.name] = parse_descriptor(raw)
    elif isinstance(args, dict):
        known = {p.name for p in spec.params}
        unknown = [key for key in args if key not in known]
        if unknown:
            raise InvalidPlan(
                f"Unit '{instance_id}' binds unknown parameters of '{spec.name}': "
                f"{', '.join(unknown)}"
            )
        provided = {key: parse_descriptor(raw) for key, raw in args.items()}
    else:
        raise InvalidPlan(f"Arguments of unit '{instance_id}' must be a list or an object")

    bindings: List[Descriptor] = []
    for param in spec.params:
        descriptor = provided.get(param.name, param.default)
        if descriptor is None:
            raise InvalidPlan(
                f"Unit '{instance_id}' does not bind parameter '{param.name}' of '{spec.name}'"
            )
        if isinstance(descriptor, Reference):
            if not isinstance(descriptor.instance_id, str) or not descriptor.instance_id.strip():
                raise InvalidPlan(
                    f"Unit '{instance_id}' has an empty reference for '{param.name}'"
                )
            if param.abi_type != "address":
                raise InvalidPlan(
                    f"Unit '{instance_id}' binds a reference to '{param.name}' "
                    f"of type '{param.abi_type}'"
                )
        bindings.append(descriptor)

    return tuple(bindings)


def parse_plan(
    data: Dict[str, Any], catalog: ContractSpecCatalog, network: Optional[str] = None
) -> DeploymentPlan:
    """
    Build a DeploymentPlan from its JSON form.

    Args:
        data: {"network", "external", "units"}; units is a list of
              {"id", "contract", "args"} or an object keyed by id
        catalog: Catalog the units' contract names are resolved in
        network: Target network; must match the plan's own if it names one

    Raises:
        InvalidPlan: If the plan has no network, names another network than
                     the one requested, or has malformed units
        UnknownSpec: If a unit names a contract missing from the catalog
    """
    declared = data.get("network")
    if network and declared and network != declared:
        # External addresses only exist on the plan's own chain
        raise InvalidPlan(
            f"Plan targets network '{declared}', cannot deploy it to '{network}'"
        )
    network = declared or network
    if not network:
        raise InvalidPlan("Plan does not name a target network")

    raw_units = data.get("units", [])
    if isinstance(raw_units, dict):
        raw_units = [dict(entry, id=instance_id) for instance_id, entry in raw_units.items()]

    units: List[DeploymentUnit] = []
    for raw in raw_units:
        if "id" not in raw or "contract" not in raw:
            raise InvalidPlan(f"Plan unit {raw!r} needs an id and a contract")
        spec = catalog.resolve_spec(raw["contract"])
        units.append(
            DeploymentUnit(
                instance_id=raw["id"],
                contract=spec.name,
                bindings=bind_arguments(raw["id"], spec, raw.get("args")),
            )
        )

    external = data.get("external", {})
    if not isinstance(external, dict):
        raise InvalidPlan("Plan 'external' must map instance ids to addresses")

    return DeploymentPlan(
        network=network,
        units=tuple(units),
        external=dict(external),
        name=data.get("name"),
    )


def load_plan(
    file_path: PathLike, catalog: ContractSpecCatalog, network: Optional[str] = None
) -> DeploymentPlan:
    """Read and parse a plan JSON file."""
    with open(file_path) as f:
        data = json.load(f)
    return parse_plan(data, catalog, network=network)


def load_artifact(file_path: PathLike) -> Dict[str, Any]:
    """
    Parse a hardhat compilation artifact.

    Args:
        file_path: Path to artifacts/.../<Contract>.json

    Returns:
        Dictionary with abi and bytecode (0x-prefixed)

    Raises:
        MalformedSpec: If the artifact is unreadable, its bytecode is missing
                       or needs library linking
    """
    try:
        with open(file_path) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise MalformedSpec(f"Cannot read artifact {file_path}: {e}") from e
    if not isinstance(data, dict):
        raise MalformedSpec(f"Artifact is not a JSON object: {file_path}")

    bytecode = data.get("bytecode")
    if isinstance(bytecode, dict):
        # solc standard-json output nests the hex under "object"
        bytecode = bytecode.get("object")

    if not bytecode or bytecode == "0x":
        raise MalformedSpec(f"Missing bytecode in artifact: {file_path}")
    if UNLINKED_LIBRARY_MARKER in bytecode:
        raise MalformedSpec(f"Artifact needs library linking: {file_path}")

    if not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode

    return {"abi": data.get("abi", []), "bytecode": bytecode}
