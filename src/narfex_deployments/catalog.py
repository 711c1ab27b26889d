"""Contract spec catalog for narfex-deployments library."""

from typing import Dict, Iterator, List

from .exceptions import DuplicateSpec, MalformedSpec, UnknownSpec
from .types import ContractSpec, Reference


class ContractSpecCatalog:
    """Named templates of deployable units."""

    def __init__(self):
        self._specs: Dict[str, ContractSpec] = {}

    def register(self, spec: ContractSpec) -> None:
        """
        Validate and add a contract spec.

        Args:
            spec: Spec to add

        Raises:
            DuplicateSpec: If a spec with the same name exists
            MalformedSpec: If the spec's parameter list is invalid
        """
        if spec.name in self._specs:
            raise DuplicateSpec(f"Contract spec '{spec.name}' is already registered")

        validate_spec(spec)
        self._specs[spec.name] = spec

    def resolve_spec(self, name: str) -> ContractSpec:
        """
        Get a contract spec by name.

        Raises:
            UnknownSpec: If no spec has that name
        """
        try:
            return self._specs[name]
        except KeyError:
            raise UnknownSpec(f"Contract spec '{name}' not found in catalog") from None

    def names(self) -> List[str]:
        return sorted(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[ContractSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)


def validate_spec(spec: ContractSpec) -> None:
    """
    Walk a spec's parameter descriptors and reject structural errors.

    Raises:
        MalformedSpec: On the first problem found
    """
    if not spec.name:
        raise MalformedSpec("Contract spec has no name")

    if not spec.artifact and not spec.bytecode:
        raise MalformedSpec(f"Contract spec '{spec.name}' has neither artifact nor bytecode")

    seen = set()
    for position, param in enumerate(spec.params):
        label = f"parameter #{position} of '{spec.name}'"
        if not param.name:
            raise MalformedSpec(f"{label} has no name")
        if not param.abi_type:
            raise MalformedSpec(f"{label} ('{param.name}') has no ABI type")
        if param.name in seen:
            raise MalformedSpec(f"Duplicate parameter '{param.name}' in '{spec.name}'")
        seen.add(param.name)

        if isinstance(param.default, Reference):
            if not isinstance(param.default.instance_id, str) or not param.default.instance_id.strip():
                raise MalformedSpec(f"{label} ('{param.name}') has an empty reference")
            if param.abi_type != "address":
                raise MalformedSpec(
                    f"{label} ('{param.name}') references an instance but has type "
                    f"'{param.abi_type}', expected 'address'"
                )
