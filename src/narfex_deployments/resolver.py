"""
Dependency graph resolution for deployment plans.

A unit depends on every instance its bindings reference. References are
satisfied by another unit of the plan, by an external address seeded in the
plan, or by a confirmed record in the address book. Units that are already
confirmed are left out of the order but stay addressable.

Ordering is Kahn's algorithm with ties broken by declaration order, so the
same plan against the same address book always yields the same order.
"""

import heapq
import logging
from typing import Collection, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .address_book import AddressBook
from .exceptions import CyclicDependency, InvalidPlan, UnresolvedReference
from .types import DeploymentPlan

logger = logging.getLogger(__name__)


class DependencyGraphResolver:
    """Orders the units of a plan so every unit follows its dependencies."""

    def __init__(self, address_book: Optional[AddressBook] = None):
        """
        Initialize the resolver.

        Args:
            address_book: Book consulted for already-confirmed instances
                          when no explicit snapshot is passed to resolve()
        """
        self.address_book = address_book

    def resolve(
        self, plan: DeploymentPlan, confirmed: Optional[Collection[str]] = None
    ) -> Tuple[str, ...]:
        """
        Compute a deployment order for a plan.

        Args:
            plan: Plan to order
            confirmed: Instance ids already confirmed on the plan's network.
                       If None, read from the address book.

        Returns:
            Instance ids in deployment order, confirmed units excluded

        Raises:
            InvalidPlan: If instance ids are duplicated or clash with externals
            UnresolvedReference: If a reference has nothing to resolve to
            CyclicDependency: If units reference each other in a cycle
        """
        if confirmed is None:
            confirmed = self._confirmed_ids(plan.network)
        confirmed = set(confirmed)

        check_unique_ids(plan)
        graph = dependencies(plan)

        # Every reference must land somewhere
        for unit in plan.units:
            for ref in unit.references:
                if ref in graph or ref in plan.external or ref in confirmed:
                    continue
                raise UnresolvedReference(
                    f"Unit '{unit.instance_id}' references '{ref}', which is neither "
                    f"part of the plan nor deployed on network '{plan.network}'",
                    reference=ref,
                    instance_id=unit.instance_id,
                )

        # Kahn's algorithm over units still to deploy
        position = {unit.instance_id: index for index, unit in enumerate(plan.units)}
        pending = [i for i in position if i not in confirmed]
        pending_set = set(pending)

        waiting_on: Dict[str, Set[str]] = {}
        dependents: Dict[str, List[str]] = {i: [] for i in pending}
        for instance_id in pending:
            deps = {d for d in graph[instance_id] if d in pending_set}
            waiting_on[instance_id] = deps
            for dep in deps:
                dependents[dep].append(instance_id)

        ready = [position[i] for i in pending if not waiting_on[i]]
        heapq.heapify(ready)

        order: List[str] = []
        while ready:
            instance_id = plan.units[heapq.heappop(ready)].instance_id
            order.append(instance_id)
            for dependent in dependents[instance_id]:
                waiting_on[dependent].discard(instance_id)
                if not waiting_on[dependent]:
                    heapq.heappush(ready, position[dependent])

        if len(order) < len(pending):
            remaining = [i for i in pending if waiting_on[i]]
            cycle = _find_cycle(remaining, waiting_on)
            raise CyclicDependency(
                f"Cyclic dependency between units: {' -> '.join(cycle + cycle[:1])}",
                cycle=cycle,
            )

        skipped = len(plan.units) - len(order)
        logger.debug(
            "Resolved plan for %s: %d to deploy, %d already confirmed",
            plan.network,
            len(order),
            skipped,
        )
        return tuple(order)

    def _confirmed_ids(self, network: str) -> Set[str]:
        if self.address_book is None:
            return set()
        return {record.instance_id for record in self.address_book.list_confirmed(network)}


def check_unique_ids(plan: DeploymentPlan) -> None:
    """
    Reject plans whose instance ids are not unique.

    Raises:
        InvalidPlan: On a duplicated id or an id shadowing an external
    """
    seen: Set[str] = set()
    for unit in plan.units:
        if not unit.instance_id:
            raise InvalidPlan("Plan contains a unit without an instance id")
        if unit.instance_id in seen:
            raise InvalidPlan(f"Duplicate instance id '{unit.instance_id}' in plan")
        if unit.instance_id in plan.external:
            raise InvalidPlan(
                f"Instance id '{unit.instance_id}' is both a unit and an external reference"
            )
        seen.add(unit.instance_id)


def dependencies(plan: DeploymentPlan) -> Dict[str, List[str]]:
    """Map each unit to the distinct instance ids it references, in binding order."""
    graph: Dict[str, List[str]] = {}
    for unit in plan.units:
        graph[unit.instance_id] = list(dict.fromkeys(unit.references))
    return graph


def dependents_closure(plan: DeploymentPlan, roots: Iterable[str]) -> Set[str]:
    """
    All units that transitively depend on any of the given instance ids.

    The roots themselves are not included.
    """
    reverse: Dict[str, List[str]] = {}
    for instance_id, deps in dependencies(plan).items():
        for dep in deps:
            reverse.setdefault(dep, []).append(instance_id)

    closure: Set[str] = set()
    stack = list(roots)
    while stack:
        for dependent in reverse.get(stack.pop(), []):
            if dependent not in closure:
                closure.add(dependent)
                stack.append(dependent)
    return closure


def _find_cycle(remaining: List[str], waiting_on: Mapping[str, Set[str]]) -> List[str]:
    # Every remaining unit waits on another remaining unit, so walking
    # dependencies from any of them must revisit a unit.
    rank = {instance_id: index for index, instance_id in enumerate(remaining)}
    path: List[str] = []
    seen_at: Dict[str, int] = {}
    current = remaining[0]
    while current not in seen_at:
        seen_at[current] = len(path)
        path.append(current)
        current = min(waiting_on[current], key=rank.__getitem__)
    return path[seen_at[current]:]
