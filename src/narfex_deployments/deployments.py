"""Main API for narfex-deployments library."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from .address_book import AddressBook
from .backends import DeploymentBackend, JsonRpcDeploymentBackend
from .catalog import ContractSpecCatalog
from .exceptions import DeploymentRunError, InvalidPlan
from .executor import DeploymentExecutor
from .networks import NetworkProfileRegistry
from .paths import get_default_state_dir, get_manifest_path, get_state_paths
from .reporter import DeploymentReporter
from .resolver import DependencyGraphResolver
from .types import DeploymentPlan, ExecutionResult, ExecutorSettings, NetworkProfile

logger = logging.getLogger(__name__)

BackendFactory = Callable[[NetworkProfile], DeploymentBackend]


class DeploymentOrchestrator:
    """Resolves, executes and reports deployment plans."""

    def __init__(
        self,
        registry: NetworkProfileRegistry,
        catalog: ContractSpecCatalog,
        state_dir: Optional[Union[Path, str]] = None,
        address_book: Optional[AddressBook] = None,
        backend_factory: Optional[BackendFactory] = None,
        settings: Optional[ExecutorSettings] = None,
        reporter: Optional[DeploymentReporter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            registry: Network profiles, frozen for the run
            catalog: Contract specs the plans refer to
            state_dir: Directory for address book and manifests
                       (defaults to ./.narfex-deployments)
            address_book: Record store (defaults to one under state_dir)
            backend_factory: Builds the backend for a network
                             (defaults to JsonRpcDeploymentBackend)
            settings: Executor settings shared by every run
            reporter: Observer shared by every run
            sleep: Sleep function handed to executors
        """
        self.registry = registry
        self.catalog = catalog
        self.state_dir = Path(state_dir) if state_dir is not None else get_default_state_dir()
        self.address_book = address_book or AddressBook(get_state_paths(self.state_dir)[0])
        self.backend_factory = backend_factory or JsonRpcDeploymentBackend
        self.settings = settings or ExecutorSettings()
        self.reporter = reporter or DeploymentReporter(self.address_book, registry)
        self._sleep = sleep

    def resolve(self, plan: DeploymentPlan) -> Tuple[str, ...]:
        """
        Order a plan against the current address book.

        Raises:
            UnknownNetwork: If the plan's network is not registered
            InvalidPlan, UnresolvedReference, CyclicDependency: See resolver
        """
        self.registry.lookup(plan.network)
        return DependencyGraphResolver(self.address_book).resolve(plan)

    def deploy(
        self,
        plan: DeploymentPlan,
        raise_on_failure: bool = False,
        manifest_path: Optional[Union[Path, str]] = None,
    ) -> ExecutionResult:
        """
        Deploy every unit of a plan that is not confirmed yet.

        The manifest is written after the run, also when it stops early.

        Args:
            plan: Plan to deploy
            raise_on_failure: Raise DeploymentRunError if any unit fails
            manifest_path: Where to write the manifest
                           (defaults to <state_dir>/manifests/<network>.json)

        Returns:
            ExecutionResult of the run

        Raises:
            UnknownNetwork: If the plan's network is not registered
            CyclicDependency, UnresolvedReference, InvalidPlan: Before any deployment
            AddressBookCorruption: If the network's address book is unreadable
            DeploymentRunError: On unit failure, if raise_on_failure is set
        """
        profile = self.registry.lookup(plan.network)
        order = self.resolve(plan)
        self.reporter.attach_plan(plan)

        logger.info(
            "Deploying %d unit(s) to %s (chain %d): %s",
            len(order),
            profile.name,
            profile.chain_id,
            ", ".join(order) or "nothing to do",
        )

        executor = DeploymentExecutor(
            profile,
            self.backend_factory(profile),
            self.catalog,
            self.address_book,
            reporter=self.reporter,
            settings=self.settings,
            sleep=self._sleep,
        )

        if manifest_path is None:
            manifest_path = get_manifest_path(plan.network, self.state_dir)

        try:
            result = executor.execute(plan, list(order))
        finally:
            if not self.address_book.is_corrupted(plan.network):
                self.reporter.write_manifest(plan.network, manifest_path)

        if raise_on_failure and not result.succeeded:
            raise run_error(result)
        return result

    def deploy_many(
        self, plans: List[DeploymentPlan], max_workers: Optional[int] = None
    ) -> Dict[str, ExecutionResult]:
        """
        Deploy plans for distinct networks concurrently, one worker per network.

        Args:
            plans: At most one plan per network
            max_workers: Thread pool size (defaults to one per plan)

        Returns:
            ExecutionResult per network

        Raises:
            InvalidPlan: If two plans target the same network
            DeploymentError: The first error (in plan order) that stopped a
                             network before or during execution, once every
                             worker has finished
        """
        networks = [plan.network for plan in plans]
        duplicates = sorted({n for n in networks if networks.count(n) > 1})
        if duplicates:
            raise InvalidPlan(f"More than one plan for network(s): {', '.join(duplicates)}")
        if not plans:
            return {}

        results: Dict[str, ExecutionResult] = {}
        errors: List[Exception] = []
        with ThreadPoolExecutor(max_workers=max_workers or len(plans)) as pool:
            futures = [(plan, pool.submit(self.deploy, plan)) for plan in plans]
            for plan, future in futures:
                try:
                    results[plan.network] = future.result()
                except Exception as e:
                    logger.error("Deployment to %s aborted: %s", plan.network, e)
                    errors.append(e)

        if errors:
            raise errors[0]
        return results


def run_error(result: ExecutionResult) -> DeploymentRunError:
    """Build the DeploymentRunError describing a failed run."""
    failure = result.first_failure
    if failure is None:
        return DeploymentRunError(
            f"Deployment to {result.network} incomplete: {', '.join(result.blocked)} not deployed"
        )

    instance_id, error = failure
    kind = getattr(error, "kind", type(error).__name__)
    return DeploymentRunError(
        f"Deployment to {result.network} failed at {instance_id}: {kind}: {error}",
        instance_id=instance_id,
        cause_kind=kind,
    )
