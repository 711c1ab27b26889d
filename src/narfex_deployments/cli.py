"""
Command line interface for narfex-deployments.

Usage:
    narfex-deploy deploy --network bsc --plan deployments/plans/exchanger.json
    narfex-deploy plan --network bsc --plan deployments/plans/exchanger.json
    narfex-deploy manifest --network bsc
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .address_book import AddressBook
from .deployments import DeploymentOrchestrator
from .exceptions import DeploymentError
from .networks import NetworkProfileRegistry
from .parsers import descriptor_to_json, load_contract_catalog, load_network_profiles, load_plan
from .paths import get_state_paths
from .reporter import DeploymentReporter
from .types import ExecutionPolicy, ExecutorSettings

logger = logging.getLogger(__name__)

DEFAULT_CATALOG = "deployments/contracts.json"

EXIT_OK = 0
EXIT_DEPLOYMENT_FAILED = 1
EXIT_CONFIG_ERROR = 2


def setup_logging(verbose: bool = False) -> None:
    """Send library logs to stderr; DEBUG with --verbose, INFO otherwise."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", "%H:%M:%S")
    )
    root = logging.getLogger("narfex_deployments")
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.propagate = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="narfex-deploy", description="Deploy interdependent contracts from a plan"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument(
        "--networks", help="Networks JSON file (defaults to the built-in network table)"
    )
    parser.add_argument(
        "--state-dir", help="Address book and manifest directory (default ./.narfex-deployments)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy = subparsers.add_parser("deploy", help="Deploy a plan")
    _add_plan_arguments(deploy)
    deploy.add_argument("--timeout", type=float, help="Confirmation timeout in seconds")
    deploy.add_argument(
        "--max-attempts", type=int, help="Attempts per RPC call on transient errors"
    )
    deploy.add_argument(
        "--lenient",
        action="store_true",
        help="Keep deploying units that do not depend on a failed one",
    )
    deploy.add_argument("--manifest", help="Manifest output path")

    plan = subparsers.add_parser("plan", help="Show the deployment order of a plan")
    _add_plan_arguments(plan)

    manifest = subparsers.add_parser("manifest", help="Print a network's manifest")
    manifest.add_argument("--network", required=True)

    return parser


def _add_plan_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--network", required=True, help="Target network; must match the network the plan names"
    )
    parser.add_argument("--plan", required=True, help="Plan JSON file")
    parser.add_argument(
        "--catalog", default=DEFAULT_CATALOG, help=f"Contracts JSON file (default {DEFAULT_CATALOG})"
    )


def _load_registry(args: argparse.Namespace) -> NetworkProfileRegistry:
    if args.networks:
        return load_network_profiles(args.networks)
    return NetworkProfileRegistry.from_defaults()


def _build_orchestrator(args: argparse.Namespace) -> DeploymentOrchestrator:
    settings = ExecutorSettings()
    if getattr(args, "timeout", None) is not None:
        settings.confirmation_timeout = args.timeout
    if getattr(args, "max_attempts", None) is not None:
        settings.max_attempts = args.max_attempts
    if getattr(args, "lenient", False):
        settings.policy = ExecutionPolicy.LENIENT

    return DeploymentOrchestrator(
        registry=_load_registry(args),
        catalog=load_contract_catalog(args.catalog),
        state_dir=args.state_dir,
        settings=settings,
    )


def cmd_deploy(args: argparse.Namespace) -> int:
    orchestrator = _build_orchestrator(args)
    plan = load_plan(args.plan, orchestrator.catalog, network=args.network)

    result = orchestrator.deploy(plan, manifest_path=args.manifest)

    for line in orchestrator.reporter.summary(plan.network):
        print(line)

    if result.succeeded:
        print(f"Deployment to {plan.network} complete")
        return EXIT_OK

    failure = result.first_failure
    if failure is not None:
        instance_id, error = failure
        kind = getattr(error, "kind", type(error).__name__)
        print(f"{instance_id}: {kind}: {error}", file=sys.stderr)
    return EXIT_DEPLOYMENT_FAILED


def cmd_plan(args: argparse.Namespace) -> int:
    orchestrator = _build_orchestrator(args)
    plan = load_plan(args.plan, orchestrator.catalog, network=args.network)

    order = orchestrator.resolve(plan)
    confirmed = orchestrator.address_book.confirmed_addresses(plan.network)

    for position, instance_id in enumerate(order, start=1):
        unit = plan.unit(instance_id)
        bindings = json.dumps([descriptor_to_json(b) for b in unit.bindings])
        print(f"{position}. {instance_id} ({unit.contract}) {bindings}")
    for instance_id in plan.instance_ids:
        if instance_id not in order:
            print(f"-  {instance_id}: already deployed at {confirmed.get(instance_id)}")
    return EXIT_OK


def cmd_manifest(args: argparse.Namespace) -> int:
    registry = _load_registry(args)
    registry.lookup(args.network)
    book = AddressBook(get_state_paths(args.state_dir)[0])
    manifest = DeploymentReporter(book, registry).render_manifest(args.network)
    print(json.dumps(manifest, indent=2))
    return EXIT_OK


COMMANDS = {
    "deploy": cmd_deploy,
    "plan": cmd_plan,
    "manifest": cmd_manifest,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        return COMMANDS[args.command](args)
    except DeploymentError as e:
        # Configuration, plan and resolution errors: nothing was deployed
        print(f"error: {e.kind}: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except (OSError, ValueError, KeyError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
