"""Progress reporting and manifest output for narfex-deployments library."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .address_book import AddressBook
from .networks import NetworkProfileRegistry
from .types import DeploymentPlan, DeploymentRecord, DeploymentUnit, RecordStatus

logger = logging.getLogger(__name__)


class DeploymentReporter:
    """
    Observer of a deployment run.

    The executor calls the on_unit_* callbacks synchronously, in deployment
    order. The reporter never mutates state; manifests are rendered from the
    address book so they always show the persisted status of each instance.
    """

    def __init__(
        self,
        address_book: AddressBook,
        registry: Optional[NetworkProfileRegistry] = None,
    ):
        self.address_book = address_book
        self.registry = registry
        self.events: List[Dict[str, Any]] = []
        self._external: Dict[str, Dict[str, str]] = {}
        self._plan_names: Dict[str, Optional[str]] = {}

    def attach_plan(self, plan: DeploymentPlan) -> None:
        """Remember a plan's external references for its network's manifest."""
        self._external[plan.network] = dict(plan.external)
        self._plan_names[plan.network] = plan.name

    def on_unit_started(self, network: str, unit: DeploymentUnit, args: List[Any]) -> None:
        logger.info("[%s] Deploying %s (%s)", network, unit.instance_id, unit.contract)
        self._event("started", network, unit.instance_id, contract=unit.contract, args=args)

    def on_unit_confirmed(self, record: DeploymentRecord) -> None:
        logger.info(
            "[%s] %s deployed to: %s (tx %s)",
            record.network,
            record.contract or record.instance_id,
            record.address,
            record.transaction_hash,
        )
        self._event(
            "confirmed",
            record.network,
            record.instance_id,
            address=record.address,
            transaction_hash=record.transaction_hash,
        )

    def on_unit_failed(
        self,
        network: str,
        instance_id: str,
        error: Exception,
        record: Optional[DeploymentRecord] = None,
    ) -> None:
        kind = getattr(error, "kind", type(error).__name__)
        logger.error("[%s] %s failed: %s: %s", network, instance_id, kind, error)
        self._event(
            "failed",
            network,
            instance_id,
            error_kind=kind,
            error=str(error),
            status=record.status.value if record else None,
        )

    def on_unit_skipped(self, record: DeploymentRecord) -> None:
        logger.info(
            "[%s] %s already deployed at %s, skipping",
            record.network,
            record.instance_id,
            record.address,
        )
        self._event("skipped", record.network, record.instance_id, address=record.address)

    def on_unit_blocked(self, network: str, instance_id: str, blocked_by: str) -> None:
        logger.warning(
            "[%s] %s not deployed: depends on failed unit %s",
            network,
            instance_id,
            blocked_by,
        )
        self._event("blocked", network, instance_id, blocked_by=blocked_by)

    def render_manifest(self, network: str) -> Dict[str, Any]:
        """
        Build a machine-readable snapshot of a network's deployments.

        Args:
            network: Network name

        Returns:
            Dictionary with network, chain_id, generated_at, contracts
            (instance id -> address, transaction_hash, status, ...) and
            external references of the attached plan
        """
        contracts: Dict[str, Any] = {}
        for instance_id, record in self.address_book.latest_records(network).items():
            entry: Dict[str, Any] = {
                "contract": record.contract,
                "address": record.address,
                "transaction_hash": record.transaction_hash,
                "status": record.status.value,
                "block": record.block,
                "timestamp": record.timestamp,
                "constructor_args": record.constructor_args,
            }
            if record.status is RecordStatus.FAILED:
                entry["error_kind"] = record.error_kind
                entry["error"] = record.error
            contracts[instance_id] = entry

        chain_id = None
        if self.registry is not None and network in self.registry:
            chain_id = self.registry.lookup(network).chain_id

        return {
            "network": network,
            "chain_id": chain_id,
            "plan": self._plan_names.get(network),
            "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
            "contracts": contracts,
            "external": self._external.get(network, {}),
        }

    def write_manifest(self, network: str, path: Union[Path, str]) -> Path:
        """
        Write a network's manifest as JSON.

        Creates parent directories if they don't exist.
        """
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            json.dump(self.render_manifest(network), f, indent=2)
        logger.info("Manifest for %s written to %s", network, output_path)
        return output_path

    def summary(self, network: Optional[str] = None) -> List[str]:
        """Human-readable lines, one per instance touched in this run."""
        lines = []
        for event in self.events:
            if network is not None and event["network"] != network:
                continue
            name = event["instance_id"]
            if event["event"] == "confirmed":
                lines.append(f"{name}: deployed to {event['address']} (tx {event['transaction_hash']})")
            elif event["event"] == "skipped":
                lines.append(f"{name}: already deployed at {event['address']}")
            elif event["event"] == "failed":
                lines.append(f"{name}: FAILED {event['error_kind']}: {event['error']}")
            elif event["event"] == "blocked":
                lines.append(f"{name}: not deployed, depends on {event['blocked_by']}")
        return lines

    def _event(self, event: str, network: str, instance_id: str, **details: Any) -> None:
        self.events.append(
            {"event": event, "network": network, "instance_id": instance_id, **details}
        )
