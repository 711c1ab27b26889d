"""Durable append-only address book for narfex-deployments library."""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Union

from .exceptions import AddressBookCorruption, RecordNotFound
from .paths import get_state_paths
from .types import DeploymentRecord

logger = logging.getLogger(__name__)


class ConfirmedRecords:
    """
    Lazy view over the confirmed records of one network.

    Every iteration re-reads the book from disk, so the view can be iterated
    again after new records were appended.
    """

    def __init__(self, book: "AddressBook", network: str):
        self._book = book
        self._network = network

    def __iter__(self) -> Iterator[DeploymentRecord]:
        seen: Set[str] = set()
        for record in self._book._iter_records(self._network):
            if record.is_confirmed and record.instance_id not in seen:
                seen.add(record.instance_id)
                yield record


class AddressBook:
    """
    Per-network log of deployment records, keyed by (network, instance id).

    Each network is stored as a JSON Lines file. Records are only ever
    appended; the last record of an instance is its current state.
    """

    def __init__(self, root: Optional[Union[Path, str]] = None):
        """
        Initialize the address book.

        Args:
            root: Directory holding one <network>.jsonl file per network.
                  If None, uses ./.narfex-deployments/address_book
        """
        if root is None:
            root = get_state_paths()[0]
        self.root = Path(root)

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._corrupted: Set[str] = set()
        self._verified: Set[str] = set()

    def path_for(self, network: str) -> Path:
        """Path of the JSON Lines file holding a network's records."""
        return self.root / f"{network}.jsonl"

    def networks(self) -> List[str]:
        """Networks that have at least one record file."""
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob("*.jsonl"))

    def is_corrupted(self, network: str) -> bool:
        return network in self._corrupted

    def get(self, network: str, instance_id: str) -> DeploymentRecord:
        """
        Get the most recent record of an instance.

        Raises:
            RecordNotFound: If the instance has no record on that network
            AddressBookCorruption: If the network's file cannot be read back
        """
        record = self.find(network, instance_id)
        if record is None:
            raise RecordNotFound(
                f"No record for instance '{instance_id}' on network '{network}'"
            )
        return record

    def find(self, network: str, instance_id: str) -> Optional[DeploymentRecord]:
        """Like get(), but returns None when there is no record."""
        latest = None
        for record in self._iter_records(network):
            if record.instance_id == instance_id:
                latest = record
        return latest

    def history(self, network: str, instance_id: str) -> List[DeploymentRecord]:
        """Every record of an instance, oldest first."""
        return [r for r in self._iter_records(network) if r.instance_id == instance_id]

    def append(self, record: DeploymentRecord) -> None:
        """
        Durably append a record.

        The line is written in one call and fsynced before returning.
        Appends to the same network are serialized.

        Raises:
            AddressBookCorruption: If the network's book is corrupted
        """
        network = record.network
        line = json.dumps(record.to_dict(), sort_keys=True) + "\n"

        with self._lock_for(network):
            if network not in self._verified:
                # Full read raises (and marks the network) on corruption
                for _ in self._iter_records(network):
                    pass
                self._verified.add(network)

            if network in self._corrupted:
                raise AddressBookCorruption(
                    f"Address book for network '{network}' is corrupted; "
                    "refusing further writes until it is reconciled",
                    network=network,
                )

            path = self.path_for(network)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._drop_torn_tail(path)

            with open(path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())

        logger.debug(
            "Recorded %s %s on %s", record.instance_id, record.status.value, network
        )

    def list_confirmed(self, network: str) -> ConfirmedRecords:
        """Restartable iterable of the confirmed records of a network."""
        return ConfirmedRecords(self, network)

    def latest_records(self, network: str) -> Dict[str, DeploymentRecord]:
        """Latest record per instance, in order of first appearance."""
        latest: Dict[str, DeploymentRecord] = {}
        for record in self._iter_records(network):
            latest[record.instance_id] = record
        return latest

    def confirmed_addresses(self, network: str) -> Dict[str, str]:
        """Map instance id -> address for every confirmed instance."""
        return {
            record.instance_id: record.address
            for record in self.list_confirmed(network)
            if record.address is not None
        }

    def _lock_for(self, network: str) -> threading.Lock:
        with self._locks_guard:
            if network not in self._locks:
                self._locks[network] = threading.Lock()
            return self._locks[network]

    def _iter_records(self, network: str) -> Iterator[DeploymentRecord]:
        path = self.path_for(network)
        if not path.exists():
            return

        with open(path, encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                # A line without its newline is a write cut short by a crash
                if not line.endswith("\n"):
                    logger.warning(
                        "Ignoring partially written record at %s:%d", path, line_number
                    )
                    break
                if not line.strip():
                    continue

                try:
                    record = DeploymentRecord.from_dict(json.loads(line))
                except (ValueError, KeyError, TypeError) as e:
                    self._corrupted.add(network)
                    raise AddressBookCorruption(
                        f"Unreadable record at {path}:{line_number}: {e}",
                        network=network,
                    ) from e

                if record.network != network:
                    self._corrupted.add(network)
                    raise AddressBookCorruption(
                        f"Record at {path}:{line_number} belongs to network "
                        f"'{record.network}', expected '{network}'",
                        network=network,
                    )

                yield record

    @staticmethod
    def _drop_torn_tail(path: Path) -> None:
        """Truncate a trailing partial line so the next append starts clean."""
        if not path.exists():
            return

        with open(path, "rb+") as f:
            f.seek(0, os.SEEK_END)
            size = f.tell()
            if size == 0:
                return
            f.seek(size - 1)
            if f.read(1) == b"\n":
                return

            f.seek(0)
            data = f.read()
            keep = data.rfind(b"\n") + 1
            logger.warning(
                "Discarding %d bytes of a partially written record in %s",
                size - keep,
                path,
            )
            f.truncate(keep)
            f.flush()
            os.fsync(f.fileno())
