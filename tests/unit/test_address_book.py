"""Unit tests for the append-only AddressBook."""

import json
import threading
from pathlib import Path

import pytest

from narfex_deployments.address_book import AddressBook
from narfex_deployments.exceptions import AddressBookCorruption, RecordNotFound
from narfex_deployments.types import DeploymentRecord, RecordStatus

POOL_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


def make_record(
    instance_id: str = "pool",
    status: RecordStatus = RecordStatus.CONFIRMED,
    network: str = "bsc",
    **fields,
) -> DeploymentRecord:
    if status is RecordStatus.CONFIRMED:
        fields.setdefault("address", POOL_ADDRESS)
    return DeploymentRecord(
        instance_id=instance_id,
        network=network,
        status=status,
        timestamp=1700000000,
        contract="NarfexExchangerPool",
        transaction_hash="0x" + "ab" * 32,
        **fields,
    )


class TestAppendAndGet:
    """Test writing and reading records."""

    def test_get_after_append(self, address_book: AddressBook):
        """Test that an appended record is read back."""
        record = make_record(constructor_args=["0x1", 5])
        address_book.append(record)

        assert address_book.get("bsc", "pool") == record

    def test_one_file_per_network(self, address_book: AddressBook):
        """Test that networks are stored separately."""
        address_book.append(make_record(network="bsc"))
        address_book.append(make_record(network="polygon"))

        assert address_book.networks() == ["bsc", "polygon"]
        assert address_book.path_for("bsc").name == "bsc.jsonl"

    def test_latest_record_wins(self, address_book: AddressBook):
        """Test that the last appended record is the instance's state."""
        address_book.append(make_record(status=RecordStatus.PENDING))
        address_book.append(make_record(status=RecordStatus.CONFIRMED))

        assert address_book.get("bsc", "pool").status is RecordStatus.CONFIRMED

    def test_history_keeps_every_attempt(self, address_book: AddressBook):
        """Test that history() returns all records of one instance in append order."""
        address_book.append(make_record(status=RecordStatus.PENDING, nonce=4))
        address_book.append(make_record(instance_id="router"))
        address_book.append(make_record(status=RecordStatus.CONFIRMED, nonce=4))

        history = address_book.history("bsc", "pool")

        assert [r.status for r in history] == [RecordStatus.PENDING, RecordStatus.CONFIRMED]
        assert [r.nonce for r in history] == [4, 4]

    def test_get_missing_raises(self, address_book: AddressBook):
        """Test that an unknown instance raises RecordNotFound."""
        with pytest.raises(RecordNotFound, match="'router'"):
            address_book.get("bsc", "router")

    def test_find_missing_returns_none(self, address_book: AddressBook):
        """Test that find() returns None for an unknown instance."""
        assert address_book.find("bsc", "router") is None

    def test_survives_reopen(self, tmp_path: Path):
        """Test that records are visible to a new AddressBook on the same directory."""
        AddressBook(tmp_path).append(make_record())
        assert AddressBook(tmp_path).get("bsc", "pool").address == POOL_ADDRESS

    def test_records_are_json_lines(self, address_book: AddressBook):
        """Test the on-disk format: one JSON object per line."""
        address_book.append(make_record())
        address_book.append(make_record("router"))

        lines = address_book.path_for("bsc").read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["instance_id"] == "router"
        assert json.loads(lines[0])["status"] == "confirmed"

    def test_concurrent_appends_are_serialized(self, address_book: AddressBook):
        """Test that parallel appends to one network produce whole lines."""

        def worker(index: int):
            for n in range(20):
                address_book.append(make_record(f"unit-{index}-{n}"))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(address_book.latest_records("bsc")) == 80


class TestListConfirmed:
    """Test the confirmed records view."""

    def test_only_confirmed_records(self, address_book: AddressBook):
        """Test that pending and failed records are excluded."""
        address_book.append(make_record("pool"))
        address_book.append(make_record("router", RecordStatus.PENDING))
        address_book.append(make_record("token", RecordStatus.FAILED, error_kind="OnChainRevert"))

        assert [r.instance_id for r in address_book.list_confirmed("bsc")] == ["pool"]

    def test_view_is_restartable(self, address_book: AddressBook):
        """Test that the view re-reads the book on each iteration."""
        confirmed = address_book.list_confirmed("bsc")
        assert list(confirmed) == []

        address_book.append(make_record())
        assert len(list(confirmed)) == 1
        assert len(list(confirmed)) == 1

    def test_confirmed_addresses(self, address_book: AddressBook):
        """Test the instance id to address mapping."""
        address_book.append(make_record())
        assert address_book.confirmed_addresses("bsc") == {"pool": POOL_ADDRESS}

    def test_empty_network(self, address_book: AddressBook):
        """Test that an unknown network has no records."""
        assert list(address_book.list_confirmed("eth")) == []
        assert address_book.networks() == []


class TestCrashRecovery:
    """Test handling of partially written and corrupted files."""

    def test_torn_tail_is_ignored(self, address_book: AddressBook):
        """Test that a trailing line without newline is skipped on read."""
        address_book.append(make_record())
        with open(address_book.path_for("bsc"), "a") as f:
            f.write('{"instance_id": "router", "netw')

        assert list(address_book.latest_records("bsc")) == ["pool"]
        assert not address_book.is_corrupted("bsc")

    def test_torn_tail_dropped_before_append(self, tmp_path: Path):
        """Test that the next append truncates the partial line first."""
        AddressBook(tmp_path).append(make_record())
        path = AddressBook(tmp_path).path_for("bsc")
        with open(path, "a") as f:
            f.write('{"instance_id": "rou')

        book = AddressBook(tmp_path)
        book.append(make_record("router"))

        assert list(book.latest_records("bsc")) == ["pool", "router"]
        assert len(path.read_text().splitlines()) == 2

    def test_corrupted_line_raises(self, address_book: AddressBook):
        """Test that an unparseable complete line marks the network corrupted."""
        address_book.append(make_record())
        with open(address_book.path_for("bsc"), "a") as f:
            f.write("not json\n")

        with pytest.raises(AddressBookCorruption, match="bsc.jsonl:2"):
            address_book.find("bsc", "pool")
        assert address_book.is_corrupted("bsc")

    def test_corrupted_network_refuses_writes(self, tmp_path: Path):
        """Test that appends to a corrupted network are refused."""
        path = tmp_path / "bsc.jsonl"
        path.write_text('{"status": "confirmed"}\n')
        book = AddressBook(tmp_path)

        with pytest.raises(AddressBookCorruption):
            book.append(make_record())
        assert path.read_text() == '{"status": "confirmed"}\n'

    def test_foreign_network_record_is_corruption(self, tmp_path: Path):
        """Test that a record of another network in a file is rejected."""
        (tmp_path / "bsc.jsonl").write_text(
            json.dumps(make_record(network="eth").to_dict()) + "\n"
        )
        with pytest.raises(AddressBookCorruption, match="belongs to network 'eth'"):
            AddressBook(tmp_path).find("bsc", "pool")

    def test_other_networks_unaffected(self, tmp_path: Path):
        """Test that corruption is tracked per network."""
        (tmp_path / "bsc.jsonl").write_text("garbage\n")
        book = AddressBook(tmp_path)
        book.append(make_record(network="eth"))

        assert book.get("eth", "pool").network == "eth"
        with pytest.raises(AddressBookCorruption):
            book.find("bsc", "pool")
