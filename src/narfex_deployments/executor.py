"""
Sequential deployment of a resolved plan on one network.

Per instance the address book moves through pending -> confirmed/failed.
A pending record is written as soon as the transaction hash is known, so a
crash between broadcast and confirmation is reconciled on the next run
instead of being broadcast again:

- receipt available          -> confirm (or fail on revert), no resubmission
  (also for earlier attempts recorded as dropped)
- transaction still in pool  -> keep waiting on it
- transaction unknown        -> record the drop, submit a fresh attempt,
                                unless the account has used its nonce since
"""

import logging
import time
from typing import Any, Callable, List, Optional, TypeVar

from .address_book import AddressBook
from .backends import DeploymentBackend
from .catalog import ContractSpecCatalog
from .exceptions import (
    AddressBookCorruption,
    ConfirmationTimeout,
    DeploymentError,
    ExecutionFailure,
    InvalidPlan,
    OnChainRevert,
    TransientNetworkError,
    UnresolvedReference,
    UnsettledTransaction,
)
from .reporter import DeploymentReporter
from .resolver import dependents_closure
from .types import (
    ContractSpec,
    DeploymentPlan,
    DeploymentRecord,
    DeploymentUnit,
    ExecutionPolicy,
    ExecutionResult,
    ExecutorSettings,
    Literal,
    NetworkProfile,
    RecordStatus,
    TransactionReceipt,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DROPPED_TRANSACTION = "DroppedTransaction"


class DeploymentExecutor:
    """Deploys the units of a plan one at a time, in resolver order."""

    def __init__(
        self,
        profile: NetworkProfile,
        backend: DeploymentBackend,
        catalog: ContractSpecCatalog,
        address_book: AddressBook,
        reporter: Optional[DeploymentReporter] = None,
        settings: Optional[ExecutorSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the executor.

        Args:
            profile: Network deployed to
            backend: Talks to the network on the executor's behalf
            catalog: Contract specs the plan's units refer to
            address_book: Durable record store
            reporter: Observer notified per unit
            settings: Timeouts, retry bounds and failure policy
            sleep: Sleep function (injectable for tests)
            clock: Wall clock for record timestamps
            monotonic: Clock for timeouts
        """
        self.profile = profile
        self.backend = backend
        self.catalog = catalog
        self.address_book = address_book
        self.reporter = reporter or DeploymentReporter(address_book)
        self.settings = settings or ExecutorSettings()
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic

    @property
    def network(self) -> str:
        return self.profile.name

    def execute(self, plan: DeploymentPlan, order: List[str]) -> ExecutionResult:
        """
        Deploy the units of a plan in the given order.

        Args:
            plan: Plan the order was resolved from
            order: Instance ids from DependencyGraphResolver.resolve()

        Returns:
            ExecutionResult listing deployed, skipped, failed and blocked units

        Raises:
            InvalidPlan: If the plan targets another network
            AddressBookCorruption: If the address book cannot be trusted;
                                   halts the run immediately
        """
        if plan.network != self.network:
            raise InvalidPlan(
                f"Plan targets network '{plan.network}', executor is bound to '{self.network}'"
            )

        result = ExecutionResult(network=self.network, order=list(order))
        blocked_by = {}

        for position, instance_id in enumerate(order):
            if instance_id in blocked_by:
                result.blocked.append(instance_id)
                self.reporter.on_unit_blocked(self.network, instance_id, blocked_by[instance_id])
                continue

            unit = plan.unit(instance_id)
            if unit is None:
                raise InvalidPlan(f"Instance '{instance_id}' is not part of the plan")

            try:
                deployed = self._deploy_unit(plan, unit)
            except AddressBookCorruption:
                raise
            except DeploymentError as e:
                result.failed.append(instance_id)
                result.errors[instance_id] = e

                if self.settings.policy is ExecutionPolicy.STRICT:
                    result.blocked.extend(order[position + 1:])
                    logger.error(
                        "Stopping deployment on %s after failure of %s", self.network, instance_id
                    )
                    break

                for dependent in sorted(dependents_closure(plan, [instance_id])):
                    blocked_by.setdefault(dependent, instance_id)
                continue

            if deployed:
                result.deployed.append(instance_id)
            else:
                result.skipped.append(instance_id)

        return result

    def _deploy_unit(self, plan: DeploymentPlan, unit: DeploymentUnit) -> bool:
        """Deploy one unit. Returns False if it was already confirmed."""
        latest = self.address_book.find(self.network, unit.instance_id)
        if latest is not None and latest.is_confirmed:
            self.reporter.on_unit_skipped(latest)
            return False

        try:
            spec = self.catalog.resolve_spec(unit.contract)
            args = self.resolve_arguments(plan, unit)
        except DeploymentError as e:
            self.reporter.on_unit_failed(self.network, unit.instance_id, e)
            raise

        self.reporter.on_unit_started(self.network, unit, args)

        transaction_hash = None
        if self._needs_reconciling(latest):
            try:
                awaited = self._reconcile(unit, latest, args)
            except (TransientNetworkError, UnsettledTransaction) as e:
                # The record stays pending
                self.reporter.on_unit_failed(self.network, unit.instance_id, e)
                raise
            if awaited is not None:
                transaction_hash = awaited.transaction_hash
                if awaited.constructor_args is not None:
                    # Confirm with what was actually sent
                    args = awaited.constructor_args

        if transaction_hash is None:
            transaction_hash = self._submit(unit, spec, args)

        try:
            receipt = self._await_confirmation(unit, transaction_hash)
        except ConfirmationTimeout as e:
            # Record stays pending; the next run picks the transaction up again
            self.reporter.on_unit_failed(
                self.network, unit.instance_id, e, self.address_book.find(self.network, unit.instance_id)
            )
            raise
        except TransientNetworkError as e:
            # The transaction may still be mined, so it is not marked failed
            self.reporter.on_unit_failed(self.network, unit.instance_id, e)
            raise

        if not receipt.success:
            reason = receipt.revert_reason or "no reason given"
            error = OnChainRevert(
                f"Deployment of {unit.instance_id} reverted: {reason}",
                instance_id=unit.instance_id,
                reason=receipt.revert_reason,
                transaction_hash=transaction_hash,
            )
            record = self._record(
                unit,
                RecordStatus.FAILED,
                args,
                transaction_hash=transaction_hash,
                block=receipt.block,
                error=error,
            )
            self.reporter.on_unit_failed(self.network, unit.instance_id, error, record)
            raise error

        record = self._record(
            unit,
            RecordStatus.CONFIRMED,
            args,
            transaction_hash=transaction_hash,
            address=receipt.contract_address,
            block=receipt.block,
        )
        self.reporter.on_unit_confirmed(record)
        return True

    def resolve_arguments(self, plan: DeploymentPlan, unit: DeploymentUnit) -> List[Any]:
        """
        Substitute deployed addresses for the references of a unit.

        Raises:
            UnresolvedReference: If a reference has no confirmed address yet,
                                 which means the order was not resolved
                                 against this address book
        """
        args: List[Any] = []
        for binding in unit.bindings:
            if isinstance(binding, Literal):
                args.append(binding.value)
                continue

            address = plan.external.get(binding.instance_id)
            if address is None:
                record = self.address_book.find(self.network, binding.instance_id)
                if record is not None and record.is_confirmed:
                    address = record.address

            if address is None:
                logger.error(
                    "Internal invariant violated: %s needs %s, which has no confirmed address on %s",
                    unit.instance_id,
                    binding.instance_id,
                    self.network,
                )
                raise UnresolvedReference(
                    f"Unit '{unit.instance_id}' references '{binding.instance_id}', "
                    f"which has no confirmed address on network '{self.network}'",
                    reference=binding.instance_id,
                    instance_id=unit.instance_id,
                )
            args.append(address)
        return args

    def _submit(self, unit: DeploymentUnit, spec: ContractSpec, args: List[Any]) -> str:
        try:
            prepared = self._with_retries(
                lambda: self.backend.prepare(spec, args), f"prepare {unit.instance_id}"
            )
        except DeploymentError as e:
            self._fail_before_broadcast(unit, args, e)
            raise

        if prepared.transaction_hash is not None:
            # Hash is known before broadcast: persist it first
            self._record(
                unit,
                RecordStatus.PENDING,
                args,
                transaction_hash=prepared.transaction_hash,
                nonce=prepared.nonce,
            )

        try:
            transaction_hash = self._with_retries(
                lambda: self.backend.broadcast(prepared), f"broadcast {unit.instance_id}"
            )
        except TransientNetworkError as e:
            if prepared.transaction_hash is None:
                self._fail_before_broadcast(unit, args, e)
            else:
                # The broadcast may have reached the node; leave it pending
                self.reporter.on_unit_failed(self.network, unit.instance_id, e)
            raise
        except DeploymentError as e:
            self._fail_before_broadcast(unit, args, e, transaction_hash=prepared.transaction_hash)
            raise

        if prepared.transaction_hash is None:
            self._record(
                unit,
                RecordStatus.PENDING,
                args,
                transaction_hash=transaction_hash,
                nonce=prepared.nonce,
            )

        logger.info(
            "[%s] %s submitted in %s (nonce %d)",
            self.network,
            unit.instance_id,
            transaction_hash,
            prepared.nonce,
        )
        return transaction_hash

    @staticmethod
    def _needs_reconciling(latest: Optional[DeploymentRecord]) -> bool:
        # A run can stop between recording a drop and sending the next attempt
        if latest is None or not latest.transaction_hash:
            return False
        return latest.status is RecordStatus.PENDING or latest.error_kind == DROPPED_TRANSACTION

    def _reconcile(
        self, unit: DeploymentUnit, pending: DeploymentRecord, args: List[Any]
    ) -> Optional[DeploymentRecord]:
        """
        Decide what to do with a transaction left pending by an earlier run.

        Attempts recorded as dropped are checked too: a node can lose a
        transaction that another node still mines.

        Returns:
            Record of the transaction to wait for, or None when no earlier
            attempt can still be mined and a fresh one is safe to send

        Raises:
            UnsettledTransaction: If the pending transaction is unknown but
                                  its nonce has been used
        """
        logger.info(
            "[%s] Reconciling pending deployment of %s (tx %s)",
            self.network,
            unit.instance_id,
            pending.transaction_hash,
        )

        earlier = [
            record
            for record in reversed(self.address_book.history(self.network, unit.instance_id))
            if record.error_kind == DROPPED_TRANSACTION and record.transaction_hash
        ]
        checked = set()
        for attempt in [pending] + earlier:
            if attempt.transaction_hash in checked:
                continue
            checked.add(attempt.transaction_hash)

            if self._fetch_receipt(attempt.transaction_hash) is None:
                continue
            if attempt is not pending:
                logger.warning(
                    "[%s] Transaction %s of %s was mined after being recorded as dropped",
                    self.network,
                    attempt.transaction_hash,
                    unit.instance_id,
                )
                self._record(
                    unit,
                    RecordStatus.PENDING,
                    attempt.constructor_args or args,
                    transaction_hash=attempt.transaction_hash,
                    nonce=attempt.nonce,
                )
            return attempt

        transaction_hash = pending.transaction_hash
        if self._with_retries(
            lambda: self.backend.is_known(transaction_hash), f"lookup {transaction_hash}"
        ):
            return pending

        if pending.nonce is not None:
            mined = self._with_retries(self.backend.confirmed_nonce, "account nonce")
            if mined > pending.nonce:
                raise UnsettledTransaction(
                    f"Transaction {transaction_hash} of {unit.instance_id} is unknown to the node "
                    f"but nonce {pending.nonce} has been used; not deploying again",
                    instance_id=unit.instance_id,
                    transaction_hash=transaction_hash,
                    nonce=pending.nonce,
                )

        logger.warning(
            "[%s] Transaction %s of %s was dropped, submitting again",
            self.network,
            transaction_hash,
            unit.instance_id,
        )
        self._record(
            unit,
            RecordStatus.FAILED,
            pending.constructor_args or args,
            transaction_hash=transaction_hash,
            nonce=pending.nonce,
            error_kind=DROPPED_TRANSACTION,
            error_message="Transaction unknown to the node after restart",
        )
        return None

    def _await_confirmation(self, unit: DeploymentUnit, transaction_hash: str) -> TransactionReceipt:
        """
        Poll for the receipt and the profile's confirmation depth.

        Raises:
            ConfirmationTimeout: If the deadline passes first
        """
        deadline = self._monotonic() + self.settings.confirmation_timeout

        while True:
            receipt = self._fetch_receipt(transaction_hash, deadline)
            if receipt is not None:
                if not receipt.success:
                    return receipt
                head = self._with_retries(self.backend.block_number, "block number", deadline)
                depth = head - receipt.block + 1
                if depth >= self.profile.confirmations:
                    return receipt
                logger.debug(
                    "%s at depth %d of %d", transaction_hash, depth, self.profile.confirmations
                )

            remaining = deadline - self._monotonic()
            if remaining <= 0:
                raise ConfirmationTimeout(
                    f"Deployment of {unit.instance_id} not confirmed within "
                    f"{self.settings.confirmation_timeout:g}s (tx {transaction_hash}); "
                    "it stays pending and is reconciled on the next run",
                    instance_id=unit.instance_id,
                    transaction_hash=transaction_hash,
                )
            self._sleep(min(self.settings.poll_interval, remaining))

    def _fetch_receipt(
        self, transaction_hash: str, deadline: Optional[float] = None
    ) -> Optional[TransactionReceipt]:
        return self._with_retries(
            lambda: self.backend.get_receipt(transaction_hash),
            f"receipt {transaction_hash}",
            deadline,
        )

    def _with_retries(
        self, operation: Callable[[], T], description: str, deadline: Optional[float] = None
    ) -> T:
        """
        Run an RPC operation, retrying transient failures with exponential backoff.

        With a deadline (a monotonic time), no delay runs past it and retrying
        stops once it has passed.
        """
        backoff = self.settings.initial_backoff
        attempts = max(1, self.settings.max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                return operation()
            except TransientNetworkError as e:
                if attempt == attempts:
                    raise TransientNetworkError(
                        f"{description} failed after {attempts} attempts: {e}"
                    ) from e
                delay = min(backoff, self.settings.max_backoff)
                if deadline is not None:
                    remaining = deadline - self._monotonic()
                    if remaining <= 0:
                        raise TransientNetworkError(
                            f"{description} failed after {attempt} attempts, out of time: {e}"
                        ) from e
                    delay = min(delay, remaining)
                logger.warning(
                    "Transient error on %s (attempt %d/%d): %s; retrying in %.1fs",
                    description,
                    attempt,
                    attempts,
                    e,
                    delay,
                )
                self._sleep(delay)
                backoff *= 2

        raise AssertionError("unreachable")

    def _fail_before_broadcast(
        self,
        unit: DeploymentUnit,
        args: List[Any],
        error: DeploymentError,
        transaction_hash: Optional[str] = None,
    ) -> None:
        if isinstance(error, ExecutionFailure) and error.instance_id is None:
            error.instance_id = unit.instance_id
        record = self._record(
            unit, RecordStatus.FAILED, args, transaction_hash=transaction_hash, error=error
        )
        self.reporter.on_unit_failed(self.network, unit.instance_id, error, record)

    def _record(
        self,
        unit: DeploymentUnit,
        status: RecordStatus,
        args: List[Any],
        transaction_hash: Optional[str] = None,
        nonce: Optional[int] = None,
        address: Optional[str] = None,
        block: Optional[int] = None,
        error: Optional[Exception] = None,
        error_kind: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> DeploymentRecord:
        if error is not None:
            error_kind = getattr(error, "kind", type(error).__name__)
            error_message = str(error)

        record = DeploymentRecord(
            instance_id=unit.instance_id,
            network=self.network,
            status=status,
            timestamp=int(self._clock()),
            contract=unit.contract,
            address=address,
            transaction_hash=transaction_hash,
            nonce=nonce,
            block=block,
            constructor_args=list(args),
            error_kind=error_kind,
            error=error_message,
        )
        self.address_book.append(record)
        return record
