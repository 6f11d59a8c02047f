from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Sequence

from ledgerload.domain.errors import LoadTestError
from ledgerload.domain.models import (
    DispatchReport,
    KeyMaterial,
    Participant,
    ReceiverAmount,
    SignedTransaction,
    UnsignedTransaction,
    WalletAddress,
)
from ledgerload.load.policy import RetryPolicy
from ledgerload.load.session import ParticipantSession, close_client
from ledgerload.load.transactions import build_transaction
from ledgerload.ports.node import NodeAPI

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Participant], NodeAPI]

# End-of-queue marker; one is enqueued per worker.
_CLOSED = object()

_PROGRESS_EVERY = 100

# Per-transaction outcomes of a worker's sign+submit attempt.
_SENT = "sent"
_SKIPPED = "skipped"
_ABORTED = "aborted"


class _Counter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> None:
        with self._lock:
            self._value += 1

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class DispatchEngine:
    """
    Spends prepared unit outputs with a bounded pool of worker threads.

    The full work list is built and queued before any worker starts. Workers share
    only the queue and the success counter.
    """

    def __init__(
        self,
        session: ParticipantSession,
        *,
        receiver: WalletAddress,
        outputs_per_batch: int,
        worker_count: int,
        client_factory: ClientFactory,
        sign_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        self.session = session
        self.receiver = receiver
        self.outputs_per_batch = int(outputs_per_batch)
        self.worker_count = int(worker_count)
        self.client_factory = client_factory
        self.sign_policy = sign_policy or RetryPolicy(max_attempts=5)
        self._sleep = sleep

    def build_work(self, batches: Sequence[SignedTransaction]) -> list[UnsignedTransaction]:
        """One single-input, single-output transaction per unit output of every batch."""
        owner = self.session.participant.wallet
        payment = [ReceiverAmount(wallet=self.receiver, amount=1)]
        work = [
            build_transaction([output], payment, owner)
            for batch in batches
            for output in batch.spendable_outputs(owner, self.outputs_per_batch)
        ]
        logger.info("[%s] Prepared %d unsigned transactions", self.session.address, len(work))
        return work

    def send_transactions(self, batches: Sequence[SignedTransaction], keys: KeyMaterial) -> DispatchReport:
        started = time.monotonic()

        work = self.build_work(batches)
        pending: queue.Queue = queue.Queue()
        for unsigned in work:
            pending.put(unsigned)
        for _ in range(self.worker_count):
            pending.put(_CLOSED)

        counter = _Counter()
        logger.info("[%s] Starting %d workers.", self.session.address, self.worker_count)
        threads = [
            threading.Thread(
                target=self._worker,
                args=(worker_id, pending, keys, counter),
                name=f"dispatch-{self.session.participant.key_identifier}-{worker_id}",
                daemon=True,
            )
            for worker_id in range(self.worker_count)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        report = DispatchReport(
            success_count=counter.value,
            queued_count=len(work),
            elapsed_seconds=max(0.0, time.monotonic() - started),
            worker_count=self.worker_count,
        )
        logger.info(
            "[%s] Done. %d workers. %d/%d transactions sent in %.3fs. Tx/s: %.2f",
            self.session.address,
            report.worker_count,
            report.success_count,
            report.queued_count,
            report.elapsed_seconds,
            report.tps,
        )
        return report

    def _worker(self, worker_id: int, pending: queue.Queue, keys: KeyMaterial, counter: _Counter) -> None:
        address = self.session.address
        logger.debug("[%s] Starting worker %d.", address, worker_id)
        node = self.client_factory(self.session.participant)
        sent = 0
        try:
            try:
                node.generate_new_address()
            except LoadTestError as e:
                logger.error("[%s] Worker %d could not open a node session: %s", address, worker_id, e)
                return

            while True:
                item = pending.get()
                if item is _CLOSED:
                    return
                outcome = self._send_one(node, worker_id, item, keys)
                if outcome == _ABORTED:
                    return
                if outcome == _SKIPPED:
                    continue
                if sent % _PROGRESS_EVERY == 0:
                    logger.info("[%s] Worker %d. Transaction %d.", address, worker_id, sent)
                sent += 1
                counter.increment()
        finally:
            close_client(node)
            logger.debug("[%s] Done worker %d. Sent %d.", address, worker_id, sent)

    def _send_one(self, node: NodeAPI, worker_id: int, unsigned: UnsignedTransaction, keys: KeyMaterial) -> str:
        """
        Sign and submit one transaction.

        Signing failures are retried within the sign policy; an item that never
        signs is skipped. A submission failure ends the worker.
        """
        address = self.session.address
        policy = self.sign_policy
        for attempt in range(policy.max_attempts):
            delay = policy.delay(attempt)
            if delay > 0:
                self._sleep(delay)

            try:
                signed = node.sign_transaction(unsigned, keys.private_keys, keys.public_keys)
            except LoadTestError as e:
                logger.warning("[%s] Worker %d. Attempt %d. Error: %s", address, worker_id, attempt, e)
                continue

            try:
                node.submit_transaction(signed)
            except LoadTestError as e:
                logger.error("[%s] Worker %d. Aborting after submit error: %s", address, worker_id, e)
                return _ABORTED
            return _SENT

        logger.warning(
            "[%s] Worker %d. Giving up on transaction after %d attempts", address, worker_id, policy.max_attempts
        )
        return _SKIPPED
