from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from ledgerload.domain.errors import LoadTestError, PhaseError, UnitFailed
from ledgerload.domain.models import DispatchReport, LoadResult, SignedTransaction
from ledgerload.load.dispatch import ClientFactory, DispatchEngine
from ledgerload.load.fanout import run_concurrently
from ledgerload.load.funding import FundingCoordinator
from ledgerload.load.policy import RetryPolicy, linear_backoff
from ledgerload.load.preparer import OutputPreparer
from ledgerload.load.session import ParticipantSession
from ledgerload.node.client import NodeClient
from ledgerload.utils.config_loader import HttpSettings, LoadConfig

logger = logging.getLogger(__name__)

PHASE_FUNDING = "funding"
PHASE_PREPARE = "prepare_outputs"
PHASE_DISPATCH = "send_transactions"


class RunState(str, Enum):
    PENDING = "pending"
    FUNDING = "funding"
    PREPARING = "preparing"
    DISPATCHING = "dispatching"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def http_client_factory(http: HttpSettings) -> ClientFactory:
    def _factory(participant) -> NodeClient:
        return NodeClient(
            participant,
            verify_tls=http.verify_tls,
            timeout_seconds=http.request_timeout_seconds,
        )

    return _factory


class Orchestrator:
    """
    Runs the load test in three phases with a full barrier between them:

    1. funding: the funder seeds every other node, then all balances must settle.
    2. prepare_outputs: every node splits its funds into unit outputs, in parallel.
    3. send_transactions: every node spends its unit outputs with a worker pool, in parallel.

    The first failing node aborts the run with a PhaseError. Nodes still running are
    not interrupted. The per-participant clients are closed when load() returns.
    """

    def __init__(
        self,
        config: LoadConfig,
        *,
        client_factory: ClientFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.client_factory = client_factory or http_client_factory(config.http)
        self._sleep = sleep
        self.sessions = [ParticipantSession(p, self.client_factory(p)) for p in config.participants]
        self.state = RunState.PENDING
        self.starting_balances: dict[str, int] = {}
        self.dispatch_reports: dict[str, DispatchReport] = {}

    def load(self) -> LoadResult:
        cfg = self.config
        total = cfg.total_transactions
        logger.info("Starting load test. %d nodes. %d total transactions.", len(self.sessions), total)

        try:
            self.state = RunState.FUNDING
            self._ensure_funds()

            self.state = RunState.PREPARING
            prepared = self._prepare_outputs()

            self.state = RunState.DISPATCHING
            start_time = datetime.now(timezone.utc)
            started = time.monotonic()
            self.dispatch_reports = self._send_transactions(prepared)
            elapsed = time.monotonic() - started
            end_time = datetime.now(timezone.utc)
        except BaseException:
            self.state = RunState.FAILED
            raise
        finally:
            self._close_sessions()

        result = LoadResult(
            start_time=start_time,
            end_time=end_time,
            node_count=len(self.sessions),
            total_transactions=total,
            achieved_tps=(total / elapsed) if elapsed > 0 else 0.0,
        )
        self.state = RunState.SUCCEEDED
        sent = sum(r.success_count for r in self.dispatch_reports.values())
        logger.info(
            "All transactions sent. %d/%d accepted in %.3fs. Achieved tx/s: %.2f",
            sent,
            total,
            elapsed,
            result.achieved_tps,
        )
        return result

    def _close_sessions(self) -> None:
        for session in self.sessions:
            try:
                session.close()
            except Exception as e:
                logger.warning("Failed to close client for %s: %s", session.address, e)

    # -------------------
    # Phases
    # -------------------

    def _ensure_funds(self) -> None:
        logger.info("[Step 1] Ensuring that all of the nodes have sufficient funds.")
        timing = self.config.timing
        coordinator = FundingCoordinator(
            settle_seconds=timing.funding_settle_seconds,
            poll_policy=RetryPolicy(
                max_attempts=timing.funding_poll_attempts,
                backoff=linear_backoff(timing.funding_poll_backoff_seconds),
            ),
            funder_policy=RetryPolicy(
                max_attempts=timing.funder_balance_attempts,
                backoff=linear_backoff(timing.funder_balance_backoff_seconds),
            ),
            sleep=self._sleep,
        )
        funder, *others = self.sessions
        try:
            self.starting_balances = coordinator.ensure_funds(funder, others, self.config.transactions_per_node)
        except LoadTestError as e:
            raise PhaseError(PHASE_FUNDING, funder.address, e) from e

    def _prepare_outputs(self) -> dict[str, list[SignedTransaction]]:
        logger.info("[Step 2] Preparing transaction outputs.")
        units = {s.address: (lambda s=s: self._prepare_one(s)) for s in self.sessions}
        try:
            prepared = run_concurrently(units, name="prepare")
        except UnitFailed as e:
            logger.error("[Step 2] Failed to prepare outputs on node %s: %s", e.key, e.error)
            raise PhaseError(PHASE_PREPARE, e.key, e.error) from e.error
        logger.info("[Step 2] Outputs successfully prepared.")
        return prepared

    def _prepare_one(self, session: ParticipantSession) -> list[SignedTransaction]:
        preparer = OutputPreparer(
            session,
            cooldown_seconds=self.config.timing.prepare_cooldown_seconds,
            sleep=self._sleep,
        )
        batches = preparer.prepare_outputs(self.config.transactions_per_node, self.config.outputs_per_transaction)
        logger.info("[Step 2] Node %s successfully prepared outputs.", session.address)
        return batches

    def _send_transactions(self, prepared: dict[str, list[SignedTransaction]]) -> dict[str, DispatchReport]:
        logger.info("[Step 3] Sending transactions.")
        units = {s.address: (lambda s=s: self._send_one(s, prepared[s.address])) for s in self.sessions}
        try:
            reports = run_concurrently(units, name="dispatch")
        except UnitFailed as e:
            logger.error("[Step 3] Failed to send transactions on node %s: %s", e.key, e.error)
            raise PhaseError(PHASE_DISPATCH, e.key, e.error) from e.error
        return reports

    def _send_one(self, session: ParticipantSession, batches: list[SignedTransaction]) -> DispatchReport:
        keys = session.obtain_key_material()
        engine = DispatchEngine(
            session,
            receiver=self.config.receiver,
            outputs_per_batch=self.config.outputs_per_transaction,
            worker_count=self.config.worker_count,
            client_factory=self.client_factory,
            sign_policy=RetryPolicy(max_attempts=self.config.timing.sign_attempts),
            sleep=self._sleep,
        )
        report = engine.send_transactions(batches, keys)
        logger.info("[Step 3] Node %s successfully sent transactions.", session.address)
        return report
